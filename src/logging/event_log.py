"""Central editorial event log with file and Supabase outputs.

Provides the ``EventLog`` class that dispatches structured log entries to
local JSON-lines files (via ``aiofiles``) and, optionally, to the
``event_logs`` Supabase table.  A bounded in-memory buffer allows fast
``get_recent()`` queries without hitting the database.

Global helpers:
    - ``init_logger()``  -- create and register a singleton ``EventLog``
    - ``get_logger()``   -- retrieve the singleton (raises if not initialised)
"""

import asyncio
import logging
import traceback
from collections import deque
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional, Set

import aiofiles

from src.logging.models import LogComponent, LogEntry, LogLevel
from src.utils import utc_now

logger = logging.getLogger(__name__)


class EventLog:
    """Central event log for every editorial component.

    Parameters:
        log_dir: Directory for log files (created if missing).
        db: Optional ``SupabaseDB`` exposing ``save_event_log()``.
        min_level: Minimum level for Supabase writes.
        max_recent: Size of the in-memory buffer.
    """

    def __init__(
        self,
        log_dir: str = "logs",
        db: Any = None,
        min_level: LogLevel = LogLevel.INFO,
        max_recent: int = 1000,
    ) -> None:
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.db = db
        self.min_level = min_level

        self._run_id: Optional[str] = None

        self._main_log = self.log_dir / "events.log"
        self._error_log = self.log_dir / "errors.log"

        self._recent: Deque[LogEntry] = deque(maxlen=max_recent)
        self._handlers: List[Callable[[LogEntry], None]] = []

        # Track pending async tasks to prevent garbage collection
        self._pending_tasks: Set["asyncio.Task[None]"] = set()

    # ------------------------------------------------------------------
    # Context management
    # ------------------------------------------------------------------

    def set_run(self, run_id: Optional[str]) -> None:
        """Tag subsequent entries with a scheduler cycle id."""
        self._run_id = run_id

    def add_handler(self, handler: Callable[[LogEntry], None]) -> None:
        """Register a custom synchronous log handler."""
        self._handlers.append(handler)

    # ------------------------------------------------------------------
    # Core log method
    # ------------------------------------------------------------------

    async def log(
        self,
        level: LogLevel,
        component: LogComponent,
        message: str,
        draft_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[Exception] = None,
        duration_ms: Optional[int] = None,
    ) -> LogEntry:
        """Log a structured message to every configured output."""
        entry = LogEntry(
            timestamp=utc_now(),
            level=level,
            component=component,
            message=message,
            run_id=self._run_id,
            draft_id=draft_id,
            data=data or {},
            duration_ms=duration_ms,
        )

        if error is not None:
            entry.error_type = type(error).__name__
            entry.error_traceback = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )

        self._recent.append(entry)

        await self._write_to_file(entry)

        if self.db is not None and level.value >= self.min_level.value:
            task = asyncio.create_task(self._write_to_supabase(entry))
            self._pending_tasks.add(task)
            task.add_done_callback(self._pending_tasks.discard)

        for handler in self._handlers:
            try:
                handler(entry)
            except Exception:
                logger.exception("[EVENT LOG] Handler %r failed", handler)

        return entry

    # ------------------------------------------------------------------
    # Convenience methods
    # ------------------------------------------------------------------

    async def debug(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.DEBUG, component, message, **kwargs)

    async def info(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.INFO, component, message, **kwargs)

    async def warning(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.WARNING, component, message, **kwargs)

    async def error(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.ERROR, component, message, **kwargs)

    async def critical(self, component: LogComponent, message: str, **kwargs: Any) -> LogEntry:
        return await self.log(LogLevel.CRITICAL, component, message, **kwargs)

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_recent(
        self,
        limit: int = 20,
        level: Optional[LogLevel] = None,
        component: Optional[LogComponent] = None,
        draft_id: Optional[str] = None,
    ) -> List[LogEntry]:
        """Return recent entries from the in-memory buffer, oldest first."""
        entries = list(self._recent)

        if level is not None:
            entries = [e for e in entries if e.level == level]
        if component is not None:
            entries = [e for e in entries if e.component == component]
        if draft_id is not None:
            entries = [e for e in entries if e.draft_id == draft_id]

        return entries[-limit:]

    async def flush(self) -> None:
        """Wait for pending Supabase writes.  Call before shutdown."""
        if self._pending_tasks:
            await asyncio.gather(*self._pending_tasks, return_exceptions=True)
            self._pending_tasks.clear()

    # ------------------------------------------------------------------
    # Private output methods
    # ------------------------------------------------------------------

    async def _write_to_file(self, entry: LogEntry) -> None:
        """Append the entry as JSON to ``events.log`` (and ``errors.log``)."""
        json_line = entry.to_json() + "\n"

        async with aiofiles.open(self._main_log, "a", encoding="utf-8") as f:
            await f.write(json_line)

        if entry.level.value >= LogLevel.ERROR.value:
            async with aiofiles.open(self._error_log, "a", encoding="utf-8") as f:
                await f.write(json_line)

    async def _write_to_supabase(self, entry: LogEntry) -> None:
        try:
            await self.db.save_event_log(entry.to_dict())
        except Exception:
            logger.exception("[EVENT LOG] Failed to write entry to Supabase")


# ======================================================================
# GLOBAL LOGGER SINGLETON
# ======================================================================

_logger: Optional[EventLog] = None


def init_logger(
    log_dir: str = "logs",
    db: Any = None,
    min_level: LogLevel = LogLevel.INFO,
) -> EventLog:
    """Initialise and register the global ``EventLog`` singleton."""
    global _logger
    _logger = EventLog(log_dir=log_dir, db=db, min_level=min_level)
    return _logger


def get_logger() -> EventLog:
    """Retrieve the global ``EventLog`` singleton.

    Raises:
        RuntimeError: If ``init_logger()`` has not been called yet.
    """
    if _logger is None:
        raise RuntimeError("Logger not initialized. Call init_logger() first.")
    return _logger
