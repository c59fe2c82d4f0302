"""Per-component logger wrapper and timed-operation context manager.

``ComponentLogger`` binds a ``LogComponent`` to the global ``EventLog`` so
services can log without repeating it.  Every call is also mirrored to the
stdlib ``logging`` hierarchy under ``editorial.<component>`` so console
output works without the event log files.

``TimedOperation`` is an async context manager returned by
``ComponentLogger.timed()`` that logs the elapsed duration and the
success or failure of a block of code.
"""

import logging
import time
from typing import Any, Optional

from src.logging.event_log import get_logger
from src.logging.models import LogComponent, LogLevel


class ComponentLogger:
    """Wrapper that binds a fixed ``LogComponent`` to the global event log::

        self.log = ComponentLogger(LogComponent.REVISION)
        await self.log.info("Revision ready", draft_id=draft.id)
    """

    def __init__(self, component: LogComponent) -> None:
        self.component = component
        self._std = logging.getLogger(f"editorial.{component.value}")

    async def _emit(
        self, level: LogLevel, message: str, **kwargs: Any
    ) -> None:
        draft_id = kwargs.get("draft_id")
        suffix = f" (draft {draft_id})" if draft_id else ""
        self._std.log(level.value, "%s%s", message, suffix)
        await get_logger().log(level, self.component, message, **kwargs)

    async def debug(self, message: str, **kwargs: Any) -> None:
        await self._emit(LogLevel.DEBUG, message, **kwargs)

    async def info(self, message: str, **kwargs: Any) -> None:
        await self._emit(LogLevel.INFO, message, **kwargs)

    async def warning(self, message: str, **kwargs: Any) -> None:
        await self._emit(LogLevel.WARNING, message, **kwargs)

    async def error(
        self, message: str, error: Optional[Exception] = None, **kwargs: Any
    ) -> None:
        await self._emit(LogLevel.ERROR, message, error=error, **kwargs)

    async def critical(
        self, message: str, error: Optional[Exception] = None, **kwargs: Any
    ) -> None:
        await self._emit(LogLevel.CRITICAL, message, error=error, **kwargs)

    def timed(self, message: str, **kwargs: Any) -> "TimedOperation":
        """Return an async context manager that logs start/end with duration.

        Usage::

            async with self.log.timed("Recalculating site schedule"):
                await self._allocate(drafts)
        """
        return TimedOperation(self, message, **kwargs)


class TimedOperation:
    """Async context manager that measures and logs operation duration.

    On entry, logs DEBUG ``"Starting: <message>"``.  On success, logs INFO
    with ``duration_ms``.  On exception, logs ERROR with ``duration_ms``
    and the error, then lets the exception propagate.
    """

    def __init__(self, logger: ComponentLogger, message: str, **kwargs: Any) -> None:
        self.logger = logger
        self.message = message
        self.kwargs = kwargs
        self.start: Optional[float] = None
        self.duration_ms: Optional[int] = None

    async def __aenter__(self) -> "TimedOperation":
        self.start = time.monotonic()
        await self.logger.debug(f"Starting: {self.message}", **self.kwargs)
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type],
        exc_val: Optional[BaseException],
        exc_tb: Any,
    ) -> None:
        assert self.start is not None
        self.duration_ms = int((time.monotonic() - self.start) * 1000)

        if exc_type is not None:
            await self.logger.error(
                f"Failed: {self.message}",
                error=exc_val if isinstance(exc_val, Exception) else None,
                duration_ms=self.duration_ms,
                **self.kwargs,
            )
        else:
            await self.logger.info(
                f"Completed: {self.message}",
                duration_ms=self.duration_ms,
                **self.kwargs,
            )
