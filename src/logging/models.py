"""Logging data models: LogLevel, LogComponent, LogEntry."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class LogLevel(Enum):
    """Log levels with numeric values for severity comparison.

    Uses integer values so that severity comparison works correctly.
    String comparison would fail (e.g., "debug" > "critical" lexicographically).
    """

    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50

    @property
    def name_str(self) -> str:
        """Get lowercase name for display/serialization."""
        return self.name.lower()


class LogComponent(Enum):
    """All system components that can produce logs."""

    # Editorial workflow
    REVIEW = "review"
    REVISION = "revision"
    INTAKE = "intake"
    WRITER = "writer"

    # Schedulers
    SITE_SCHEDULER = "site_scheduler"
    SOCIAL_SCHEDULER = "social_scheduler"
    SCHEDULER = "scheduler"

    # Infrastructure
    DATABASE = "database"
    FACEBOOK_CLIENT = "facebook_client"
    COVER_IMAGE = "cover_image"
    STARTUP = "startup"
    CONFIG = "config"


@dataclass
class LogEntry:
    """Structured log entry.

    Represents a single event with context, optional error details and
    timing.  Serialises to JSON (file), dict (Supabase) and text (console).
    """

    # Required fields
    timestamp: datetime
    level: LogLevel
    component: LogComponent
    message: str

    # Context
    run_id: Optional[str] = None
    draft_id: Optional[str] = None

    # Additional data
    data: Dict[str, Any] = field(default_factory=dict)

    # Error details
    error_type: Optional[str] = None
    error_traceback: Optional[str] = None

    # Performance
    duration_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to dictionary for Supabase insertion."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "level_name": self.level.name_str,
            "component": self.component.value,
            "message": self.message,
            "run_id": self.run_id,
            "draft_id": self.draft_id,
            "data": self.data,
            "error_type": self.error_type,
            "error_traceback": self.error_traceback,
            "duration_ms": self.duration_ms,
        }

    def to_json(self) -> str:
        """Serialize to a JSON line for file logging."""
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)

    def to_readable(self) -> str:
        """Human-readable format for console output."""
        time_str = self.timestamp.strftime("%H:%M:%S")
        msg = (
            f"[{self.level.name_str.upper()}] [{time_str}] "
            f"[{self.component.value}] {self.message}"
        )
        if self.draft_id:
            msg += f" draft={self.draft_id}"
        if self.duration_ms:
            msg += f" ({self.duration_ms}ms)"
        return msg
