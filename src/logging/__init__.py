"""Structured event logging for the editorial pipeline."""
from src.logging.models import LogLevel, LogComponent, LogEntry
from src.logging.event_log import EventLog, init_logger, get_logger
from src.logging.component_logger import ComponentLogger, TimedOperation

__all__ = [
    "LogLevel", "LogComponent", "LogEntry",
    "EventLog", "init_logger", "get_logger",
    "ComponentLogger", "TimedOperation",
]
