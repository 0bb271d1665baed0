"""Bounded session log."""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional


logger = logging.getLogger(__name__)

MAX_LOG_ENTRIES = 100


class LogLevel(Enum):
    """Levels shown to the user."""
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


_PY_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


@dataclass(frozen=True)
class LogEntry:
    """One user-facing log line."""
    message: str
    level: LogLevel
    timestamp: datetime


class LogSink:
    """Append-only log keeping the most recent entries.

    Oldest entries are evicted once ``capacity`` is exceeded. Appending never
    raises: listener failures are logged and dropped.
    """

    def __init__(self, capacity: int = MAX_LOG_ENTRIES):
        if capacity <= 0:
            raise ValueError("capacity must be greater than 0")
        self._entries: deque = deque(maxlen=capacity)
        self._on_append: Optional[Callable[[LogEntry], None]] = None

    @property
    def capacity(self) -> int:
        return self._entries.maxlen

    def append(self, message: str, level: LogLevel = LogLevel.INFO) -> LogEntry:
        """Record a message and mirror it to the module logger."""
        entry = LogEntry(message=message, level=level, timestamp=datetime.now())
        self._entries.append(entry)
        logger.log(_PY_LEVELS[level], message)

        if self._on_append:
            try:
                self._on_append(entry)
            except Exception as e:
                logger.error(f"Error in log listener: {e}")
        return entry

    def info(self, message: str) -> LogEntry:
        return self.append(message, LogLevel.INFO)

    def success(self, message: str) -> LogEntry:
        return self.append(message, LogLevel.SUCCESS)

    def warning(self, message: str) -> LogEntry:
        return self.append(message, LogLevel.WARNING)

    def error(self, message: str) -> LogEntry:
        return self.append(message, LogLevel.ERROR)

    def clear(self) -> None:
        self._entries.clear()

    def entries(self) -> List[LogEntry]:
        """Entries in insertion order, oldest first."""
        return list(self._entries)

    def messages(self) -> List[str]:
        return [entry.message for entry in self._entries]

    def set_append_callback(self, callback: Optional[Callable[[LogEntry], None]]) -> None:
        """Set callback invoked after every append."""
        self._on_append = callback

    def __len__(self) -> int:
        return len(self._entries)
