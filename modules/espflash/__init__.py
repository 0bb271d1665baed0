"""ESP flash module.

Flash session orchestration for ESP32 boards attached over a serial link:
bootloader sync, chunked image transfer, progress and log reporting.
"""

from modules.espflash.errors import (
    CapabilityUnavailable,
    FlashSessionError,
    InvalidSessionState,
    NoPortSelected,
    OpenFailure,
    PhaseFailure,
    ReadTimeoutOrError,
    SessionBusy,
    UserCancelled,
    ValidationFailure,
    WriteFailure,
    WriteTimeout,
)
from modules.espflash.events import SessionEvent, SessionEvents
from modules.espflash.log_sink import LogEntry, LogLevel, LogSink
from modules.espflash.progress import FlashPhase, Progress, ProgressTracker
from modules.espflash.session import FlashOutcome, FlashSession, SessionState
from modules.espflash.validators import build_flash_request

__version__ = "0.1.0"

__all__ = [
    "CapabilityUnavailable",
    "FlashOutcome",
    "FlashPhase",
    "FlashSession",
    "FlashSessionError",
    "InvalidSessionState",
    "LogEntry",
    "LogLevel",
    "LogSink",
    "NoPortSelected",
    "OpenFailure",
    "PhaseFailure",
    "Progress",
    "ProgressTracker",
    "ReadTimeoutOrError",
    "SessionBusy",
    "SessionEvent",
    "SessionEvents",
    "SessionState",
    "UserCancelled",
    "ValidationFailure",
    "WriteFailure",
    "WriteTimeout",
    "build_flash_request",
]
