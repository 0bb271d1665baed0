"""Exceptions raised by the flash session.

Every failure the session reports is one of these classes, so callers can
tell a cancelled port picker from a broken cable from a bad offset.
"""

import asyncio
from typing import Optional

import serial


class FlashSessionError(Exception):
    """Base exception for flash session errors."""

    def __init__(self, message: str, original_error: Optional[BaseException] = None):
        """Initialize the base error.

        Args:
            message: Human readable message
            original_error: Exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message} (cause: {self.original_error})"
        return self.message


class CapabilityUnavailable(FlashSessionError):
    """The host has no serial capability."""

    def __init__(self, original_error: Optional[BaseException] = None):
        super().__init__("Serial ports are not supported on this host", original_error)


class UserCancelled(FlashSessionError):
    """The user dismissed port selection. Informational, not a failure."""

    def __init__(self, message: str = "Port selection cancelled"):
        super().__init__(message)


class NoPortSelected(FlashSessionError):
    """connect() was called without a transport."""

    def __init__(self):
        super().__init__("No port selected. Please select a port first.")


class OpenFailure(FlashSessionError):
    """The transport could not be opened."""

    def __init__(self, port: Optional[str] = None, original_error: Optional[BaseException] = None):
        port_info = f" {port}" if port else ""
        super().__init__(f"Could not open port{port_info}", original_error)
        self.port = port


class WriteFailure(FlashSessionError):
    """A transport write failed."""

    def __init__(self, message: str = "Failed to send data", original_error: Optional[BaseException] = None):
        super().__init__(message, original_error)


class WriteTimeout(FlashSessionError):
    """A transport write did not complete before its deadline."""

    def __init__(self, timeout_seconds: float, original_error: Optional[BaseException] = None):
        super().__init__(f"Write did not complete within {timeout_seconds:g}s", original_error)
        self.timeout_seconds = timeout_seconds


class ReadTimeoutOrError(FlashSessionError):
    """A read stalled past its timeout or failed outright."""

    def __init__(
        self,
        timed_out: bool,
        timeout_seconds: Optional[float] = None,
        original_error: Optional[BaseException] = None,
    ):
        if timed_out and timeout_seconds is not None:
            message = f"Read timeout after {timeout_seconds:g}s"
        elif timed_out:
            message = "Read timeout"
        else:
            message = "Read error"
        super().__init__(message, original_error)
        self.timed_out = timed_out
        self.timeout_seconds = timeout_seconds


class ValidationFailure(FlashSessionError):
    """A flash request or session argument is malformed."""

    def __init__(self, reason: str, field: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.field = field


class SessionBusy(FlashSessionError):
    """A flash attempt is already in flight on this session."""

    def __init__(self):
        super().__init__("A flash operation is already in progress")


class InvalidSessionState(FlashSessionError):
    """The operation is not allowed in the current session state."""

    def __init__(self, operation: str, state: str):
        super().__init__(f"Cannot {operation} while session is {state}")
        self.operation = operation
        self.state = state


class PhaseFailure(FlashSessionError):
    """A flash phase failed; wraps the underlying classified error."""

    def __init__(self, phase: str, cause: BaseException):
        super().__init__(f"{phase} phase failed", cause)
        self.phase = phase
        self.cause = cause


def map_transport_error(
    error: BaseException,
    context: str = "write",
    port: Optional[str] = None,
    timeout: Optional[float] = None,
) -> FlashSessionError:
    """Classify a raw transport exception.

    Args:
        error: Exception raised by the transport or pyserial
        context: "open", "read" or "write"
        port: Port name, used for open failures
        timeout: Deadline that was exceeded, if known

    Returns:
        FlashSessionError: The classified error (``error`` itself when it is
        already classified).
    """
    if isinstance(error, FlashSessionError):
        return error

    error_str = str(error).lower()

    if isinstance(error, (asyncio.TimeoutError, serial.SerialTimeoutException)) or "timed out" in error_str:
        if context == "read":
            return ReadTimeoutOrError(True, timeout, error)
        if context == "write":
            return WriteTimeout(timeout or 0.0, error)

    if context == "open":
        return OpenFailure(port, error)

    if context == "read":
        return ReadTimeoutOrError(False, original_error=error)

    return WriteFailure("Failed to send data", error)
