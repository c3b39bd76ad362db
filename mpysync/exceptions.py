"""Exceptions and error classification for mpysync.

Every failure reported by the device tool arrives as free text. That text is
turned into an :class:`ErrorKind` exactly once, by :func:`classify_error`;
everything downstream switches on the enum or on the exception type.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Closed set of failure categories for link operations."""

    PORT_NOT_SELECTED = "port_not_selected"
    TRANSIENT_DISCONNECT = "transient_disconnect"
    PORT_BUSY = "port_busy"
    MALFORMED_RESPONSE = "malformed_response"
    LOCAL_IO = "local_io"
    ALREADY_EXISTS = "already_exists"
    OTHER = "other"


DISCONNECT_MARKERS: tuple[str, ...] = (
    "device disconnected",
    "serial read returned no data",
    "device reports readiness to read",
    "device not configured",
    "serial device not available",
    "no such file or directory",
    "serial port not found",
)

BUSY_MARKERS: tuple[str, ...] = (
    "resource busy",
    "permission denied",
    "port is already open",
    "busy or permission denied",
    "could not open port",
    "could not open serial port",
)

EXISTS_MARKERS: tuple[str, ...] = (
    "file exists",
    "already exists",
    "eexist",
)


def classify_error(text: Optional[str]) -> ErrorKind:
    """Map raw tool error text to an :class:`ErrorKind`.

    Disconnect markers win over busy markers: "could not open port ...: No
    such file or directory" right after a port handover is a vanished device,
    not a busy one.

    Args:
        text: Error output of a failed tool invocation

    Returns:
        The matching error kind, ``ErrorKind.OTHER`` when nothing matches

    Examples:
        >>> classify_error("OSError: [Errno 16] Resource busy")
        <ErrorKind.PORT_BUSY: 'port_busy'>
        >>> classify_error("device disconnected")
        <ErrorKind.TRANSIENT_DISCONNECT: 'transient_disconnect'>
    """
    if not text:
        return ErrorKind.OTHER
    lowered = text.lower()
    if any(marker in lowered for marker in DISCONNECT_MARKERS):
        return ErrorKind.TRANSIENT_DISCONNECT
    if any(marker in lowered for marker in BUSY_MARKERS):
        return ErrorKind.PORT_BUSY
    if any(marker in lowered for marker in EXISTS_MARKERS):
        return ErrorKind.ALREADY_EXISTS
    return ErrorKind.OTHER


class MpySyncError(Exception):
    """Base exception for all mpysync errors."""

    kind: ErrorKind = ErrorKind.OTHER


class MpySyncConfigError(MpySyncError):
    """Invalid or unreadable configuration."""


class PortNotSelectedError(MpySyncError):
    """No concrete serial port has been chosen."""

    kind = ErrorKind.PORT_NOT_SELECTED

    def __init__(self, message: str = "Select a specific serial port first"):
        super().__init__(message)


class DeviceError(MpySyncError):
    """The device tool failed for a reason that is not retried."""

    def __init__(self, message: str, verb: Optional[str] = None):
        super().__init__(message)
        self.verb = verb


class TransientDisconnectError(DeviceError):
    """The device vanished or stopped answering."""

    kind = ErrorKind.TRANSIENT_DISCONNECT


class PortBusyError(DeviceError):
    """The serial port is held by another process."""

    kind = ErrorKind.PORT_BUSY


class RemoteExistsError(DeviceError):
    """The target path already exists on the device."""

    kind = ErrorKind.ALREADY_EXISTS


class MalformedResponseError(DeviceError):
    """The device tool returned a payload that could not be parsed."""

    kind = ErrorKind.MALFORMED_RESPONSE


class LocalIOError(MpySyncError):
    """Reading or writing a local file failed."""

    kind = ErrorKind.LOCAL_IO

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class OperationPreemptedError(MpySyncError):
    """A queued operation was discarded before it started."""


class OperationCancelledError(MpySyncError):
    """The running device tool process was killed."""


class NoDiffStateError(MpySyncError):
    """A diff-based sync was requested without a prior check."""

    def __init__(self, message: str = "No diff result available, run a check first"):
        super().__init__(message)


_KIND_TO_ERROR: dict[ErrorKind, type[DeviceError]] = {
    ErrorKind.TRANSIENT_DISCONNECT: TransientDisconnectError,
    ErrorKind.PORT_BUSY: PortBusyError,
    ErrorKind.ALREADY_EXISTS: RemoteExistsError,
    ErrorKind.MALFORMED_RESPONSE: MalformedResponseError,
}


def error_from_output(text: str, verb: Optional[str] = None) -> DeviceError:
    """Build the exception matching the classified tool output."""
    error_cls = _KIND_TO_ERROR.get(classify_error(text), DeviceError)
    message = text.strip() or "device tool failed"
    return error_cls(message, verb=verb)
