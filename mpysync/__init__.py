"""mpysync - mirror a workspace to a MicroPython board over one serial link."""

from .client import DeviceClient
from .exceptions import (
    DeviceError,
    ErrorKind,
    LocalIOError,
    MalformedResponseError,
    MpySyncConfigError,
    MpySyncError,
    NoDiffStateError,
    OperationCancelledError,
    OperationPreemptedError,
    PortBusyError,
    PortNotSelectedError,
    RemoteExistsError,
    TransientDisconnectError,
    classify_error,
)
from .utils import format_size, normalize_port

__version__ = "0.1.0"

__all__ = [
    "DeviceClient",
    "DeviceError",
    "ErrorKind",
    "LocalIOError",
    "MalformedResponseError",
    "MpySyncConfigError",
    "MpySyncError",
    "NoDiffStateError",
    "OperationCancelledError",
    "OperationPreemptedError",
    "PortBusyError",
    "PortNotSelectedError",
    "RemoteExistsError",
    "TransientDisconnectError",
    "classify_error",
    "format_size",
    "normalize_port",
]
