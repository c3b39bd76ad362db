"""Link arbitration between the monitor and device operations."""

from .coordinator import SessionCoordinator
from .monitor import MonitorSession
from .notices import StatusNotifier
from .state import LinkState, SessionState

__all__ = [
    "LinkState",
    "MonitorSession",
    "SessionCoordinator",
    "SessionState",
    "StatusNotifier",
]
