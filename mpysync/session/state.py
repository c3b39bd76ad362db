"""Session state owned by a single coordinator."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class LinkState(str, Enum):
    """States of the shared serial link."""

    IDLE = "idle"
    """Nobody holds the link"""

    MONITOR_ATTACHED = "monitor_attached"
    """The interactive monitor holds the link"""

    OPERATION_RUNNING = "operation_running"
    """A device tool call holds the link"""

    SUSPENDING = "suspending"
    """The monitor is being detached before an operation"""

    RESUMING = "resuming"
    """The monitor is being respawned after an operation"""


@dataclass
class SessionState:
    """Mutable link state, passed by reference to the parts that need it."""

    link_state: LinkState = LinkState.IDLE
    busy: bool = False
    """An operation is executing"""

    monitor_attached: bool = False
    """The monitor should hold the link between operations"""

    monitor_device: Optional[str] = None
    """Device the monitor was attached to, used when respawning"""

    pending: int = 0
    """Number of operations waiting for the link"""

    def reset(self) -> None:
        """Return to idle with nothing attached or queued."""
        self.link_state = LinkState.IDLE
        self.busy = False
        self.monitor_attached = False
        self.monitor_device = None
        self.pending = 0
