"""Single-slot arbitration of the serial link.

Every device operation runs through :meth:`SessionCoordinator.run`. Only one
operation holds the link at a time, operations start in submission order, and
an operation that finds the interactive monitor attached first detaches it and
respawns it afterwards.
"""

import asyncio
import logging
from collections import deque
from contextlib import nullcontext
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, TypeVar

from ..exceptions import MpySyncError, OperationPreemptedError
from ..utils import DEFAULT_PRE_LIST_DELAY, DEFAULT_SETTLE_DELAY
from .monitor import MonitorSession
from .notices import StatusNotifier
from .state import LinkState, SessionState

if TYPE_CHECKING:
    from ..client import DeviceClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionCoordinator:
    """Serializes link operations and hands the link over from the monitor."""

    def __init__(
        self,
        client: "DeviceClient",
        monitor: Optional[MonitorSession] = None,
        notifier: Optional[StatusNotifier] = None,
        auto_suspend: bool = True,
        settle_delay: float = DEFAULT_SETTLE_DELAY,
        pre_list_delay: float = DEFAULT_PRE_LIST_DELAY,
        state: Optional[SessionState] = None,
    ):
        """Initialize the coordinator.

        Args:
            client: Device client whose running process :meth:`cancel` kills
            monitor: Interactive monitor sharing the link, if any
            notifier: Link warnings, silenced while an operation runs
            auto_suspend: Detach/reattach the monitor around operations
            settle_delay: Pause after the monitor released the port (seconds)
            pre_list_delay: Pause before listing operations (seconds)
            state: Session state to use (a fresh one by default)
        """
        self.client = client
        self.monitor = monitor
        self.notifier = notifier
        self.auto_suspend = auto_suspend
        self.settle_delay = settle_delay
        self.pre_list_delay = pre_list_delay
        self.state = state or SessionState()
        self._waiters: deque[asyncio.Future] = deque()

    # =========================================================================
    # Slot handling
    # =========================================================================

    async def _acquire(self) -> None:
        if not self.state.busy and not self._waiters:
            self.state.busy = True
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        self.state.pending = len(self._waiters)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled() and waiter.exception() is None:
                # The link was handed to us just before the cancellation
                self._release()
            else:
                try:
                    self._waiters.remove(waiter)
                except ValueError:
                    pass
                self.state.pending = len(self._waiters)
            raise

    def _release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                self.state.pending = len(self._waiters)
                waiter.set_result(None)
                return
        self.state.busy = False
        self.state.pending = 0

    def preempt(self) -> int:
        """Discard every waiting operation.

        The operation currently holding the link is not affected. Each
        discarded caller receives :class:`OperationPreemptedError`.

        Returns:
            Number of discarded operations
        """
        count = 0
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_exception(
                    OperationPreemptedError("Operation discarded by a newer request")
                )
                count += 1
        self.state.pending = 0
        if count:
            logger.debug(f"Preempted {count} queued operation(s)")
        return count

    # =========================================================================
    # Operations
    # =========================================================================

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        preempt: bool = False,
        listing: bool = False,
        label: str = "",
    ) -> T:
        """Run ``operation`` once the link is free.

        Args:
            operation: Zero-argument coroutine function doing the device calls
            preempt: Discard waiting operations so this one runs next
            listing: Apply the pre-listing settle delay
            label: Name used in debug logs

        Returns:
            Whatever ``operation`` returns

        Raises:
            OperationPreemptedError: A later request preempted this one
                before it started
        """
        if preempt:
            self.preempt()
        await self._acquire()
        try:
            return await self._execute(operation, listing, label)
        finally:
            self._release()

    async def _execute(
        self,
        operation: Callable[[], Awaitable[T]],
        listing: bool,
        label: str,
    ) -> T:
        suspended: Optional[MonitorSession] = None
        monitor = self.monitor
        if self.auto_suspend and monitor is not None and monitor.attached:
            self.state.link_state = LinkState.SUSPENDING
            logger.debug(f"Detaching monitor for {label or 'operation'}")
            await monitor.detach()
            await asyncio.sleep(self.settle_delay)
            suspended = monitor

        if listing and self.pre_list_delay > 0:
            await asyncio.sleep(self.pre_list_delay)

        self.state.link_state = LinkState.OPERATION_RUNNING
        try:
            with self.notifier.suppress() if self.notifier else nullcontext():
                return await operation()
        finally:
            if suspended is not None:
                await self._resume(suspended)
            elif self.monitor is not None and self.monitor.attached:
                self.state.link_state = LinkState.MONITOR_ATTACHED
            else:
                self.state.link_state = LinkState.IDLE

    async def _resume(self, monitor: MonitorSession) -> None:
        self.state.link_state = LinkState.RESUMING
        try:
            await monitor.reattach()
        except MpySyncError as e:
            logger.warning(f"Could not reattach monitor: {e}")
            self.state.monitor_attached = False
            self.state.link_state = LinkState.IDLE
            return
        self.state.link_state = LinkState.MONITOR_ATTACHED

    async def cancel(self) -> bool:
        """Kill the device tool process of the running operation.

        Returns:
            True if a device tool call was running
        """
        return self.client.cancel()

    # =========================================================================
    # Monitor
    # =========================================================================

    async def open_monitor(self, device: str) -> None:
        """Attach the interactive monitor once the link is free."""
        if self.monitor is None:
            self.monitor = MonitorSession()
        await self._acquire()
        try:
            await self.monitor.attach(device)
            self.state.monitor_attached = True
            self.state.monitor_device = device
            self.state.link_state = LinkState.MONITOR_ATTACHED
        finally:
            self._release()

    async def close_monitor(self) -> None:
        """Detach the interactive monitor once the link is free."""
        if self.monitor is None:
            return
        await self._acquire()
        try:
            await self.monitor.close()
            self.state.monitor_attached = False
            self.state.monitor_device = None
            self.state.link_state = LinkState.IDLE
        finally:
            self._release()

    async def release(self) -> None:
        """Give the link up: drop waiting work and close the monitor."""
        self.preempt()
        if self.monitor is not None:
            await self.monitor.close()
        self.state.monitor_attached = False
        self.state.monitor_device = None
        if not self.state.busy:
            self.state.reset()
