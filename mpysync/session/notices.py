"""Rate-limited user warnings about the serial link."""

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Callable, Optional

from ..exceptions import ErrorKind
from ..output import OutputFormatter
from ..utils import DEFAULT_NOTICE_COOLDOWN

logger = logging.getLogger(__name__)

BUSY_NOTICE = (
    "Serial port is busy or not accessible. Close other monitors "
    "(Arduino IDE, Thonny, miniterm) or check permissions."
)
DISCONNECT_NOTICE = (
    "Device disconnected or port not available. Check the cable and power, "
    "then select the port again."
)


class StatusNotifier:
    """Shows busy/disconnect warnings, at most one per cooldown window.

    While :meth:`suppress` is active (the coordinator wraps each operation in
    it) warnings are held back. The latest one is shown, subject to the
    cooldown, when the outermost block exits.
    """

    def __init__(
        self,
        output: Optional[OutputFormatter] = None,
        cooldown: float = DEFAULT_NOTICE_COOLDOWN,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.output = output
        self.cooldown = cooldown
        self._clock = clock
        self._last_notice: Optional[float] = None
        self._suppressed = 0
        self._deferred: Optional[ErrorKind] = None

    @property
    def suppressed(self) -> bool:
        return self._suppressed > 0

    @contextmanager
    def suppress(self) -> Iterator[None]:
        """Hold notices back until the block exits (nestable)."""
        self._suppressed += 1
        try:
            yield
        finally:
            self._suppressed -= 1
            if not self._suppressed and self._deferred is not None:
                kind, self._deferred = self._deferred, None
                self.notify(kind)

    def notify(self, kind: ErrorKind) -> bool:
        """Show the warning for ``kind`` if allowed.

        Returns:
            True if a warning was shown now; a held-back notice returns
            False
        """
        if kind not in (ErrorKind.PORT_BUSY, ErrorKind.TRANSIENT_DISCONNECT):
            return False
        if self.suppressed:
            logger.debug(f"Holding {kind.value} notice until the operation ends")
            self._deferred = kind
            return False
        now = self._clock()
        if self._last_notice is not None and now - self._last_notice < self.cooldown:
            logger.debug(f"Dropped {kind.value} notice inside cooldown window")
            return False
        self._last_notice = now
        message = BUSY_NOTICE if kind == ErrorKind.PORT_BUSY else DISCONNECT_NOTICE
        if self.output is not None:
            self.output.warning(message)
        else:
            logger.warning(message)
        return True
