"""Interactive serial monitor running as a child process."""

import asyncio
import logging
import os
import sys
from typing import Callable, Optional

from ..exceptions import DeviceError
from ..utils import DEFAULT_BAUD_RATE, DETACH_SEQUENCE

logger = logging.getLogger(__name__)

_EXIT_TIMEOUT = 1.0


def miniterm_command(device: str, baud_rate: int) -> list[str]:
    """Command line for pyserial's miniterm on ``device``."""
    return [sys.executable, "-m", "serial.tools.miniterm", device, str(baud_rate)]


class MonitorSession:
    """Owns the monitor process that shares the serial link.

    The monitor reads from a pseudo-terminal owned by this object so that the
    detach script can be typed into it (miniterm puts its input into raw
    mode, which a plain pipe does not support). Its output goes straight to
    the terminal. On Windows the input is a pipe.
    """

    def __init__(
        self,
        baud_rate: int = DEFAULT_BAUD_RATE,
        command_factory: Callable[[str, int], list[str]] = miniterm_command,
        detach_sequence: tuple[tuple[bytes, float], ...] = DETACH_SEQUENCE,
    ):
        self.baud_rate = baud_rate
        self.command_factory = command_factory
        self.detach_sequence = detach_sequence
        self.device: Optional[str] = None
        self._process: Optional[asyncio.subprocess.Process] = None
        self._input_fd: Optional[int] = None

    @property
    def attached(self) -> bool:
        """Whether the monitor process is alive."""
        return self._process is not None and self._process.returncode is None

    async def attach(self, device: str) -> None:
        """Spawn the monitor against ``device``."""
        if self.attached:
            if device == self.device:
                return
            await self.detach()
        command = self.command_factory(device, self.baud_rate)
        if sys.platform == "win32":
            input_fd, stdin = None, asyncio.subprocess.PIPE
        else:
            input_fd, stdin = os.openpty()
        try:
            # Own session: Ctrl-C in the terminal is for mpysync, not the monitor
            self._process = await asyncio.create_subprocess_exec(
                *command, stdin=stdin, start_new_session=True
            )
        except OSError as e:
            if input_fd is not None:
                os.close(input_fd)
            raise DeviceError(f"Failed to start monitor on {device}: {e}") from None
        finally:
            if input_fd is not None:
                os.close(stdin)
        self._input_fd = input_fd
        self.device = device
        logger.debug(f"Monitor attached to {device} (pid={self._process.pid})")

    async def send(self, data: bytes) -> None:
        """Type raw bytes into the monitor."""
        process = self._process
        if not self.attached or process is None:
            raise DeviceError("Monitor is not attached")
        if self._input_fd is not None:
            try:
                os.write(self._input_fd, data)
            except OSError as e:
                raise DeviceError(f"Monitor input closed: {e}") from e
            return
        if process.stdin is None:
            raise DeviceError("Monitor is not attached")
        process.stdin.write(data)
        await process.stdin.drain()

    async def detach(self) -> None:
        """Ask the monitor to quit and wait until it has released the port.

        Types the escape code, the quit key and a carriage return with a short
        pause after each. A monitor that ignores the script is killed.
        """
        process = self._process
        if process is None:
            return
        if process.returncode is None:
            for data, delay in self.detach_sequence:
                try:
                    await self.send(data)
                except (DeviceError, ConnectionError) as e:
                    logger.debug(f"Monitor stopped accepting input: {e}")
                    break
                await asyncio.sleep(delay)
            try:
                await asyncio.wait_for(process.wait(), timeout=_EXIT_TIMEOUT)
            except asyncio.TimeoutError:
                logger.debug("Monitor ignored the detach sequence, killing it")
                process.kill()
                await process.wait()
        self._process = None
        if self._input_fd is not None:
            os.close(self._input_fd)
            self._input_fd = None
        logger.debug(f"Monitor detached from {self.device}")

    async def reattach(self) -> None:
        """Respawn the monitor against the device it was last attached to."""
        if self.device is None:
            raise DeviceError("Monitor was never attached")
        await self.attach(self.device)

    async def close(self) -> None:
        """Detach and forget the device."""
        await self.detach()
        self.device = None
