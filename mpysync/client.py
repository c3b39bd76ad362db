"""Async client for the external device tool.

The device tool is a separate program that speaks the board's wire protocol.
It is started once per verb::

    <tool...> --baud 115200 ls_typed --port /dev/ttyUSB0 --path /lib

and answers with plain text or JSON on stdout, or error text on stderr.
:class:`DeviceClient` only builds those command lines, classifies failures
and decodes the results. Deciding *when* a call may run is the job of
:class:`~mpysync.session.SessionCoordinator`.
"""

import asyncio
import json
import logging
from typing import Any, Optional

from .exceptions import (
    DeviceError,
    ErrorKind,
    MalformedResponseError,
    OperationCancelledError,
    PortNotSelectedError,
    classify_error,
    error_from_output,
)
from .models import FileInfo, RemoteEntry, RemoteStat, WipeResult, parse_entries
from .session.notices import StatusNotifier
from .utils import (
    DEFAULT_BAUD_RATE,
    DEFAULT_LIST_TIMEOUT,
    DEFAULT_RETRY_DELAY,
    is_concrete_port,
    normalize_port,
)

logger = logging.getLogger(__name__)


class DeviceClient:
    """Runs device tool verbs against one serial port."""

    def __init__(
        self,
        port: Optional[str],
        tool: list[str],
        baud_rate: int = DEFAULT_BAUD_RATE,
        notifier: Optional[StatusNotifier] = None,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        list_timeout: float = DEFAULT_LIST_TIMEOUT,
    ):
        """Initialize device client.

        Args:
            port: Serial port ("auto" or empty means not selected yet)
            tool: Command line that starts the device tool
            baud_rate: Serial speed passed to every call
            notifier: Receives busy/disconnect failures for user warnings
            retry_delay: Delay before retrying a disconnected call (seconds)
            list_timeout: Timeout for listing calls (seconds)
        """
        if not tool:
            raise ValueError("Device tool command must not be empty")
        self.port = normalize_port(port) or "auto"
        self.tool = list(tool)
        self.baud_rate = baud_rate
        self.notifier = notifier
        self.retry_delay = retry_delay
        self.list_timeout = list_timeout
        self._process: Optional[asyncio.subprocess.Process] = None
        self._cancelled = False
        self._running = False
        self.calls = 0

    @property
    def has_port(self) -> bool:
        return is_concrete_port(self.port)

    def set_port(self, port: Optional[str]) -> None:
        self.port = normalize_port(port) or "auto"

    def _require_port(self) -> str:
        if not self.has_port:
            raise PortNotSelectedError()
        return self.port

    def build_command(
        self, verb: str, *args: str, port: Optional[str] = None
    ) -> list[str]:
        """Build the full command line for one verb."""
        command = [*self.tool, "--baud", str(self.baud_rate), verb]
        if port is not None:
            command += ["--port", port]
        command += list(args)
        return command

    async def _exec(
        self, command: list[str], timeout: Optional[float]
    ) -> tuple[int, str, str]:
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise DeviceError(f"Device tool not found: {command[0]}") from None
        except OSError as e:
            raise DeviceError(f"Failed to start device tool: {e}") from None

        self._process = process
        try:
            if timeout is None:
                stdout, stderr = await process.communicate()
            else:
                try:
                    stdout, stderr = await asyncio.wait_for(
                        process.communicate(), timeout=timeout
                    )
                except asyncio.TimeoutError:
                    process.kill()
                    await process.wait()
                    return (
                        -1,
                        "",
                        f"device disconnected: no response within {timeout:g}s",
                    )
        finally:
            if self._process is process:
                self._process = None

        return (
            process.returncode if process.returncode is not None else -1,
            stdout.decode(errors="replace"),
            stderr.decode(errors="replace"),
        )

    async def _run(
        self,
        verb: str,
        *args: str,
        port_required: bool = True,
        timeout: Optional[float] = None,
    ) -> str:
        """Run one verb, retrying a transient disconnect exactly once.

        Returns:
            The tool's stdout

        Raises:
            PortNotSelectedError: No concrete port is configured
            OperationCancelledError: The process was killed via :meth:`cancel`
            DeviceError: The tool failed (subclass per error kind)
        """
        port = self._require_port() if port_required else None
        command = self.build_command(verb, *args, port=port)
        self._cancelled = False
        self._running = True
        try:
            return await self._attempt(verb, command, timeout)
        finally:
            self._running = False

    async def _attempt(
        self, verb: str, command: list[str], timeout: Optional[float]
    ) -> str:
        for attempt in range(2):
            logger.debug(f"Running device tool (attempt {attempt + 1}): {command}")
            self.calls += 1
            returncode, stdout, stderr = await self._exec(command, timeout)
            if self._cancelled:
                raise OperationCancelledError(f"{verb} was cancelled")
            if returncode == 0:
                return stdout

            message = stderr.strip() or stdout.strip() or f"exit code {returncode}"
            kind = classify_error(message)
            if attempt == 0 and kind == ErrorKind.TRANSIENT_DISCONNECT:
                logger.debug(
                    f"{verb} hit a transient disconnect, retrying in "
                    f"{self.retry_delay}s: {message}"
                )
                await asyncio.sleep(self.retry_delay)
                if self._cancelled:
                    raise OperationCancelledError(f"{verb} was cancelled")
                continue

            logger.debug(f"{verb} failed ({kind.value}): {message}")
            if self.notifier is not None:
                self.notifier.notify(kind)
            raise error_from_output(message, verb=verb)

        # Unreachable: the second attempt always returns or raises
        raise DeviceError(f"{verb} failed", verb=verb)

    def cancel(self) -> bool:
        """Cancel the running verb, killing its tool process if one is alive.

        A verb waiting to retry gives up instead of starting another process.

        Returns:
            True if a verb was running
        """
        if not self._running:
            return False
        self._cancelled = True
        process = self._process
        if process is not None and process.returncode is None:
            logger.debug(f"Killing device tool process (pid={process.pid})")
            process.kill()
        return True

    @staticmethod
    def _decode_json(text: str, verb: str) -> Any:
        try:
            return json.loads(text.strip() or "null")
        except json.JSONDecodeError as e:
            raise MalformedResponseError(
                f"Unparseable {verb} response: {e}", verb=verb
            ) from e

    # =========================================================================
    # Listing verbs
    # =========================================================================

    async def devs(self) -> list[str]:
        """Enumerate serial ports; an empty list when the tool fails."""
        try:
            stdout = await self._run(
                "devs", port_required=False, timeout=self.list_timeout
            )
        except DeviceError as e:
            logger.warning(f"Could not enumerate serial ports: {e}")
            return []
        return [line.strip() for line in stdout.splitlines() if line.strip()]

    async def ls(self, path: str) -> str:
        return await self._run("ls", "--path", path, timeout=self.list_timeout)

    async def ls_typed(self, path: str) -> list[RemoteEntry]:
        """List the immediate children of ``path``.

        A malformed payload yields an empty list; link errors propagate.
        """
        stdout = await self._run("ls_typed", "--path", path, timeout=self.list_timeout)
        try:
            payload = self._decode_json(stdout, "ls_typed")
        except MalformedResponseError as e:
            logger.warning(str(e))
            return []
        return parse_entries(payload, RemoteEntry.from_dict)

    async def tree_stats(self, path: str) -> list[RemoteStat]:
        """Recursively list ``path`` with sizes.

        A malformed payload yields an empty list; link errors propagate.
        """
        stdout = await self._run(
            "tree_stats", "--path", path, timeout=self.list_timeout
        )
        try:
            payload = self._decode_json(stdout, "tree_stats")
        except MalformedResponseError as e:
            logger.warning(str(e))
            return []
        return parse_entries(payload, RemoteStat.from_dict)

    async def file_exists(self, path: str) -> bool:
        """Return True if ``path`` exists; any tool failure counts as missing."""
        self._require_port()
        try:
            stdout = await self._run(
                "file_exists", "--path", path, timeout=self.list_timeout
            )
        except DeviceError as e:
            logger.debug(f"file_exists({path}) failed, assuming missing: {e}")
            return False
        return stdout.strip() == "exists"

    async def file_info(self, path: str) -> Optional[FileInfo]:
        """Return mode/size/type of ``path``, None if unavailable."""
        self._require_port()
        try:
            stdout = await self._run(
                "file_info", "--path", path, timeout=self.list_timeout
            )
        except DeviceError as e:
            logger.debug(f"file_info({path}) failed: {e}")
            return None
        return FileInfo.parse(stdout)

    # =========================================================================
    # Mutating verbs
    # =========================================================================

    async def mkdir(self, path: str) -> None:
        await self._run("mkdir", "--path", path)

    async def cp_from(self, device_path: str, local_path: str) -> None:
        """Download a device file, overwriting the local copy."""
        await self._run("cp_from", "--src", device_path, "--dst", local_path)

    async def cp_to(self, local_path: str, device_path: str) -> None:
        await self._run("cp_to", "--src", local_path, "--dst", device_path)

    async def upload_replacing(self, local_path: str, device_path: str) -> None:
        """Upload a file, replacing the device copy entirely."""
        await self._run("upload_replacing", "--src", local_path, "--dst", device_path)

    async def delete_any(self, path: str) -> None:
        await self._run("delete_any", "--path", path)

    async def delete_folder_recursive(self, path: str) -> None:
        await self._run("delete_folder_recursive", "--path", path)

    async def mv(self, src: str, dst: str) -> None:
        await self._run("mv", "--src", src, "--dst", dst)

    async def wipe_path(self, path: str) -> WipeResult:
        """Delete everything below ``path``.

        Raises:
            MalformedResponseError: The tool's summary could not be parsed
        """
        stdout = await self._run("wipe_path", "--path", path)
        payload = self._decode_json(stdout, "wipe_path")
        if not isinstance(payload, dict):
            raise MalformedResponseError(
                "wipe_path did not return a JSON object", verb="wipe_path"
            )
        return WipeResult.from_dict(payload)

    async def run_file(self, local_path: str) -> str:
        """Execute a local script on the device and return its output."""
        return await self._run("run_file", "--src", local_path)

    async def reset(self) -> None:
        """Soft-reset the board; a no-op when no port is selected."""
        if not self.has_port:
            return
        try:
            await self._run("reset")
        except DeviceError as e:
            logger.debug(f"Reset failed: {e}")
