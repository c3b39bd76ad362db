"""Progress reporting for batch transfers."""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional


class SyncProgressEvent(str, Enum):
    """Events emitted while a batch runs."""

    BATCH_START = "batch_start"
    """A batch is about to transfer its files"""

    FILE_START = "file_start"
    """A single transfer started"""

    FILE_COMPLETE = "file_complete"
    """A single transfer finished"""

    FILE_FAILED = "file_failed"
    """A single transfer failed and was skipped"""

    BATCH_COMPLETE = "batch_complete"
    """Every file of the batch was handled"""


@dataclass
class SyncProgressInfo:
    """Snapshot of batch progress passed to the callback."""

    event: SyncProgressEvent
    action: str
    """What the batch does, e.g. "Uploading" """

    path: str = ""
    """File the event is about (empty for batch events)"""

    files_done: int = 0
    files_failed: int = 0
    files_total: int = 0
    bytes_done: int = 0
    bytes_total: int = 0
    error: Optional[str] = None


class SyncProgressTracker:
    """Counts transferred files and bytes and forwards events to a callback."""

    def __init__(self, callback: Optional[Callable[[SyncProgressInfo], None]] = None):
        self.callback = callback
        self.action = ""
        self.files_done = 0
        self.files_failed = 0
        self.files_total = 0
        self.bytes_done = 0
        self.bytes_total = 0

    def _emit(
        self, event: SyncProgressEvent, path: str = "", error: Optional[str] = None
    ) -> None:
        if self.callback is None:
            return
        self.callback(
            SyncProgressInfo(
                event=event,
                action=self.action,
                path=path,
                files_done=self.files_done,
                files_failed=self.files_failed,
                files_total=self.files_total,
                bytes_done=self.bytes_done,
                bytes_total=self.bytes_total,
                error=error,
            )
        )

    def start_batch(self, action: str, files_total: int, bytes_total: int = 0) -> None:
        self.action = action
        self.files_done = 0
        self.files_failed = 0
        self.files_total = files_total
        self.bytes_done = 0
        self.bytes_total = bytes_total
        self._emit(SyncProgressEvent.BATCH_START)

    def start_file(self, path: str) -> None:
        self._emit(SyncProgressEvent.FILE_START, path)

    def complete_file(self, path: str, size: int = 0) -> None:
        self.files_done += 1
        self.bytes_done += size
        self._emit(SyncProgressEvent.FILE_COMPLETE, path)

    def fail_file(self, path: str, error: str, size: int = 0) -> None:
        self.files_failed += 1
        self.bytes_done += size
        self._emit(SyncProgressEvent.FILE_FAILED, path, error)

    def complete_batch(self) -> None:
        self._emit(SyncProgressEvent.BATCH_COMPLETE)
