"""CLI progress display for sync operations.

This module provides a Rich-based progress display fed by the
SyncProgressTracker of the sync engine.
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
)

from .sync.progress import SyncProgressEvent, SyncProgressInfo, SyncProgressTracker
from .utils import format_size

T = TypeVar("T")


class SyncProgressDisplay:
    """Rich-based progress display for batch transfers.

    Shows one bar per batch counting handled files, plus the current file
    and transferred size.
    """

    def __init__(self) -> None:
        self._progress: Optional[Progress] = None
        self._task: Optional[TaskID] = None

    def create_tracker(self) -> SyncProgressTracker:
        """Create a SyncProgressTracker that updates this display."""
        return SyncProgressTracker(callback=self._handle_event)

    @staticmethod
    def _format_details(info: SyncProgressInfo) -> str:
        details = f"{info.path}" if info.path else ""
        if info.bytes_total:
            size = f"{format_size(info.bytes_done)}/{format_size(info.bytes_total)}"
            details = f"{details} ({size})" if details else size
        if info.files_failed:
            details += f" [red]{info.files_failed} failed[/red]"
        return details

    def _handle_event(self, info: SyncProgressInfo) -> None:
        """Handle a progress event from the tracker."""
        if self._progress is None or self._task is None:
            return

        if info.event == SyncProgressEvent.BATCH_START:
            self._progress.update(
                self._task,
                description=info.action,
                total=info.files_total,
                completed=0,
                details=self._format_details(info),
            )
        elif info.event == SyncProgressEvent.FILE_START:
            self._progress.update(self._task, details=self._format_details(info))
        elif info.event in (
            SyncProgressEvent.FILE_COMPLETE,
            SyncProgressEvent.FILE_FAILED,
        ):
            self._progress.update(
                self._task,
                completed=info.files_done + info.files_failed,
                details=self._format_details(info),
            )
        elif info.event == SyncProgressEvent.BATCH_COMPLETE:
            self._progress.update(
                self._task,
                description=f"{info.action} complete",
                details=self._format_details(info),
            )

    def __enter__(self) -> "SyncProgressDisplay":
        """Enter context manager - start progress display."""
        self._progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TextColumn("[cyan]{task.fields[details]}"),
            TimeElapsedColumn(),
            refresh_per_second=4,
        )
        self._progress.__enter__()
        self._task = self._progress.add_task("Preparing...", total=None, details="")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager - stop progress display."""
        if self._progress is not None:
            self._progress.__exit__(exc_type, exc_val, exc_tb)
            self._progress = None
            self._task = None


def run_with_progress(
    workflow: Callable[[Optional[SyncProgressTracker]], Awaitable[T]],
    show_progress: bool = True,
) -> T:
    """Run an async sync workflow, with a Rich progress display if wanted.

    Args:
        workflow: Engine method taking an optional progress tracker,
            e.g. ``engine.push_all``
        show_progress: Display a progress bar (off for quiet/JSON output)

    Returns:
        Whatever the workflow returns
    """
    if not show_progress:
        return asyncio.run(workflow(None))

    with SyncProgressDisplay() as display:
        tracker = display.create_tracker()
        return asyncio.run(workflow(tracker))
