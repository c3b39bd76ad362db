"""Upload workspace files to the device as they are saved.

The watcher keeps the saved manifest as its baseline. Each batch of file
system events triggers a fresh scan; files that changed against the baseline
are uploaded through the coordinator, and the baseline moves forward for
every file that made it to the device.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Optional

from watchfiles import Change, awatch

from ..exceptions import MpySyncError
from .comparator import diff_manifests
from .engine import SyncEngine, new_stats
from .manifest import Manifest

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 400


class WorkspaceWatcher:
    """Auto-sync on save for one workspace."""

    def __init__(self, engine: SyncEngine, debounce: int = DEFAULT_DEBOUNCE_MS):
        """Initialize the watcher.

        Args:
            engine: Sync engine whose workspace is watched
            debounce: Milliseconds to collect events into one batch
        """
        self.engine = engine
        self.debounce = debounce
        self.baseline: Optional[Manifest] = None

    def load_baseline(self) -> Manifest:
        """Use the saved manifest as baseline, or snapshot the workspace now.

        Without a saved manifest nothing counts as changed until the next
        save; the watcher never uploads the whole workspace on start.
        """
        manifest = self.engine.manifests.load()
        if manifest is None:
            manifest = self.engine.build_manifest()
            self.engine.manifests.save(manifest)
        self.baseline = manifest
        return manifest

    def watch_filter(self, change: Change, path: str) -> bool:
        """Let through events for paths the ignore rules do not exclude."""
        try:
            rel_path = Path(path).relative_to(self.engine.workspace).as_posix()
        except ValueError:
            return False
        if not rel_path or rel_path == ".":
            return False
        is_dir = change != Change.deleted and Path(path).is_dir()
        return not self.engine.matcher(rel_path, is_dir)

    async def sync_changes(self) -> dict[str, Any]:
        """Upload every file that changed since the baseline.

        A failed upload keeps the file's old baseline entry, so the next
        batch tries it again. Deleted files stay on the device.

        Returns:
            Batch statistics as produced by the sync engine
        """
        baseline = self.baseline or self.load_baseline()
        current = self.engine.build_manifest()
        diff = diff_manifests(baseline, current)
        stats = new_stats()
        files = dict(current.files)

        for rel_path in sorted(diff.changed_or_new):
            try:
                device_path = await self.engine.upload_file(rel_path)
            except MpySyncError as e:
                stats["failed"] += 1
                stats["failed_paths"].append(rel_path)
                self.engine.output.warning(f"Auto-sync of {rel_path} failed: {e}")
                if rel_path in baseline.files:
                    files[rel_path] = baseline.files[rel_path]
                else:
                    del files[rel_path]
                continue
            if device_path is None:
                stats["skipped"] += 1
                continue
            stats["uploads"] += 1
            self.engine.output.success(f"Synced {rel_path} -> {device_path}")

        if diff.deleted:
            logger.debug(f"Not deleting {len(diff.deleted)} removed file(s) on device")
        if not diff.is_empty:
            self.baseline = Manifest(root=current.root, files=files)
            self.engine.manifests.save(self.baseline)
        return stats

    async def watch(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Sync changes until ``stop_event`` is set."""
        if self.baseline is None:
            self.load_baseline()
        logger.debug(f"Watching {self.engine.workspace}")
        async for changes in awatch(
            self.engine.workspace,
            watch_filter=self.watch_filter,
            debounce=self.debounce,
            stop_event=stop_event,
        ):
            logger.debug(f"{len(changes)} workspace change(s)")
            await self.sync_changes()
