"""Sync engine composing manifests, diffs, the tree cache and the device link.

Every workflow runs as one coordinator operation, so the interactive monitor
is detached once per batch rather than once per file.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from ..client import DeviceClient
from ..exceptions import (
    DeviceError,
    LocalIOError,
    NoDiffStateError,
    RemoteExistsError,
)
from ..models import RemoteEntry, WipeResult
from ..output import OutputFormatter
from ..session.coordinator import SessionCoordinator
from ..utils import (
    STATE_DIR_NAME,
    ancestor_paths,
    normalize_root,
    parent_path,
    to_device_path,
    to_local_relative,
)
from .comparator import CrossDiff, cross_diff
from .ignore import IgnoreMatcher, create_ignore_matcher, write_default_ignore_file
from .manifest import (
    MANIFEST_FILE_NAME,
    Manifest,
    ManifestBuilder,
    ManifestStore,
    create_empty_manifest,
)
from .markers import DiffMarkers
from .progress import SyncProgressTracker
from .tree import Lister, RemoteTreeCache

logger = logging.getLogger(__name__)


class SyncDirection(str, Enum):
    """Direction of a diff-based sync."""

    TO_DEVICE = "to_device"
    """Upload changed and local-only files"""

    TO_LOCAL = "to_local"
    """Download changed and device-only files"""


def coordinated_lister(coordinator: SessionCoordinator, client: DeviceClient) -> Lister:
    """Directory lister for the tree cache that goes through the coordinator."""

    async def lister(path: str) -> list[RemoteEntry]:
        return await coordinator.run(
            lambda: client.ls_typed(path), listing=True, label=f"ls {path}"
        )

    return lister


def new_stats() -> dict[str, Any]:
    """Empty statistics of a batch."""
    return {
        "uploads": 0,
        "downloads": 0,
        "dirs_created": 0,
        "skipped": 0,
        "failed": 0,
        "failed_paths": [],
    }


class SyncEngine:
    """Push, pull and diff-based sync between a workspace and a device."""

    def __init__(
        self,
        client: DeviceClient,
        coordinator: SessionCoordinator,
        tree: RemoteTreeCache,
        markers: DiffMarkers,
        workspace: Path,
        root_path: str = "/",
        output: Optional[OutputFormatter] = None,
        matcher: Optional[IgnoreMatcher] = None,
    ):
        """Initialize sync engine.

        Args:
            client: Device tool client
            coordinator: Link arbitration shared by every device call
            tree: Device tree cache to keep current after transfers
            markers: Storage for the last check result
            workspace: Local workspace root
            root_path: Device directory mirroring the workspace root
            output: Output formatter for per-file problems
            matcher: Ignore rules (default: built from the workspace)
        """
        self.client = client
        self.coordinator = coordinator
        self.tree = tree
        self.markers = markers
        self.workspace = Path(workspace)
        self.root_path = normalize_root(root_path)
        self.output = output or OutputFormatter()
        self.matcher = matcher or create_ignore_matcher(self.workspace)
        self.manifests = ManifestStore(self.workspace)

    # =========================================================================
    # Helpers
    # =========================================================================

    def device_path(self, rel_path: str) -> str:
        return to_device_path(rel_path, self.root_path)

    def relative_path(self, device_path: str) -> str:
        return to_local_relative(device_path, self.root_path)

    def build_manifest(self) -> Manifest:
        """Snapshot the workspace, warning about skipped paths."""
        builder = ManifestBuilder(self.matcher)
        manifest = builder.build(self.workspace)
        if builder.skipped:
            self.output.warning(
                f"Skipped {len(builder.skipped)} unreadable path(s) in {self.workspace}"
            )
        return manifest

    def _fail(
        self, stats: dict[str, Any], path: str, action: str, error: Exception
    ) -> None:
        stats["failed"] += 1
        stats["failed_paths"].append(path)
        logger.debug(f"Failed to {action} {path}: {error}")
        self.output.warning(f"Failed to {action} {path}: {error}")

    async def _ensure_dir(
        self, device_dir: str, stats: Optional[dict[str, Any]] = None
    ) -> None:
        """Create a device directory, tolerating one that already exists."""
        created = False
        try:
            await self.client.mkdir(device_dir)
            created = True
        except RemoteExistsError:
            pass
        except DeviceError as e:
            # The upload that follows reports the real problem
            logger.debug(f"mkdir {device_dir} failed: {e}")
            return
        if created and stats is not None:
            stats["dirs_created"] += 1
        if self.tree.add_node(device_dir, True) and created:
            self.tree.reset_dir(device_dir)

    async def _ensure_parents(
        self, rel_path: str, ensured: set[str], stats: dict[str, Any]
    ) -> None:
        for ancestor in ancestor_paths(rel_path):
            if ancestor in ensured:
                continue
            ensured.add(ancestor)
            await self._ensure_dir(self.device_path(ancestor), stats)

    def _track_remote_file(self, device_path: str) -> None:
        rel_path = self.relative_path(device_path)
        for ancestor in ancestor_paths(rel_path):
            self.tree.add_node(self.device_path(ancestor), True)
        self.tree.add_node(device_path, False)

    async def _upload(
        self,
        rel_path: str,
        ensured: set[str],
        stats: dict[str, Any],
        tracker: SyncProgressTracker,
        size: int = 0,
    ) -> bool:
        device_path = self.device_path(rel_path)
        tracker.start_file(rel_path)
        try:
            await self._ensure_parents(rel_path, ensured, stats)
            await self.client.upload_replacing(
                str(self.workspace / rel_path), device_path
            )
        except DeviceError as e:
            self._fail(stats, rel_path, "upload", e)
            tracker.fail_file(rel_path, str(e), size)
            return False
        stats["uploads"] += 1
        self.tree.add_node(device_path, False)
        tracker.complete_file(rel_path, size)
        return True

    async def _download(
        self,
        device_path: str,
        stats: dict[str, Any],
        tracker: SyncProgressTracker,
        size: int = 0,
    ) -> bool:
        rel_path = self.relative_path(device_path)
        local_path = self.workspace / rel_path
        tracker.start_file(rel_path)
        try:
            try:
                local_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise LocalIOError(
                    f"Cannot create {local_path.parent}: {e}", str(local_path)
                ) from e
            await self.client.cp_from(device_path, str(local_path))
        except (DeviceError, LocalIOError) as e:
            self._fail(stats, rel_path, "download", e)
            tracker.fail_file(rel_path, str(e), size)
            return False
        stats["downloads"] += 1
        self._track_remote_file(device_path)
        tracker.complete_file(rel_path, size)
        return True

    async def _mirror_manifest(self, manifest_path: Path) -> None:
        """Copy the saved manifest to the device (best effort)."""
        device_dir = self.device_path(STATE_DIR_NAME)
        await self._ensure_dir(device_dir)
        try:
            await self.client.cp_to(
                str(manifest_path), f"{device_dir}/{MANIFEST_FILE_NAME}"
            )
        except DeviceError as e:
            self.output.warning(f"Could not copy manifest to the device: {e}")

    # =========================================================================
    # Bulk workflows
    # =========================================================================

    async def push_all(self, progress: Optional[SyncProgressTracker] = None) -> dict:
        """Upload every non-ignored workspace file, replacing device copies.

        Args:
            progress: Tracker receiving per-file events

        Returns:
            Statistics dictionary

        Examples:
            >>> stats = await engine.push_all()
            >>> print(f"Uploaded {stats['uploads']} files")
        """
        manifest = self.build_manifest()
        tracker = progress or SyncProgressTracker()

        async def batch() -> dict:
            stats = new_stats()
            ensured: set[str] = set()
            tracker.start_batch("Uploading", len(manifest), manifest.total_size)
            if self.root_path != "/":
                await self._ensure_dir(self.root_path, stats)
            for rel_path in sorted(manifest.files):
                size = manifest.files[rel_path].size
                await self._upload(rel_path, ensured, stats, tracker, size)
            tracker.complete_batch()

            try:
                manifest_path = self.manifests.save(manifest)
            except OSError as e:
                self.output.warning(f"Could not save manifest: {e}")
            else:
                await self._mirror_manifest(manifest_path)
            return stats

        stats = await self.coordinator.run(batch, preempt=True, label="push")
        if stats["failed"] == 0:
            self.markers.clear()
        return stats

    async def pull_all(self, progress: Optional[SyncProgressTracker] = None) -> dict:
        """Download every non-ignored device file, overwriting local copies."""
        tracker = progress or SyncProgressTracker()

        async def batch() -> dict:
            stats = new_stats()
            listing = await self.client.tree_stats(self.root_path)
            files = []
            for stat in listing:
                rel_path = self.relative_path(stat.path)
                if stat.is_dir or not rel_path or self.matcher(rel_path, False):
                    continue
                files.append(stat)
            files.sort(key=lambda stat: stat.path)

            tracker.start_batch("Downloading", len(files), sum(s.size for s in files))
            for stat in files:
                await self._download(stat.path, stats, tracker, stat.size)
            tracker.complete_batch()
            return stats

        stats = await self.coordinator.run(batch, preempt=True, label="pull")
        if stats["failed"] == 0:
            self.markers.clear()
        return stats

    async def check_diffs(self) -> CrossDiff:
        """Compare the workspace with the device and store the result."""
        manifest = self.build_manifest()
        listing = await self.coordinator.run(
            lambda: self.client.tree_stats(self.root_path),
            preempt=True,
            listing=True,
            label="check",
        )
        diff = cross_diff(manifest, listing, self.matcher, self.root_path)
        self.markers.set(diff, self.root_path)
        logger.debug(
            f"Check found {len(diff.changed)} changed, {len(diff.local_only)} "
            f"local-only and {len(diff.remote_only)} device-only files"
        )
        return diff

    async def sync_diffs(
        self,
        direction: SyncDirection,
        progress: Optional[SyncProgressTracker] = None,
    ) -> dict:
        """Transfer the files flagged by the last check.

        Raises:
            NoDiffStateError: No check result is stored
        """
        diff = self.markers.diff
        if diff is None:
            raise NoDiffStateError()
        tracker = progress or SyncProgressTracker()
        synced: list[str] = []

        async def to_device() -> dict:
            stats = new_stats()
            ensured: set[str] = set()
            paths = sorted(diff.changed | diff.local_only)
            tracker.start_batch("Uploading", len(paths))
            for rel_path in paths:
                if not (self.workspace / rel_path).is_file():
                    stats["skipped"] += 1
                    logger.debug(f"Skipping {rel_path}: no longer exists locally")
                    continue
                if await self._upload(rel_path, ensured, stats, tracker):
                    synced.append(rel_path)
            tracker.complete_batch()
            return stats

        async def to_local() -> dict:
            stats = new_stats()
            paths = sorted(
                p for p in diff.changed | diff.remote_only if not self.matcher(p, False)
            )
            tracker.start_batch("Downloading", len(paths))
            for rel_path in paths:
                if await self._download(self.device_path(rel_path), stats, tracker):
                    synced.append(rel_path)
            tracker.complete_batch()
            return stats

        operation = to_device if direction == SyncDirection.TO_DEVICE else to_local
        stats = await self.coordinator.run(
            operation, preempt=True, label=f"sync {direction.value}"
        )
        if stats["failed"] == 0:
            self.markers.clear()
        else:
            self.markers.discard(synced)
        return stats

    # =========================================================================
    # Single-item operations
    # =========================================================================

    async def list_dir(self, path: Optional[str] = None, force: bool = False) -> list:
        """Children of a device directory, from the tree cache when known."""
        return await self.tree.get_children(path or self.root_path, force=force)

    async def upload_file(self, rel_path: str) -> Optional[str]:
        """Upload one workspace file.

        Returns:
            The device path, None if the file is ignored

        Raises:
            LocalIOError: The file does not exist
            DeviceError: The upload failed
        """
        rel_path = rel_path.replace("\\", "/").strip("/")
        if self.matcher(rel_path, False):
            logger.debug(f"Not uploading ignored file {rel_path}")
            return None
        local_path = self.workspace / rel_path
        if not local_path.is_file():
            raise LocalIOError(f"No such local file: {local_path}", str(local_path))
        device_path = self.device_path(rel_path)

        async def operation() -> None:
            stats = new_stats()
            await self._ensure_parents(rel_path, set(), stats)
            await self.client.upload_replacing(str(local_path), device_path)

        await self.coordinator.run(operation, preempt=True, label=f"upload {rel_path}")
        self.tree.add_node(device_path, False)
        self.markers.discard([rel_path])
        return device_path

    async def download_file(
        self, device_path: str, local_path: Optional[Path] = None
    ) -> Path:
        """Download one device file (into the workspace by default)."""
        rel_path = self.relative_path(device_path)
        if local_path is None and not rel_path:
            raise LocalIOError(
                f"{device_path} is outside the device root {self.root_path}",
                device_path,
            )
        target = local_path or self.workspace / rel_path
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LocalIOError(
                f"Cannot create {target.parent}: {e}", str(target)
            ) from e
        await self.coordinator.run(
            lambda: self.client.cp_from(device_path, str(target)),
            preempt=True,
            label=f"download {device_path}",
        )
        if rel_path:
            self.markers.discard([rel_path])
        return target

    async def delete_remote(self, device_path: str) -> None:
        """Delete a device file or directory tree."""
        await self.coordinator.run(
            lambda: self.client.delete_any(device_path),
            preempt=True,
            label=f"delete {device_path}",
        )
        self.tree.remove_node(device_path)

    async def make_remote_dir(self, device_path: str) -> None:
        """Create a device directory (an existing one is fine)."""
        device_path = normalize_root(device_path)

        async def operation() -> None:
            await self._ensure_dir(device_path)

        await self.coordinator.run(
            operation, preempt=True, label=f"mkdir {device_path}"
        )

    async def rename_remote(self, src: str, dst: str) -> None:
        """Move a device file or directory."""
        src, dst = normalize_root(src), normalize_root(dst)
        siblings = self.tree.cached_children(parent_path(src)) or []
        is_dir = any(node.is_dir for node in siblings if node.path == src)
        await self.coordinator.run(
            lambda: self.client.mv(src, dst), preempt=True, label=f"mv {src}"
        )
        self.tree.remove_node(src)
        self.tree.add_node(dst, is_dir)

    async def wipe_device(self) -> WipeResult:
        """Delete everything below the device root."""
        result = await self.coordinator.run(
            lambda: self.client.wipe_path(self.root_path),
            preempt=True,
            label="wipe",
        )
        self.tree.reset_dir(self.root_path)
        self.markers.clear()
        return result

    async def run_file(self, local_path: Path) -> str:
        """Execute a local script on the device and return its output."""
        if not local_path.is_file():
            raise LocalIOError(f"No such local file: {local_path}", str(local_path))
        return await self.coordinator.run(
            lambda: self.client.run_file(str(local_path)),
            preempt=True,
            label=f"run {local_path.name}",
        )

    async def soft_reset(self) -> None:
        """Soft-reset the board."""
        await self.coordinator.run(self.client.reset, preempt=True, label="reset")

    def ensure_initialized(self) -> list[Path]:
        """Create the workspace state directory, ignore file and manifest.

        Returns:
            Paths that were created
        """
        created = []
        state_dir = self.workspace / STATE_DIR_NAME
        if not state_dir.exists():
            state_dir.mkdir(parents=True)
            created.append(state_dir)
        ignore_file = write_default_ignore_file(self.workspace)
        if ignore_file is not None:
            created.append(ignore_file)
        if not self.manifests.path.exists():
            created.append(self.manifests.save(create_empty_manifest(self.workspace)))
        return created
