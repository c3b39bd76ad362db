"""Result of the last workspace/device check.

The markers are shared by reference: the sync engine writes them after a
check and consumes them during a diff-based sync, the tree cache reads them
to show local-only placeholders.
"""

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Optional

from ..utils import STATE_DIR_NAME, normalize_root
from .comparator import CrossDiff, DiffDisplay, decorate

logger = logging.getLogger(__name__)

DIFF_FILE_NAME = "diff.json"


class DiffMarkers:
    """Holds the last :class:`CrossDiff` and its display sets."""

    def __init__(self, path: Optional[Path] = None):
        """Initialize markers.

        Args:
            path: File to persist the markers to (not persisted when None)
        """
        self.path = path
        self.root_path = "/"
        self._diff: Optional[CrossDiff] = None
        self._display = DiffDisplay()

    @classmethod
    def for_workspace(cls, workspace: Path) -> "DiffMarkers":
        """Markers stored in ``<workspace>/.mpysync/diff.json``."""
        markers = cls(workspace / STATE_DIR_NAME / DIFF_FILE_NAME)
        markers.load()
        return markers

    @property
    def has_result(self) -> bool:
        return self._diff is not None

    @property
    def diff(self) -> Optional[CrossDiff]:
        return self._diff

    @property
    def display(self) -> DiffDisplay:
        return self._display

    def set(self, diff: CrossDiff, root_path: str = "/") -> None:
        """Store a new check result."""
        self._diff = CrossDiff(
            changed=set(diff.changed),
            remote_only=set(diff.remote_only),
            local_only=set(diff.local_only),
        )
        self.root_path = normalize_root(root_path)
        self._refresh()

    def clear(self) -> None:
        """Forget the check result."""
        self._diff = None
        self._display = DiffDisplay()
        if self.path is not None and self.path.exists():
            try:
                self.path.unlink()
            except OSError as e:
                logger.warning(f"Could not remove diff state {self.path}: {e}")

    def discard(self, rel_paths: Iterable[str]) -> None:
        """Drop paths that have been synced from every set."""
        if self._diff is None:
            return
        paths = set(rel_paths)
        self._diff.changed -= paths
        self._diff.remote_only -= paths
        self._diff.local_only -= paths
        self._refresh()

    def _refresh(self) -> None:
        if self._diff is None:
            return
        self._display = decorate(self._diff)
        self.save()

    def local_only_children(self, rel_dir: str) -> list[tuple[str, bool]]:
        """Immediate children of ``rel_dir`` that exist only locally.

        Returns:
            Sorted ``(name, is_dir)`` pairs; a name is a directory when it
            is only an ancestor of a local-only file
        """
        if self._diff is None:
            return []
        rel_dir = rel_dir.strip("/")
        children = {}
        for path in self._display.local_only:
            parent, _, name = path.rpartition("/")
            if parent == rel_dir:
                children[name] = path not in self._diff.local_only
        return sorted(children.items())

    # =========================================================================
    # Persistence
    # =========================================================================

    def to_dict(self) -> dict:
        diff = self._diff or CrossDiff()
        return {
            "rootPath": self.root_path,
            "changed": sorted(diff.changed),
            "remoteOnly": sorted(diff.remote_only),
            "localOnly": sorted(diff.local_only),
        }

    def save(self) -> None:
        if self.path is None or self._diff is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f, indent=2)
        except OSError as e:
            logger.warning(f"Failed to save diff state: {e}")

    def load(self) -> bool:
        """Restore markers saved by an earlier run.

        Returns:
            True if a result was loaded
        """
        if self.path is None or not self.path.exists():
            return False
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            diff = CrossDiff(
                changed=set(data["changed"]),
                remote_only=set(data["remoteOnly"]),
                local_only=set(data["localOnly"]),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to load diff state: {e}")
            return False
        self._diff = diff
        self.root_path = normalize_root(data.get("rootPath", "/"))
        self._display = decorate(diff)
        return True
