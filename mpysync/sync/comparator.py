"""Change detection between manifests and between workspace and device."""

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Optional

from ..models import RemoteStat
from ..utils import ancestor_paths, to_local_relative
from .ignore import IgnoreMatcher
from .manifest import Manifest


@dataclass
class ManifestDiff:
    """Result of comparing two workspace snapshots."""

    changed_or_new: set[str] = field(default_factory=set)
    """Paths that are new, or whose size or mtime differ"""

    deleted: set[str] = field(default_factory=set)
    """Paths that disappeared"""

    @property
    def is_empty(self) -> bool:
        return not self.changed_or_new and not self.deleted


@dataclass
class CrossDiff:
    """File-level differences between the workspace and the device.

    All paths are workspace-relative. Only these sets drive transfers.
    """

    changed: set[str] = field(default_factory=set)
    """Present on both sides with different sizes"""

    remote_only: set[str] = field(default_factory=set)
    """Present only on the device"""

    local_only: set[str] = field(default_factory=set)
    """Present only in the workspace"""

    @property
    def is_empty(self) -> bool:
        return not (self.changed or self.remote_only or self.local_only)

    @property
    def total(self) -> int:
        return len(self.changed) + len(self.remote_only) + len(self.local_only)


@dataclass
class DiffDisplay:
    """Cross-diff sets widened with every ancestor directory, for display."""

    changed: set[str] = field(default_factory=set)
    remote_only: set[str] = field(default_factory=set)
    local_only: set[str] = field(default_factory=set)


def diff_manifests(prev: Manifest, next_manifest: Manifest) -> ManifestDiff:
    """Compare two snapshots by size and mtime.

    Examples:
        >>> diff = diff_manifests(manifest, manifest)
        >>> diff.is_empty
        True
    """
    changed = {
        path
        for path, entry in next_manifest.files.items()
        if path not in prev.files
        or prev.files[path].size != entry.size
        or prev.files[path].mtime != entry.mtime
    }
    deleted = set(prev.files) - set(next_manifest.files)
    return ManifestDiff(changed_or_new=changed, deleted=deleted)


def cross_diff(
    local_manifest: Manifest,
    remote_listing: Iterable[RemoteStat],
    matcher: Optional[IgnoreMatcher] = None,
    root_path: str = "/",
) -> CrossDiff:
    """Compare the workspace against a recursive device listing.

    Device directories are dropped, device paths are projected onto
    workspace-relative paths and filtered through ``matcher``. Files are
    compared by size only; device timestamps are not trusted.

    Args:
        local_manifest: Fresh workspace snapshot
        remote_listing: Result of ``tree_stats`` on ``root_path``
        matcher: Ignore rules applied to the device side
        root_path: Device directory mirroring the workspace root

    Returns:
        File-level differences
    """
    remote_sizes: dict[str, int] = {}
    for stat in remote_listing:
        if stat.is_dir:
            continue
        rel_path = to_local_relative(stat.path, root_path)
        if not rel_path:
            continue
        if matcher is not None and matcher(rel_path, False):
            continue
        remote_sizes[rel_path] = stat.size

    local_files = local_manifest.files
    result = CrossDiff()
    for rel_path, entry in local_files.items():
        if rel_path not in remote_sizes:
            result.local_only.add(rel_path)
        elif remote_sizes[rel_path] != entry.size:
            result.changed.add(rel_path)
    result.remote_only = {path for path in remote_sizes if path not in local_files}
    return result


def _with_ancestors(paths: Iterable[str]) -> set[str]:
    widened: set[str] = set()
    for path in paths:
        widened.add(path)
        widened.update(ancestor_paths(path))
    return widened


def decorate(diff: CrossDiff) -> DiffDisplay:
    """Add the ancestor directories of every flagged file."""
    return DiffDisplay(
        changed=_with_ancestors(diff.changed),
        remote_only=_with_ancestors(diff.remote_only),
        local_only=_with_ancestors(diff.local_only),
    )
