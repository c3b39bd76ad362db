"""Sync engine for mpysync - manifests, diffs, tree cache and workflows."""

from .comparator import (
    CrossDiff,
    DiffDisplay,
    ManifestDiff,
    cross_diff,
    decorate,
    diff_manifests,
)
from .engine import SyncDirection, SyncEngine, coordinated_lister
from .ignore import (
    DEFAULT_IGNORE_PATTERNS,
    IGNORE_FILE_NAME,
    IgnoreMatcher,
    IgnoreRule,
    compile_patterns,
    create_ignore_matcher,
    load_ignore_file,
)
from .manifest import (
    Manifest,
    ManifestBuilder,
    ManifestEntry,
    ManifestStore,
    build_manifest,
    load_manifest,
    save_manifest,
)
from .markers import DiffMarkers
from .progress import SyncProgressEvent, SyncProgressInfo, SyncProgressTracker
from .tree import RemoteTreeCache
from .watcher import WorkspaceWatcher

__all__ = [
    "SyncEngine",
    "SyncDirection",
    "coordinated_lister",
    "CrossDiff",
    "DiffDisplay",
    "ManifestDiff",
    "cross_diff",
    "decorate",
    "diff_manifests",
    "DiffMarkers",
    "Manifest",
    "ManifestBuilder",
    "ManifestEntry",
    "ManifestStore",
    "build_manifest",
    "load_manifest",
    "save_manifest",
    "RemoteTreeCache",
    "WorkspaceWatcher",
    "SyncProgressEvent",
    "SyncProgressInfo",
    "SyncProgressTracker",
    "IgnoreMatcher",
    "IgnoreRule",
    "IGNORE_FILE_NAME",
    "DEFAULT_IGNORE_PATTERNS",
    "compile_patterns",
    "create_ignore_matcher",
    "load_ignore_file",
]
