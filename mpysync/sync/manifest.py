"""Workspace snapshots (manifests) and their persistence.

A manifest records every non-ignored workspace file with its size and
modification time. It is rebuilt on every scan, saved to
``<workspace>/.mpysync/manifest.json`` and mirrored to the device so later
runs have a baseline.
"""

import json
import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional

from ..exceptions import LocalIOError
from ..utils import STATE_DIR_NAME
from .ignore import IgnoreMatcher

logger = logging.getLogger(__name__)

MANIFEST_VERSION = 1
MANIFEST_FILE_NAME = "manifest.json"


@dataclass(frozen=True)
class ManifestEntry:
    """Size and modification time of one file."""

    size: int
    """File size in bytes"""

    mtime: int
    """Modification time in whole milliseconds since the epoch"""

    def to_dict(self) -> dict[str, int]:
        return {"size": self.size, "mtime": self.mtime}


@dataclass(frozen=True)
class Manifest:
    """Immutable snapshot of a workspace tree."""

    root: str
    """Absolute workspace path the snapshot was taken from"""

    files: Mapping[str, ManifestEntry]
    """POSIX relative path -> entry"""

    sync_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    """Random identifier of this scan"""

    generated_at: int = field(default_factory=lambda: int(time.time() * 1000))
    """Scan time in milliseconds since the epoch"""

    version: int = MANIFEST_VERSION

    def __post_init__(self) -> None:
        object.__setattr__(self, "files", MappingProxyType(dict(self.files)))

    def __len__(self) -> int:
        return len(self.files)

    def __contains__(self, rel_path: object) -> bool:
        return rel_path in self.files

    @property
    def total_size(self) -> int:
        return sum(entry.size for entry in self.files.values())

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON layout stored on disk and on the device."""
        return {
            "version": self.version,
            "syncId": self.sync_id,
            "root": self.root,
            "generatedAt": self.generated_at,
            "files": {path: entry.to_dict() for path, entry in self.files.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Manifest":
        """Create a Manifest from its JSON layout.

        Raises:
            KeyError, TypeError, ValueError: The data is not a manifest
        """
        files = {
            str(path): ManifestEntry(size=int(info["size"]), mtime=int(info["mtime"]))
            for path, info in data["files"].items()
        }
        return cls(
            root=str(data.get("root", "")),
            files=files,
            sync_id=str(data.get("syncId", "")),
            generated_at=int(data.get("generatedAt", 0)),
            version=int(data.get("version", MANIFEST_VERSION)),
        )


def create_empty_manifest(root: Path) -> Manifest:
    """Manifest without files, used to seed a new workspace."""
    return Manifest(root=str(root), files={})


class ManifestBuilder:
    """Walks a workspace and builds a :class:`Manifest`.

    Ignored directories are pruned and never descended into. An unreadable
    subdirectory or an unstattable file is skipped and recorded in
    :attr:`skipped`; the rest of the walk continues.

    Examples:
        >>> builder = ManifestBuilder(create_ignore_matcher(workspace))
        >>> manifest = builder.build(workspace)
        >>> builder.skipped
        []
    """

    def __init__(self, matcher: Optional[IgnoreMatcher] = None):
        self.matcher = matcher or IgnoreMatcher()
        self.skipped: list[str] = []

    def build(self, root: Path) -> Manifest:
        """Snapshot ``root``.

        Raises:
            LocalIOError: The root itself cannot be listed
        """
        self.skipped = []
        root = Path(root)
        files: dict[str, ManifestEntry] = {}
        try:
            entries = list(os.scandir(root))
        except OSError as e:
            raise LocalIOError(f"Cannot read workspace {root}: {e}", str(root)) from e

        self._walk(entries, "", files)
        logger.debug(
            f"Built manifest of {root}: {len(files)} files, "
            f"{len(self.skipped)} skipped"
        )
        return Manifest(root=str(root.resolve()), files=files)

    def _walk(
        self,
        entries: list[os.DirEntry],
        prefix: str,
        files: dict[str, ManifestEntry],
    ) -> None:
        for entry in entries:
            rel_path = f"{prefix}{entry.name}"
            try:
                is_dir = entry.is_dir()
            except OSError as e:
                self._skip(rel_path, e)
                continue

            if self.matcher(rel_path, is_dir):
                continue

            if is_dir:
                try:
                    children = list(os.scandir(entry.path))
                except OSError as e:
                    self._skip(rel_path, e)
                    continue
                self._walk(children, rel_path + "/", files)
                continue

            try:
                stat = entry.stat()
            except OSError as e:
                self._skip(rel_path, e)
                continue
            files[rel_path] = ManifestEntry(
                size=stat.st_size, mtime=stat.st_mtime_ns // 1_000_000
            )

    def _skip(self, rel_path: str, error: OSError) -> None:
        logger.warning(f"Skipping unreadable path {rel_path}: {error}")
        self.skipped.append(rel_path)


def build_manifest(root: Path, matcher: Optional[IgnoreMatcher] = None) -> Manifest:
    """Snapshot ``root`` with ``matcher`` applied."""
    return ManifestBuilder(matcher).build(root)


def save_manifest(path: Path, manifest: Manifest) -> None:
    """Write a manifest as indented JSON, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(manifest.to_dict(), f, indent=2)


def load_manifest(path: Path) -> Optional[Manifest]:
    """Read a manifest file.

    Returns:
        The manifest, or None if the file is missing or corrupt
    """
    if not path.exists():
        logger.debug(f"No manifest found at {path}")
        return None
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return Manifest.from_dict(data)
    except (
        OSError,
        json.JSONDecodeError,
        AttributeError,
        KeyError,
        TypeError,
        ValueError,
    ) as e:
        logger.warning(f"Failed to load manifest {path}: {e}")
        return None


class ManifestStore:
    """Location of the workspace manifest."""

    def __init__(self, workspace: Path):
        self.workspace = workspace
        self.path = workspace / STATE_DIR_NAME / MANIFEST_FILE_NAME

    def load(self) -> Optional[Manifest]:
        return load_manifest(self.path)

    def save(self, manifest: Manifest) -> Path:
        save_manifest(self.path, manifest)
        logger.debug(f"Saved manifest with {len(manifest)} files to {self.path}")
        return self.path
