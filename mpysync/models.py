"""Data models for device listings and tool results."""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

logger = logging.getLogger(__name__)


class NodeKind(str, Enum):
    """Kind of a remote tree node."""

    DIR = "dir"
    FILE = "file"


@dataclass(frozen=True)
class RemoteNode:
    """A single entry of the remote tree."""

    kind: NodeKind
    """Directory or file"""

    name: str
    """Base name of the entry"""

    path: str
    """Absolute path on the device"""

    local_only: bool = False
    """Placeholder for a file that exists only in the workspace"""

    @property
    def is_dir(self) -> bool:
        return self.kind == NodeKind.DIR

    def sort_key(self) -> tuple[int, str]:
        """Directories first, then by name."""
        return (0 if self.is_dir else 1, self.name)


@dataclass
class RemoteEntry:
    """One row of an ``ls_typed`` listing."""

    name: str
    is_dir: bool

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RemoteEntry":
        return cls(name=str(data["name"]), is_dir=bool(data.get("isDir", False)))


@dataclass
class RemoteStat:
    """One row of a recursive ``tree_stats`` listing."""

    path: str
    """Absolute path on the device"""

    is_dir: bool
    size: int = 0
    mtime: int = 0
    """Device-reported modification time (not trusted for comparison)"""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RemoteStat":
        return cls(
            path=str(data["path"]),
            is_dir=bool(data.get("isDir", False)),
            size=int(data.get("size") or 0),
            mtime=int(data.get("mtime") or 0),
        )


@dataclass
class FileInfo:
    """Result of ``file_info`` (``mode|size|dir|ro``)."""

    mode: int
    size: int
    is_dir: bool
    is_readonly: bool

    @classmethod
    def parse(cls, text: str) -> Optional["FileInfo"]:
        """Parse the pipe-separated payload, None if it is malformed."""
        parts = text.strip().split("|")
        if len(parts) < 4:
            return None
        try:
            return cls(
                mode=int(parts[0]),
                size=int(parts[1]),
                is_dir=parts[2] == "dir",
                is_readonly=parts[3] == "ro",
            )
        except ValueError:
            return None


@dataclass
class WipeResult:
    """Result of a ``wipe_path`` call."""

    deleted_count: int = 0
    errors: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WipeResult":
        deleted = data.get("deleted_count", 0)
        errors = data.get("errors", [])
        return cls(
            deleted_count=deleted if isinstance(deleted, int) else 0,
            errors=[str(e) for e in errors] if isinstance(errors, list) else [],
        )


def parse_entries(payload: Any, factory: Any) -> list:
    """Build model objects from a decoded JSON array, skipping bad rows."""
    if not isinstance(payload, list):
        return []
    items = []
    for row in payload:
        try:
            items.append(factory(row))
        except (KeyError, TypeError, ValueError) as e:
            logger.debug(f"Skipping malformed listing row {row!r}: {e}")
    return items
