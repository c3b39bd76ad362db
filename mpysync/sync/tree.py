"""Incremental cache of the device directory tree.

Listing a directory over the serial link is slow, so listings are cached per
directory. A cached entry is always the complete list of a directory's
immediate children; a directory without an entry is unknown and is listed on
the next :meth:`RemoteTreeCache.get_children` call. After a transfer, callers
update the cache with :meth:`~RemoteTreeCache.add_node`,
:meth:`~RemoteTreeCache.remove_node` or :meth:`~RemoteTreeCache.reset_dir`
instead of listing again.
"""

import bisect
import logging
import posixpath
from typing import Awaitable, Callable, Optional

from ..exceptions import MpySyncError
from ..models import NodeKind, RemoteEntry, RemoteNode
from ..utils import normalize_root, parent_path, to_local_relative
from .ignore import IgnoreMatcher
from .markers import DiffMarkers

logger = logging.getLogger(__name__)

Lister = Callable[[str], Awaitable[list[RemoteEntry]]]
Observer = Callable[[str], None]


def _join(directory: str, name: str) -> str:
    return f"/{name}" if directory == "/" else f"{directory}/{name}"


class RemoteTreeCache:
    """Per-directory cache of device listings."""

    def __init__(
        self,
        lister: Lister,
        matcher: Optional[IgnoreMatcher] = None,
        root_path: str = "/",
        markers: Optional[DiffMarkers] = None,
    ):
        """Initialize the cache.

        Args:
            lister: Coroutine function returning the children of a directory
            matcher: Ignore rules applied to listed entries
            root_path: Device directory mirroring the workspace root
            markers: Last check result, used for local-only placeholders
        """
        self.lister = lister
        self.matcher = matcher
        self.root_path = normalize_root(root_path)
        self.markers = markers
        self._cache: dict[str, list[RemoteNode]] = {}
        self._observers: list[Observer] = []

    # =========================================================================
    # Observers
    # =========================================================================

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Call ``observer(directory)`` after every change.

        Returns:
            Function that removes the observer again
        """
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _notify(self, directory: str) -> None:
        for observer in list(self._observers):
            observer(directory)

    # =========================================================================
    # Reading
    # =========================================================================

    def is_cached(self, path: str) -> bool:
        return normalize_root(path) in self._cache

    def cached_children(self, path: str) -> Optional[list[RemoteNode]]:
        """Cached children without listing, None if unknown."""
        nodes = self._cache.get(normalize_root(path))
        return list(nodes) if nodes is not None else None

    async def get_children(
        self, path: Optional[str] = None, force: bool = False
    ) -> list[RemoteNode]:
        """Children of a device directory, listing it only when needed.

        Args:
            path: Absolute device directory (default: the root path)
            force: List again even if the directory is cached

        Returns:
            Sorted nodes, directories first. A failed listing returns an
            empty list and leaves the directory uncached.
        """
        directory = normalize_root(path or self.root_path)
        nodes = self._cache.get(directory)
        if nodes is None or force:
            try:
                entries = await self.lister(directory)
            except MpySyncError as e:
                logger.warning(f"Could not list {directory}: {e}")
                return []
            nodes = self._build_nodes(directory, entries)
            self._cache[directory] = nodes
            logger.debug(f"Cached {len(nodes)} entries for {directory}")
        return self._with_local_only(directory, nodes)

    def _build_nodes(
        self, directory: str, entries: list[RemoteEntry]
    ) -> list[RemoteNode]:
        nodes = {}
        for entry in entries:
            name = entry.name.strip("/")
            if not name or name in nodes:
                continue
            path = _join(directory, name)
            if self._is_ignored(path, entry.is_dir):
                continue
            nodes[name] = RemoteNode(
                kind=NodeKind.DIR if entry.is_dir else NodeKind.FILE,
                name=name,
                path=path,
            )
        return sorted(nodes.values(), key=RemoteNode.sort_key)

    def _is_ignored(self, path: str, is_dir: bool) -> bool:
        if self.matcher is None or not self._within_root(path):
            return False
        rel_path = to_local_relative(path, self.root_path)
        return bool(rel_path) and self.matcher(rel_path, is_dir)

    def _within_root(self, directory: str) -> bool:
        root = self.root_path
        return root == "/" or directory == root or directory.startswith(root + "/")

    def _with_local_only(
        self, directory: str, nodes: list[RemoteNode]
    ) -> list[RemoteNode]:
        if self.markers is None or not self.markers.has_result:
            return list(nodes)
        if not self._within_root(directory):
            return list(nodes)
        rel_dir = to_local_relative(directory, self.root_path)
        names = {node.name for node in nodes}
        extra = [
            RemoteNode(
                kind=NodeKind.DIR if is_dir else NodeKind.FILE,
                name=name,
                path=_join(directory, name),
                local_only=True,
            )
            for name, is_dir in self.markers.local_only_children(rel_dir)
            if name not in names
        ]
        if not extra:
            return list(nodes)
        return sorted([*nodes, *extra], key=RemoteNode.sort_key)

    # =========================================================================
    # Mutators
    # =========================================================================

    def add_node(self, path: str, is_dir: bool) -> bool:
        """Insert a node into its parent's cached listing.

        A parent that is not cached stays unknown, but observers are still
        told that it changed. A name that is already listed or ignored is
        left alone.

        Returns:
            True if the node was inserted
        """
        path = normalize_root(path)
        directory = parent_path(path)
        if self._is_ignored(path, is_dir):
            return False
        siblings = self._cache.get(directory)
        if siblings is None:
            self._notify(directory)
            return False
        name = posixpath.basename(path)
        if any(node.name == name for node in siblings):
            return False
        node = RemoteNode(
            kind=NodeKind.DIR if is_dir else NodeKind.FILE, name=name, path=path
        )
        keys = [existing.sort_key() for existing in siblings]
        siblings.insert(bisect.bisect_left(keys, node.sort_key()), node)
        self._notify(directory)
        return True

    def remove_node(self, path: str) -> None:
        """Remove a node and forget any cached listings beneath it."""
        path = normalize_root(path)
        directory = parent_path(path)
        siblings = self._cache.get(directory)
        if siblings is not None:
            name = posixpath.basename(path)
            self._cache[directory] = [node for node in siblings if node.name != name]
        self._drop_subtree(path)
        self._notify(directory)

    def reset_dir(self, path: str) -> None:
        """Mark a directory as known to be empty, without listing it."""
        path = normalize_root(path)
        self._drop_subtree(path)
        self._cache[path] = []
        self._notify(path)

    def clear(self) -> None:
        """Forget every listing (e.g. after switching ports)."""
        self._cache.clear()
        self._notify(self.root_path)

    def request_refresh(self) -> None:
        """Forget every listing so the next reads list the device again."""
        self.clear()

    def _drop_subtree(self, path: str) -> None:
        prefix = path.rstrip("/") + "/"
        for key in [k for k in self._cache if k == path or k.startswith(prefix)]:
            del self._cache[key]
