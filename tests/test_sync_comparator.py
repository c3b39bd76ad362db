"""Tests for manifest and cross-tree comparison."""

import random

import pytest

from mpysync.models import RemoteStat
from mpysync.sync.comparator import CrossDiff, cross_diff, decorate, diff_manifests
from mpysync.sync.ignore import compile_patterns
from mpysync.sync.manifest import Manifest, ManifestEntry


def make_manifest(files: dict[str, tuple[int, int]]) -> Manifest:
    return Manifest(
        root="/ws",
        files={path: ManifestEntry(size=s, mtime=m) for path, (s, m) in files.items()},
    )


class TestDiffManifests:
    """Tests for diff_manifests."""

    def test_identical_manifests(self):
        manifest = make_manifest({"a.py": (1, 1), "lib/b.py": (2, 2)})
        diff = diff_manifests(manifest, manifest)
        assert diff.changed_or_new == set()
        assert diff.deleted == set()
        assert diff.is_empty

    def test_new_changed_and_deleted(self):
        prev = make_manifest(
            {"same.py": (1, 1), "size.py": (1, 1), "time.py": (1, 1), "gone.py": (1, 1)}
        )
        nxt = make_manifest(
            {"same.py": (1, 1), "size.py": (2, 1), "time.py": (1, 5), "new.py": (3, 3)}
        )
        diff = diff_manifests(prev, nxt)
        assert diff.changed_or_new == {"size.py", "time.py", "new.py"}
        assert diff.deleted == {"gone.py"}

    @pytest.mark.parametrize("seed", range(20))
    def test_randomized_mutations(self, seed):
        rng = random.Random(seed)
        base = {
            f"d{rng.randint(0, 3)}/f{i}.py": (
                rng.randint(0, 100),
                rng.randint(0, 10**6),
            )
            for i in range(40)
        }
        nxt = dict(base)
        expected_changed: set[str] = set()
        expected_deleted: set[str] = set()

        for path in list(base):
            roll = rng.random()
            size, mtime = base[path]
            if roll < 0.2:
                del nxt[path]
                expected_deleted.add(path)
            elif roll < 0.35:
                nxt[path] = (size + rng.randint(1, 5), mtime)
                expected_changed.add(path)
            elif roll < 0.5:
                nxt[path] = (size, mtime + rng.randint(1, 5))
                expected_changed.add(path)
        for i in range(rng.randint(0, 8)):
            path = f"new/n{i}.py"
            nxt[path] = (rng.randint(0, 10), rng.randint(0, 10))
            expected_changed.add(path)

        diff = diff_manifests(make_manifest(base), make_manifest(nxt))
        assert diff.changed_or_new == expected_changed
        assert diff.deleted == expected_deleted
        assert diff.deleted == set(base) - set(nxt)


class TestCrossDiff:
    """Tests for cross_diff."""

    def test_size_mismatch_is_changed(self):
        local = make_manifest({"x.py": (12, 100)})
        remote = [RemoteStat(path="/x.py", is_dir=False, size=9)]
        diff = cross_diff(local, remote)
        assert diff.changed == {"x.py"}
        assert diff.remote_only == set()
        assert diff.local_only == set()

    def test_equal_size_is_unchanged_despite_mtime(self):
        local = make_manifest({"x.py": (12, 100)})
        remote = [RemoteStat(path="/x.py", is_dir=False, size=12, mtime=999999)]
        assert cross_diff(local, remote).is_empty

    def test_one_sided_files(self):
        local = make_manifest({"a.py": (1, 1), "lib/b.py": (2, 2)})
        remote = [
            RemoteStat(path="/lib", is_dir=True),
            RemoteStat(path="/lib/b.py", is_dir=False, size=2),
            RemoteStat(path="/boot.py", is_dir=False, size=5),
        ]
        diff = cross_diff(local, remote)
        assert diff.changed == set()
        assert diff.local_only == {"a.py"}
        assert diff.remote_only == {"boot.py"}

    def test_remote_listing_is_filtered(self):
        local = make_manifest({})
        remote = [
            RemoteStat(path="/__pycache__/x.pyc", is_dir=False, size=1),
            RemoteStat(path="/keep.py", is_dir=False, size=1),
        ]
        diff = cross_diff(local, remote, compile_patterns(["__pycache__/"]))
        assert diff.remote_only == {"keep.py"}

    def test_custom_root_projection(self):
        local = make_manifest({"main.py": (3, 1)})
        remote = [
            RemoteStat(path="/app/main.py", is_dir=False, size=4),
            RemoteStat(path="/app/extra.py", is_dir=False, size=1),
        ]
        diff = cross_diff(local, remote, root_path="/app")
        assert diff.changed == {"main.py"}
        assert diff.remote_only == {"extra.py"}


class TestDecorate:
    """Tests for display decoration."""

    def test_ancestors_added_to_display_only(self):
        diff = CrossDiff(
            changed={"a/b/c.py"}, remote_only={"r.py"}, local_only={"x/y.py"}
        )
        display = decorate(diff)
        assert display.changed == {"a", "a/b", "a/b/c.py"}
        assert display.remote_only == {"r.py"}
        assert display.local_only == {"x", "x/y.py"}
        assert diff.changed == {"a/b/c.py"}
        assert diff.local_only == {"x/y.py"}
