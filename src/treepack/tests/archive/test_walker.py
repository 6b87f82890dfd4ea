"""
Tests for source tree traversal.
"""

import os

import pytest

from treepack.archive.models import EntryKind
from treepack.archive.walker import WalkReport, walk_tree


def _build_tree(root):
    (root / "a").mkdir(parents=True)
    (root / "a" / "x.txt").write_bytes(b"x")
    (root / "b.txt").write_bytes(b"b")
    (root / "z").mkdir()
    (root / "a" / "deep" / "deeper").mkdir(parents=True)


def test_walk_tree_yields_files_and_directories(tmp_path):
    """Every file and directory is yielded once, including empty directories."""
    _build_tree(tmp_path)

    entries = {e.name: e.kind for e in walk_tree(tmp_path)}

    assert entries == {
        "a": EntryKind.DIRECTORY,
        "a/x.txt": EntryKind.FILE,
        "a/deep": EntryKind.DIRECTORY,
        "a/deep/deeper": EntryKind.DIRECTORY,
        "b.txt": EntryKind.FILE,
        "z": EntryKind.DIRECTORY,
    }


def test_walk_tree_parents_before_children(tmp_path):
    """A directory is always yielded before anything inside it."""
    _build_tree(tmp_path)

    names = [e.name for e in walk_tree(tmp_path)]

    for name in names:
        parent = name.rpartition("/")[0]
        if parent:
            assert names.index(parent) < names.index(name)


def test_walk_tree_is_deterministic(tmp_path):
    """Two walks over the same snapshot produce the same order."""
    _build_tree(tmp_path)

    assert [e.name for e in walk_tree(tmp_path)] == [e.name for e in walk_tree(tmp_path)]


def test_walk_tree_paths_point_at_entries(tmp_path):
    """Yielded paths are absolute filesystem paths of the entries."""
    _build_tree(tmp_path)

    for entry in walk_tree(tmp_path):
        assert os.path.isabs(entry.path)
        assert os.path.exists(entry.path)


def test_walk_tree_empty_directory(tmp_path):
    """An empty root yields nothing."""
    assert list(walk_tree(tmp_path)) == []


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks not supported")
def test_walk_tree_skips_symlinks(tmp_path):
    """Symlinks are counted and never followed."""
    root = tmp_path / "root"
    outside = tmp_path / "outside"
    root.mkdir()
    outside.mkdir()
    (outside / "secret.txt").write_bytes(b"secret")
    (root / "real.txt").write_bytes(b"real")
    os.symlink(str(outside), str(root / "link_dir"))
    os.symlink(str(outside / "secret.txt"), str(root / "link_file"))

    report = WalkReport()
    names = [e.name for e in walk_tree(root, report=report)]

    assert names == ["real.txt"]
    assert report.skipped_symlinks_count == 2


@pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="FIFOs not supported")
def test_walk_tree_skips_special_files(tmp_path):
    """FIFOs and other special files are counted and skipped."""
    os.mkfifo(tmp_path / "pipe")
    (tmp_path / "file.txt").write_bytes(b"data")

    report = WalkReport()
    names = [e.name for e in walk_tree(tmp_path, report=report)]

    assert names == ["file.txt"]
    assert report.skipped_special_count == 1


@pytest.mark.skipif(
    os.name != "posix" or os.geteuid() == 0, reason="needs POSIX permissions, non-root"
)
def test_walk_tree_skips_unreadable_directory(tmp_path):
    """An unreadable directory is yielded but its contents are skipped, not fatal."""
    locked = tmp_path / "locked"
    locked.mkdir()
    (locked / "hidden.txt").write_bytes(b"x")
    (tmp_path / "visible.txt").write_bytes(b"y")
    locked.chmod(0o000)
    try:
        report = WalkReport()
        names = [e.name for e in walk_tree(tmp_path, report=report)]
    finally:
        locked.chmod(0o755)

    assert names == ["locked", "visible.txt"]
    assert report.skipped_unreadable_count == 1


def test_walk_tree_exclude(tmp_path):
    """Excluded paths are silently left out."""
    (tmp_path / "keep.txt").write_bytes(b"k")
    (tmp_path / "out.zip").write_bytes(b"z")

    names = [e.name for e in walk_tree(tmp_path, exclude={str(tmp_path / "out.zip")})]

    assert names == ["keep.txt"]


def test_walk_tree_is_lazy(tmp_path):
    """The walk is a generator; a fresh call walks again."""
    (tmp_path / "one.txt").write_bytes(b"1")
    walk = walk_tree(tmp_path)
    (tmp_path / "two.txt").write_bytes(b"2")

    assert [e.name for e in walk] == ["one.txt", "two.txt"]
    assert len(list(walk)) == 0
