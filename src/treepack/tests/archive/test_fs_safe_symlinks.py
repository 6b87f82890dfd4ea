"""
Tests for filesystem-safe write helpers (symlink no-follow).
"""

import os
import stat

import pytest

import treepack.archive.fs_safe as fs_safe_mod
from treepack.archive.fs_safe import (
    UnsafeFilesystemPath,
    UnsupportedFilesystemSafety,
    open_source_nofollow,
    safe_chmod,
    safe_makedirs,
    safe_open_for_write,
)

pytestmark = pytest.mark.skipif(
    not fs_safe_mod.nofollow_supported(), reason="no-follow IO not available"
)


def test_fs_safe_write_creates_parents(tmp_path):
    """Missing parent directories are created below the root."""

    root = tmp_path / "root"
    root.mkdir()

    with safe_open_for_write(str(root), ("a", "b", "c.txt")) as fp:
        fp.write(b"ok")

    assert (root / "a" / "b" / "c.txt").read_bytes() == b"ok"


def test_fs_safe_write_refuses_symlink_component(tmp_path):
    """Writing through a pre-existing symlink component must be refused."""

    root = tmp_path / "root"
    outside = tmp_path / "outside"
    root.mkdir()
    outside.mkdir()

    os.symlink(str(outside), str(root / "out"))

    with pytest.raises(UnsafeFilesystemPath):
        safe_open_for_write(str(root), ("out", "evil.txt"))

    assert not (outside / "evil.txt").exists()


def test_fs_safe_write_refuses_intermediate_symlink_component(tmp_path):
    """Symlinks in intermediate path components must be refused."""

    root = tmp_path / "root"
    outside = tmp_path / "outside"
    root.mkdir()
    outside.mkdir()

    os.symlink(str(outside), str(root / "a"))

    with pytest.raises(UnsafeFilesystemPath):
        safe_open_for_write(str(root), ("a", "b", "evil.txt"))

    assert not (outside / "b" / "evil.txt").exists()


def test_fs_safe_write_refuses_symlink_leaf(tmp_path):
    """The file itself must not be a symlink."""

    root = tmp_path / "root"
    outside = tmp_path / "outside"
    root.mkdir()
    outside.mkdir()
    (outside / "victim.txt").write_bytes(b"original")

    os.symlink(str(outside / "victim.txt"), str(root / "f.txt"))

    with pytest.raises(UnsafeFilesystemPath):
        safe_open_for_write(str(root), ("f.txt",))

    assert (outside / "victim.txt").read_bytes() == b"original"


def test_fs_safe_makedirs_refuses_symlink_component(tmp_path):
    """Directory creation must not descend through a symlink."""

    root = tmp_path / "root"
    outside = tmp_path / "outside"
    root.mkdir()
    outside.mkdir()

    os.symlink(str(outside), str(root / "a"))

    with pytest.raises(UnsafeFilesystemPath):
        safe_makedirs(str(root), ("a", "b"))

    assert not (outside / "b").exists()


def test_fs_safe_makedirs_is_idempotent(tmp_path):
    """Existing directories are reused."""

    root = tmp_path / "root"
    root.mkdir()

    safe_makedirs(str(root), ("a", "b"))
    safe_makedirs(str(root), ("a", "b"))

    assert (root / "a" / "b").is_dir()


def test_fs_safe_chmod_refuses_symlink(tmp_path):
    """Mode changes must not follow a symlinked directory."""

    root = tmp_path / "root"
    outside = tmp_path / "outside"
    root.mkdir()
    outside.mkdir()
    outside.chmod(0o755)

    os.symlink(str(outside), str(root / "d"))

    with pytest.raises(UnsafeFilesystemPath):
        safe_chmod(str(root), ("d",), 0o700)

    assert stat.S_IMODE(outside.stat().st_mode) == 0o755


@pytest.mark.parametrize("parts", [(), ("..",), ("a", "."), ("a/b",)])
def test_fs_safe_rejects_invalid_components(tmp_path, parts):
    """Only plain, non-empty components are accepted."""

    with pytest.raises(UnsafeFilesystemPath):
        safe_open_for_write(str(tmp_path), parts)


def test_fs_safe_fails_closed_without_openat_support(tmp_path, monkeypatch):
    """If openat/dir_fd support is not available, strict mode must fail closed."""

    root = tmp_path / "root"
    root.mkdir()

    monkeypatch.setattr(fs_safe_mod.os, "supports_dir_fd", set(), raising=False)
    with pytest.raises(UnsupportedFilesystemSafety):
        safe_open_for_write(str(root), ("a.txt",), strict=True)

    assert not (root / "a.txt").exists()


def test_fs_safe_fallback_without_openat_support(tmp_path, monkeypatch):
    """Without strict mode, the resolve check still refuses escaping symlinks."""

    root = tmp_path / "root"
    outside = tmp_path / "outside"
    root.mkdir()
    outside.mkdir()
    os.symlink(str(outside), str(root / "out"))

    monkeypatch.setattr(fs_safe_mod.os, "supports_dir_fd", set(), raising=False)

    with safe_open_for_write(str(root), ("ok.txt",)) as fp:
        fp.write(b"ok")
    with pytest.raises(UnsafeFilesystemPath):
        safe_open_for_write(str(root), ("out", "evil.txt"))

    assert (root / "ok.txt").read_bytes() == b"ok"
    assert not (outside / "evil.txt").exists()


def test_open_source_nofollow_refuses_symlink(tmp_path):
    """Source files swapped for symlinks are not read."""

    (tmp_path / "real.txt").write_bytes(b"secret")
    os.symlink(str(tmp_path / "real.txt"), str(tmp_path / "link.txt"))

    with pytest.raises(UnsafeFilesystemPath):
        open_source_nofollow(str(tmp_path / "link.txt"))


def test_open_source_nofollow_refuses_non_regular(tmp_path):
    """Only regular files are read."""

    with pytest.raises(UnsafeFilesystemPath):
        open_source_nofollow(str(tmp_path))


def test_open_source_nofollow_reads_regular_file(tmp_path):
    """Regular files open for binary reading."""

    (tmp_path / "a.txt").write_bytes(b"hello")

    with open_source_nofollow(str(tmp_path / "a.txt")) as fp:
        assert fp.read() == b"hello"
