"""Filesystem-safe helpers for writing below an extraction root.

These helpers enforce "no-follow" semantics for symlinks in path components to
mitigate path traversal via pre-existing symlinks in the destination tree.

Important:
- On POSIX hosts `openat(2)` semantics are used via Python's
  `os.open(..., dir_fd=...)`, and `O_NOFOLLOW` fails on symlinks.
- Where those features are missing (e.g. Windows) a resolve-and-compare check
  is used instead, unless strict mode is requested, in which case we fail
  closed. The fallback is TOCTOU-prone; see https://lwn.net/Articles/899543/
"""

from __future__ import annotations

import errno
import os
import stat
from logging import getLogger
from pathlib import Path
from typing import IO, Sequence

from treepack.errors import TreepackError

logger = getLogger(__name__)

# Errors reported by open(2) with O_NOFOLLOW when a component is a symlink.
_SYMLINK_ERRNOS = {errno.ELOOP, errno.EMLINK}


class UnsafeFilesystemPath(TreepackError, ValueError):
    """Raised when a path below the extraction root is unsafe."""


class UnsupportedFilesystemSafety(UnsafeFilesystemPath):
    """Raised when the runtime cannot guarantee safe no-follow filesystem IO."""


def nofollow_supported() -> bool:
    """Return True if openat()/mkdirat() and O_NOFOLLOW are available."""

    supports_dir_fd = getattr(os, "supports_dir_fd", None)
    return bool(
        supports_dir_fd is not None
        and os.open in supports_dir_fd
        and os.mkdir in supports_dir_fd
        and hasattr(os, "O_NOFOLLOW")
    )


def _require_nofollow_support() -> None:
    """
    Ensure we can enforce "no-follow" semantics for each path component.

    We require:
    - os.open supports dir_fd (openat)
    - os.mkdir supports dir_fd (mkdirat) for safe intermediate directory creation
    - O_NOFOLLOW is available (refuse symlink components)
    """

    supports_dir_fd = getattr(os, "supports_dir_fd", None)
    if supports_dir_fd is None or os.open not in supports_dir_fd:
        raise UnsupportedFilesystemSafety(
            "openat() support is required for safe filesystem IO."
        )
    if os.mkdir not in supports_dir_fd:
        raise UnsupportedFilesystemSafety(
            "mkdirat() support is required for safe filesystem IO."
        )
    if not hasattr(os, "O_NOFOLLOW"):
        raise UnsupportedFilesystemSafety(
            "O_NOFOLLOW is required for safe filesystem IO."
        )


def _use_nofollow(strict: bool) -> bool:
    if strict:
        _require_nofollow_support()
        return True
    if nofollow_supported():
        return True
    logger.debug("fs_safe: no-follow IO unavailable, using resolve check")
    return False


def _check_parts(parts: Sequence[str]) -> list[str]:
    checked = list(parts)
    if not checked:
        raise UnsafeFilesystemPath("Invalid target path.")
    for part in checked:
        if part in {"", ".", ".."} or "/" in part or os.sep in part:
            raise UnsafeFilesystemPath("Invalid path component.")
    return checked


def _open_root(root: str) -> int:
    flags = os.O_RDONLY
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY
    return os.open(root, flags)


def _open_dir_nofollow(parent_fd: int, name: str) -> int:
    flags = os.O_RDONLY | os.O_NOFOLLOW
    if hasattr(os, "O_DIRECTORY"):
        flags |= os.O_DIRECTORY
    fd = os.open(name, flags, dir_fd=parent_fd)
    if not hasattr(os, "O_DIRECTORY"):
        try:
            if not stat.S_ISDIR(os.fstat(fd).st_mode):
                raise NotADirectoryError(name)
        except Exception:
            os.close(fd)
            raise
    return fd


def _ensure_dir_nofollow(parent_fd: int, name: str) -> int:
    """Ensure a directory exists and open it without following symlinks."""
    try:
        return _open_dir_nofollow(parent_fd, name)
    except FileNotFoundError:
        try:
            os.mkdir(name, 0o777, dir_fd=parent_fd)
        except FileExistsError:
            pass
        return _open_dir_nofollow(parent_fd, name)


def _walk_dirs(root_fd: int, parts: Sequence[str], *, create: bool) -> int:
    """Descend `parts` from `root_fd`, returning an fd the caller must close."""
    current_fd = os.dup(root_fd)
    try:
        for part in parts:
            if create:
                next_fd = _ensure_dir_nofollow(current_fd, part)
            else:
                next_fd = _open_dir_nofollow(current_fd, part)
            os.close(current_fd)
            current_fd = next_fd
    except BaseException:
        os.close(current_fd)
        raise
    return current_fd


def _refuse(exc: OSError, action: str) -> None:
    """Re-raise symlink refusals as `UnsafeFilesystemPath`; other errors pass through."""
    if exc.errno in _SYMLINK_ERRNOS:
        raise UnsafeFilesystemPath(f"Refused unsafe filesystem {action}.") from exc


def _fallback_target(root: str, parts: Sequence[str]) -> Path:
    root_resolved = Path(root).resolve(strict=False)
    target = root_resolved.joinpath(*parts).resolve(strict=False)
    try:
        target.relative_to(root_resolved)
    except ValueError as exc:
        raise UnsafeFilesystemPath("Path escapes the destination root.") from exc
    return target


def safe_makedirs(root: str, parts: Sequence[str], *, strict: bool = False) -> None:
    """Create `root/parts...` (and missing ancestors) without following symlinks."""

    parts = _check_parts(parts)
    if not _use_nofollow(strict):
        _fallback_target(root, parts).mkdir(parents=True, exist_ok=True)
        return

    root_fd = _open_root(root)
    try:
        dir_fd = _walk_dirs(root_fd, parts, create=True)
        os.close(dir_fd)
    except OSError as exc:
        _refuse(exc, "mkdir")
        raise
    finally:
        os.close(root_fd)


def safe_open_for_write(
    root: str, parts: Sequence[str], *, strict: bool = False
) -> IO[bytes]:
    """
    Create or truncate `root/parts...` for binary writing.

    Missing parent directories are created. Neither the parents nor the file
    itself may be symlinks.
    """

    parts = _check_parts(parts)
    if not _use_nofollow(strict):
        target = _fallback_target(root, parts)
        target.parent.mkdir(parents=True, exist_ok=True)
        return open(target, "wb")  # pylint: disable=consider-using-with

    root_fd = _open_root(root)
    try:
        parent_fd = _walk_dirs(root_fd, parts[:-1], create=True)
        try:
            flags = os.O_WRONLY | os.O_CREAT | os.O_TRUNC | os.O_NOFOLLOW
            fd = os.open(parts[-1], flags, 0o666, dir_fd=parent_fd)
        finally:
            os.close(parent_fd)
        return os.fdopen(fd, "wb")
    except OSError as exc:
        _refuse(exc, "write")
        raise
    finally:
        os.close(root_fd)


def safe_chmod(
    root: str, parts: Sequence[str], mode: int, *, strict: bool = False
) -> None:
    """Apply `mode` to an existing directory below `root` without following symlinks."""

    parts = _check_parts(parts)
    if not _use_nofollow(strict):
        os.chmod(_fallback_target(root, parts), mode)
        return

    root_fd = _open_root(root)
    try:
        dir_fd = _walk_dirs(root_fd, parts, create=False)
        try:
            os.fchmod(dir_fd, mode)
        finally:
            os.close(dir_fd)
    except OSError as exc:
        _refuse(exc, "chmod")
        raise
    finally:
        os.close(root_fd)


def open_source_nofollow(path: str) -> IO[bytes]:
    """Open a source file for reading, refusing it if it is (now) a symlink."""

    if not hasattr(os, "O_NOFOLLOW"):
        if os.path.islink(path):
            raise UnsafeFilesystemPath("Refused to read through a symlink.")
        return open(path, "rb")  # pylint: disable=consider-using-with

    # O_NONBLOCK keeps a FIFO swapped in mid-walk from blocking the open.
    flags = os.O_RDONLY | os.O_NOFOLLOW | getattr(os, "O_NONBLOCK", 0)
    try:
        fd = os.open(path, flags)
    except OSError as exc:
        _refuse(exc, "read")
        raise
    try:
        if not stat.S_ISREG(os.fstat(fd).st_mode):
            raise UnsafeFilesystemPath("Refused to read a non-regular file.")
    except BaseException:
        os.close(fd)
        raise
    return os.fdopen(fd, "rb")
