"""Archive entry path helpers.

Entry names are always stored `/`-separated and relative. The same checks run
on both sides: while writing (source path -> entry name) and while extracting
(entry name -> destination path), so a container can never make extraction
write outside its destination root.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from treepack.errors import TreepackError

_DRIVE_RE = re.compile(r"^[A-Za-z]:")


class UnsafeArchivePath(TreepackError, ValueError):
    """Raised when an archive entry path is unsafe (zip-slip/path traversal)."""


@dataclass(frozen=True)
class NormalizedArchivePath:
    """A validated, normalized path for an archive entry."""

    raw: str
    normalized: str
    parts: tuple[str, ...]

    @property
    def depth(self) -> int:
        """Number of path components."""
        return len(self.parts)


def normalize_archive_path(path: str) -> NormalizedArchivePath:
    """
    Normalize and validate an entry path from an archive.

    - Convert backslashes to slashes
    - Reject absolute paths, drive letters and NUL bytes
    - Reject any `..` traversal
    - Strip leading `./` and a trailing `/`
    """
    if not isinstance(path, str) or not path:
        raise UnsafeArchivePath("Empty path.")

    raw = path
    if "\x00" in path:
        raise UnsafeArchivePath("NUL bytes are not allowed.")
    path = path.replace("\\", "/")
    # Some zips contain leading "./"
    while path.startswith("./"):
        path = path[2:]

    if _DRIVE_RE.match(path):
        raise UnsafeArchivePath("Drive-qualified paths are not allowed.")
    posix = PurePosixPath(path)
    if posix.is_absolute():
        raise UnsafeArchivePath("Absolute paths are not allowed.")

    parts: list[str] = []
    for part in posix.parts:
        if part in {"", "."}:
            continue
        if part == "..":
            raise UnsafeArchivePath("Path traversal is not allowed.")
        parts.append(part)

    if not parts:
        raise UnsafeArchivePath("Invalid path.")

    normalized = "/".join(parts)
    return NormalizedArchivePath(raw=raw, normalized=normalized, parts=tuple(parts))


def map_source_path(root: str | os.PathLike, path: str | os.PathLike) -> str | None:
    """
    Return the entry name for `path` inside the traversal `root`.

    Returns None for the root itself, which is never stored as an entry.
    Raises `UnsafeArchivePath` if `path` is not inside `root`.
    """
    root_norm = os.path.abspath(root)
    path_norm = os.path.abspath(path)
    try:
        common = os.path.commonpath([root_norm, path_norm])
    except ValueError as exc:
        raise UnsafeArchivePath("Path is on a different drive than the root.") from exc
    if common != root_norm:
        raise UnsafeArchivePath("Path escapes the traversal root.")

    rel = os.path.relpath(path_norm, root_norm)
    if rel == os.curdir:
        return None
    return normalize_archive_path(rel.replace(os.sep, "/")).normalized


def resolve_extraction_target(root: str | os.PathLike, name: str) -> Path:
    """
    Return the destination path of entry `name` under `root`.

    The name is normalized first; the joined path is then re-checked against
    the resolved root so that nothing outside `root` is ever addressed.
    """
    npath = normalize_archive_path(name)
    root_resolved = Path(root).resolve(strict=False)
    target = root_resolved.joinpath(*npath.parts)
    try:
        target.relative_to(root_resolved)
    except ValueError as exc:
        raise UnsafeArchivePath("Path escapes the destination root.") from exc
    return target
