"""Source tree traversal."""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass
from logging import getLogger
from typing import Collection, Iterator

from treepack.archive.models import EntryKind, FsEntry
from treepack.archive.security import UnsafeArchivePath, map_source_path

logger = getLogger(__name__)


@dataclass
class WalkReport:
    """Entries the walker could not or would not yield."""

    skipped_symlinks_count: int = 0
    skipped_special_count: int = 0
    skipped_unreadable_count: int = 0
    skipped_unsafe_paths_count: int = 0


def _kind_for_mode(mode: int) -> EntryKind:
    if stat.S_ISLNK(mode):
        return EntryKind.SYMLINK
    if stat.S_ISDIR(mode):
        return EntryKind.DIRECTORY
    if stat.S_ISREG(mode):
        return EntryKind.FILE
    return EntryKind.SPECIAL


def walk_tree(
    root: str | os.PathLike,
    *,
    report: WalkReport | None = None,
    exclude: Collection[str] = (),
) -> Iterator[FsEntry]:
    """
    Yield every directory and regular file below `root`.

    - Directories come before their children; names are sorted per directory,
      so the order is stable for a given snapshot of the tree.
    - The root itself is not yielded.
    - Symlinks are never followed; they and special files (FIFOs, sockets,
      devices) are counted in `report` and skipped.
    - Entries that cannot be read or that disappear mid-walk are logged and
      skipped; the walk carries on.
    - Absolute paths listed in `exclude` are skipped silently.
    """
    if report is None:
        report = WalkReport()
    root = os.path.abspath(root)
    excluded = {os.path.abspath(p) for p in exclude}
    pending = [root]

    while pending:
        current = pending.pop()
        try:
            with os.scandir(current) as it:
                children = sorted(it, key=lambda e: e.name)
        except OSError as exc:
            report.skipped_unreadable_count += 1
            logger.warning("walk: skipped unreadable directory (path=%s error=%s)", current, exc)
            continue

        subdirs: list[str] = []
        for child in children:
            if child.path in excluded:
                continue
            try:
                kind = _kind_for_mode(child.stat(follow_symlinks=False).st_mode)
            except OSError as exc:
                report.skipped_unreadable_count += 1
                logger.warning("walk: skipped vanished entry (path=%s error=%s)", child.path, exc)
                continue

            if kind == EntryKind.SYMLINK:
                report.skipped_symlinks_count += 1
                logger.warning("walk: skipped symlink (path=%s)", child.path)
                continue
            if kind == EntryKind.SPECIAL:
                report.skipped_special_count += 1
                logger.warning("walk: skipped special file (path=%s)", child.path)
                continue

            try:
                name = map_source_path(root, child.path)
            except UnsafeArchivePath as exc:
                report.skipped_unsafe_paths_count += 1
                logger.warning("walk: skipped unsafe name (path=%s error=%s)", child.path, exc)
                continue
            if name is None:
                continue

            yield FsEntry(path=child.path, name=name, kind=kind)
            if kind == EntryKind.DIRECTORY:
                subdirs.append(child.path)

        # Stack: push in reverse so the first child directory is walked first.
        pending.extend(reversed(subdirs))
