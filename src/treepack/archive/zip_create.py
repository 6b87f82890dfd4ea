"""Archive zip creation from a directory tree."""

from __future__ import annotations

import os
import stat
import time
import zipfile
from logging import getLogger

from treepack.archive.codecs import CHUNK_SIZE, CompressionMethod
from treepack.archive.fs_safe import UnsafeFilesystemPath, open_source_nofollow
from treepack.archive.models import ArchiveStats, EntryKind, EntryReport, FsEntry
from treepack.archive.settings import get_archive_settings
from treepack.archive.walker import WalkReport, walk_tree
from treepack.errors import ArchiveIOError, ArchiveUnsupported

logger = getLogger(__name__)

DEFAULT_FILE_MODE = 0o644
DEFAULT_DIR_MODE = 0o755

# MS-DOS directory attribute bit stored in the low byte of external_attr.
_MSDOS_DIR_ATTR = 0x10


def _permission_bits(st_mode: int, default: int) -> int:
    """POSIX permission bits, or a fixed default where the host has none."""
    if os.name != "posix":
        return default
    return stat.S_IMODE(st_mode)


def _directory_info(entry: FsEntry) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo.from_file(entry.path, entry.name, strict_timestamps=False)
    mode = _permission_bits(info.external_attr >> 16, DEFAULT_DIR_MODE)
    info.external_attr = ((stat.S_IFDIR | mode) << 16) | _MSDOS_DIR_ATTR
    return info


def _file_info(
    entry: FsEntry, st: os.stat_result, method: CompressionMethod, level: int | None
) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo.from_file(entry.path, entry.name, strict_timestamps=False)
    info.external_attr = (stat.S_IFREG | _permission_bits(st.st_mode, DEFAULT_FILE_MODE)) << 16
    info.file_size = st.st_size
    info.compress_type = method.zip_type
    # ZipFile.open(info, "w") takes the level from the ZipInfo, not the ZipFile.
    info._compresslevel = method.compresslevel(level)  # pylint: disable=protected-access
    return info


def _write_directory(zf: zipfile.ZipFile, entry: FsEntry, stats: ArchiveStats) -> None:
    try:
        info = _directory_info(entry)
    except OSError as exc:
        stats.skipped_unreadable_count += 1
        logger.warning("archive_zip: skipped directory (path=%s error=%s)", entry.path, exc)
        return
    zf.writestr(info, b"")
    stats.dirs_done += 1
    stats.entries.append(
        EntryReport(
            index=len(stats.entries), name=entry.name, kind=EntryKind.DIRECTORY, size=0
        )
    )


def _write_file(
    zf: zipfile.ZipFile,
    entry: FsEntry,
    stats: ArchiveStats,
    *,
    method: CompressionMethod,
    level: int | None,
) -> None:
    try:
        in_fp = open_source_nofollow(entry.path)
    except UnsafeFilesystemPath:
        # Replaced by a symlink (or something else) since it was listed.
        stats.skipped_symlinks_count += 1
        logger.warning("archive_zip: skipped non-regular file (path=%s)", entry.path)
        return
    except OSError as exc:
        stats.skipped_unreadable_count += 1
        logger.warning("archive_zip: skipped unreadable file (path=%s error=%s)", entry.path, exc)
        return

    with in_fp:
        try:
            info = _file_info(entry, os.fstat(in_fp.fileno()), method, level)
        except OSError as exc:
            stats.skipped_unreadable_count += 1
            logger.warning(
                "archive_zip: skipped unreadable file (path=%s error=%s)", entry.path, exc
            )
            return

        with zf.open(info, mode="w") as out_fp:
            while True:
                try:
                    chunk = in_fp.read(CHUNK_SIZE)
                except OSError as exc:
                    raise ArchiveIOError(entry.path, exc) from exc
                if not chunk:
                    break
                out_fp.write(chunk)

    # zipfile updates sizes on the ZipInfo when the entry is closed.
    stats.files_done += 1
    stats.bytes_done += info.file_size
    stats.bytes_compressed += info.compress_size
    stats.entries.append(
        EntryReport(
            index=len(stats.entries),
            name=entry.name,
            kind=EntryKind.FILE,
            size=info.file_size,
        )
    )
    logger.debug(
        "archive_zip: added (name=%s bytes=%s compressed=%s)",
        entry.name,
        info.file_size,
        info.compress_size,
    )


def archive_tree(  # noqa: PLR0913
    source: str | os.PathLike,
    destination: str | os.PathLike,
    *,
    method: str | CompressionMethod | None = None,
    level: int | None = None,
    comment: str = "",
) -> ArchiveStats:
    """
    Archive the directory tree at `source` into a new zip container at `destination`.

    Directories (including empty ones) are stored as entries without payload;
    regular files are streamed through the per-entry `method`. Symlinks,
    special files and files that cannot be opened are skipped and counted.
    The central directory index is written when the container is closed.
    """
    settings = get_archive_settings()
    method = CompressionMethod.parse(method or settings.method)
    if level is None:
        level = settings.level
    zip_type = method.zip_type

    source = os.path.abspath(source)
    destination = os.path.abspath(destination)
    if not os.path.isdir(source):
        raise ArchiveUnsupported(
            f"Source '{source}' is not a directory.",
            "Use compress_stream() to compress a single file",
        )

    start = time.perf_counter()
    stats = ArchiveStats()
    report = WalkReport()

    try:
        os.makedirs(os.path.dirname(destination), exist_ok=True)
        with zipfile.ZipFile(
            destination,
            mode="w",
            compression=zip_type,
            compresslevel=method.compresslevel(level),
            allowZip64=True,
        ) as zf:
            if comment:
                zf.comment = comment.encode("utf-8")
            for entry in walk_tree(source, report=report, exclude={destination}):
                if entry.kind == EntryKind.DIRECTORY:
                    _write_directory(zf, entry, stats)
                else:
                    _write_file(zf, entry, stats, method=method, level=level)
    except ArchiveIOError:
        logger.error("archive_zip: failed, container left incomplete (destination=%s)", destination)
        raise
    except OSError as exc:
        logger.error("archive_zip: failed, container left incomplete (destination=%s)", destination)
        raise ArchiveIOError(destination, exc) from exc

    stats.skipped_symlinks_count += report.skipped_symlinks_count
    stats.skipped_special_count += report.skipped_special_count
    stats.skipped_unreadable_count += report.skipped_unreadable_count
    stats.skipped_unsafe_paths_count += report.skipped_unsafe_paths_count
    stats.source_size = stats.bytes_done
    stats.target_size = os.path.getsize(destination)
    stats.elapsed = time.perf_counter() - start

    logger.info(
        "archive_zip: done (source=%s destination=%s method=%s files=%s dirs=%s "
        "bytes=%s skipped=%s)",
        source,
        destination,
        method.value,
        stats.files_done,
        stats.dirs_done,
        stats.bytes_done,
        stats.skipped_count,
    )
    return stats
