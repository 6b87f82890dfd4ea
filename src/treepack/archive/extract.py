"""Archive extraction onto a local directory."""

from __future__ import annotations

import os
import stat
import time
import zipfile
from dataclasses import dataclass
from logging import getLogger
from typing import IO

from treepack.archive.codecs import CHUNK_SIZE, CompressionMethod, is_codec_error
from treepack.archive.fs_safe import (
    UnsafeFilesystemPath,
    UnsupportedFilesystemSafety,
    safe_chmod,
    safe_makedirs,
    safe_open_for_write,
)
from treepack.archive.limits import (
    RATIO_CHECK_MIN_SIZE,
    ExtractionLimits,
    get_extraction_limits,
)
from treepack.archive.models import ArchiveEntry, ArchiveStats, EntryKind, EntryReport
from treepack.archive.security import (
    NormalizedArchivePath,
    UnsafeArchivePath,
    normalize_archive_path,
    resolve_extraction_target,
)
from treepack.archive.settings import (
    UNSAFE_PATH_POLICIES,
    UnsafePathPolicy,
    get_archive_settings,
)
from treepack.errors import (
    ArchiveCorrupt,
    ArchiveIOError,
    ArchiveLimitExceeded,
    ArchiveUnsupported,
)

logger = getLogger(__name__)

# Fixed part of a ZIP local file header, before the name and extra field.
_LOCAL_HEADER_SIZE = 30
_UNIX_CREATE_SYSTEM = 3


@dataclass(frozen=True)
class ExtractionPlan:
    """Expected totals for extraction, validated against limits."""

    total_files: int
    total_bytes: int


def _zipinfo_is_symlink(info: zipfile.ZipInfo) -> bool:
    """
    Best-effort detection of symlink entries in zip files.

    Zip has no first-class type flag; on Unix, external attributes carry the mode.
    """

    mode = (int(getattr(info, "external_attr", 0)) >> 16) & 0o170000
    return mode == stat.S_IFLNK


def _zipinfo_kind(info: zipfile.ZipInfo) -> EntryKind:
    if _zipinfo_is_symlink(info):
        return EntryKind.SYMLINK
    fmt = stat.S_IFMT(int(info.external_attr) >> 16)
    if info.is_dir() or fmt == stat.S_IFDIR:
        return EntryKind.DIRECTORY
    if fmt in (0, stat.S_IFREG):
        return EntryKind.FILE
    return EntryKind.SPECIAL


def _zipinfo_permission_bits(info: zipfile.ZipInfo) -> int | None:
    """Unix permission bits, or None if the entry carries none."""
    if info.create_system != _UNIX_CREATE_SYSTEM:
        return None
    mode = int(info.external_attr) >> 16
    if not mode:
        return None
    return stat.S_IMODE(mode)


def _zipinfo_comment(info: zipfile.ZipInfo) -> str:
    return (info.comment or b"").decode("utf-8", errors="replace")


def _to_entry(info: zipfile.ZipInfo) -> ArchiveEntry:
    return ArchiveEntry(
        name=info.filename.rstrip("/"),
        kind=_zipinfo_kind(info),
        size=int(info.file_size or 0),
        compressed_size=int(info.compress_size or 0),
        method=CompressionMethod.from_zip_type(info.compress_type),
        permission_bits=_zipinfo_permission_bits(info),
        comment=_zipinfo_comment(info),
        offset=int(info.header_offset),
    )


def _open_container(path: str) -> zipfile.ZipFile:
    """Open a container and check that its index is consistent with the file."""
    try:
        size = os.path.getsize(path)
        zf = zipfile.ZipFile(path)  # pylint: disable=consider-using-with
    except (zipfile.BadZipFile, zipfile.LargeZipFile, EOFError, ValueError) as exc:
        raise ArchiveCorrupt(path, str(exc) or "unreadable index") from exc
    except OSError as exc:
        raise ArchiveIOError(path, exc) from exc

    try:
        _check_payload_ranges(path, zf.infolist(), size)
    except ArchiveCorrupt:
        zf.close()
        raise
    return zf


def _check_payload_ranges(path: str, infos: list[zipfile.ZipInfo], size: int) -> None:
    seen_offsets: set[int] = set()
    for info in infos:
        offset = int(info.header_offset)
        name_len = len(info.filename.encode("utf-8"))
        end = offset + _LOCAL_HEADER_SIZE + name_len + int(info.compress_size or 0)
        if offset < 0 or end > size:
            raise ArchiveCorrupt(path, f"entry '{info.filename}' points outside the container")
        if offset in seen_offsets:
            raise ArchiveCorrupt(path, f"entry '{info.filename}' shares a payload with another entry")
        seen_offsets.add(offset)


def read_index(container: str | os.PathLike) -> list[ArchiveEntry]:
    """
    Return the entries listed in the container index, in index order.

    Names are returned as stored (minus a trailing `/`); they are validated
    only when extracting.
    """
    path = os.fspath(container)
    with _open_container(path) as zf:
        return [_to_entry(info) for info in zf.infolist()]


def _plan_zip(infos: list[zipfile.ZipInfo], limits: ExtractionLimits) -> ExtractionPlan:
    """Build a validated extraction plan for zip files."""
    total_files = 0
    total_bytes = 0

    for info in infos:
        kind = _zipinfo_kind(info)
        if kind in (EntryKind.SYMLINK, EntryKind.SPECIAL):
            continue
        try:
            n = normalize_archive_path(info.filename)
        except UnsafeArchivePath:
            continue
        if len(n.normalized) > limits.max_path_length:
            raise ArchiveLimitExceeded("Path too long.")
        if n.depth > limits.max_depth:
            raise ArchiveLimitExceeded("Path too deep.")
        if kind == EntryKind.DIRECTORY:
            continue
        size = int(info.file_size or 0)
        if size > limits.max_file_size:
            raise ArchiveLimitExceeded("File too large.")
        if size > RATIO_CHECK_MIN_SIZE:
            compressed = int(getattr(info, "compress_size", 0) or 0)
            if compressed > 0 and (size / compressed) > limits.max_compression_ratio:
                raise ArchiveLimitExceeded("Suspicious compression ratio.")
        total_files += 1
        total_bytes += size

    if total_files > limits.max_files:
        raise ArchiveLimitExceeded("Too many files.")
    if total_bytes > limits.max_total_size:
        raise ArchiveLimitExceeded("Archive too large to extract.")

    return ExtractionPlan(total_files=total_files, total_bytes=total_bytes)


def _read_member(member_fp: IO[bytes], container: str, name: str) -> bytes:
    try:
        return member_fp.read(CHUNK_SIZE)
    except Exception as exc:  # noqa: BLE001
        if is_codec_error(exc):
            raise ArchiveCorrupt(container, f"entry '{name}': {exc}") from exc
        raise


def _extract_file(  # noqa: PLR0913
    zf: zipfile.ZipFile,
    info: zipfile.ZipInfo,
    *,
    container: str,
    destination: str,
    npath: NormalizedArchivePath,
    strict: bool,
) -> int:
    """Stream one file entry to disk; return the number of bytes written."""
    target = os.path.join(destination, *npath.parts)
    try:
        member_fp = zf.open(info)
    except zipfile.BadZipFile as exc:
        raise ArchiveCorrupt(container, f"entry '{info.filename}': {exc}") from exc

    written = 0
    with member_fp:
        try:
            out_fp = safe_open_for_write(destination, npath.parts, strict=strict)
        except OSError as exc:
            raise ArchiveIOError(target, exc) from exc

        with out_fp:
            while True:
                chunk = _read_member(member_fp, container, info.filename)
                if not chunk:
                    break
                try:
                    out_fp.write(chunk)
                except OSError as exc:
                    raise ArchiveIOError(target, exc) from exc
                written += len(chunk)

            if written != info.file_size:
                raise ArchiveCorrupt(
                    container,
                    f"entry '{info.filename}' holds {written} bytes, index says {info.file_size}",
                )

            mode = _zipinfo_permission_bits(info)
            if mode is not None and os.name == "posix":
                os.fchmod(out_fp.fileno(), mode & 0o777)
    return written


def _check_method(info: zipfile.ZipInfo) -> None:
    if info.flag_bits & 0x1:
        raise ArchiveUnsupported(f"Entry '{info.filename}' is encrypted.")
    method = CompressionMethod.from_zip_type(info.compress_type)
    if method is None or not method.available:
        raise ArchiveUnsupported(
            f"Entry '{info.filename}' uses unsupported compression method {info.compress_type}.",
            "Re-create the archive with deflate or stored entries",
        )


def extract_archive(  # noqa: PLR0912,PLR0915  # pylint: disable=too-many-locals,too-many-branches,too-many-statements
    container: str | os.PathLike,
    destination_root: str | os.PathLike,
    *,
    on_unsafe_path: UnsafePathPolicy | None = None,
    limits: ExtractionLimits | None = None,
    strict: bool | None = None,
) -> ArchiveStats:
    """
    Extract every entry of `container` below `destination_root`.

    Security:
    - zip-slip/path traversal prevention via strict path normalization, with
      `on_unsafe_path` choosing between aborting ("abort") and skipping
      ("skip") unsafe entries
    - no-follow writes, so symlinks already present in the destination are
      never traversed
    - bounded resource usage via limits (files count, sizes, depth, path length)
    - ignores symlinks/special files
    """
    settings = get_archive_settings()
    policy = on_unsafe_path or settings.on_unsafe_path
    if policy not in UNSAFE_PATH_POLICIES:
        raise ValueError(f"Unknown unsafe path policy '{policy}'.")
    if limits is None:
        limits = get_extraction_limits()
    if strict is None:
        strict = settings.fs_strict

    path = os.fspath(container)
    destination = os.path.abspath(destination_root)
    start = time.perf_counter()
    stats = ArchiveStats()
    dir_modes: list[tuple[tuple[str, ...], int]] = []

    with _open_container(path) as zf:
        stats.source_size = os.path.getsize(path)
        infos = zf.infolist()
        plan = _plan_zip(infos, limits)
        logger.debug(
            "archive_extract: planned (container=%s files=%s bytes=%s)",
            path,
            plan.total_files,
            plan.total_bytes,
        )
        archive_comment = (zf.comment or b"").decode("utf-8", errors="replace")
        if archive_comment:
            logger.info("archive_extract: archive comment (container=%s comment=%s)", path, archive_comment)

        try:
            os.makedirs(destination, exist_ok=True)
        except OSError as exc:
            raise ArchiveIOError(destination, exc) from exc

        for index, info in enumerate(infos):
            kind = _zipinfo_kind(info)
            if kind == EntryKind.SYMLINK:
                stats.skipped_symlinks_count += 1
                logger.warning("archive_extract: skipped symlink entry (name=%s)", info.filename)
                continue
            if kind == EntryKind.SPECIAL:
                stats.skipped_special_count += 1
                logger.warning("archive_extract: skipped special entry (name=%s)", info.filename)
                continue

            try:
                npath = normalize_archive_path(info.filename)
                target = resolve_extraction_target(destination, info.filename)
                if kind == EntryKind.DIRECTORY:
                    safe_makedirs(destination, npath.parts, strict=strict)
                    size = 0
                else:
                    _check_method(info)
                    size = _extract_file(
                        zf,
                        info,
                        container=path,
                        destination=destination,
                        npath=npath,
                        strict=strict,
                    )
            except UnsupportedFilesystemSafety:
                raise
            except (UnsafeArchivePath, UnsafeFilesystemPath) as exc:
                if policy == "abort":
                    logger.error(
                        "archive_extract: aborted on unsafe entry (name=%r error=%s)",
                        info.filename,
                        exc,
                    )
                    raise
                stats.skipped_unsafe_paths_count += 1
                logger.warning(
                    "archive_extract: skipped unsafe entry (name=%r error=%s)", info.filename, exc
                )
                continue
            except OSError as exc:
                raise ArchiveIOError(os.path.join(destination, *npath.parts), exc) from exc

            if kind == EntryKind.DIRECTORY:
                stats.dirs_done += 1
                mode = _zipinfo_permission_bits(info)
                if mode is not None:
                    dir_modes.append((npath.parts, mode & 0o777))
            else:
                stats.files_done += 1
                stats.bytes_done += size
                stats.bytes_compressed += int(info.compress_size or 0)

            stats.entries.append(
                EntryReport(
                    index=index,
                    name=npath.normalized,
                    kind=kind,
                    size=size,
                    target=str(target),
                    comment=_zipinfo_comment(info),
                )
            )
            logger.debug("archive_extract: extracted (name=%s bytes=%s)", npath.normalized, size)

    # Deepest first, so a read-only directory never blocks its own children.
    if os.name == "posix":
        for parts, mode in sorted(dir_modes, key=lambda item: len(item[0]), reverse=True):
            try:
                safe_chmod(destination, parts, mode, strict=strict)
            except OSError as exc:
                raise ArchiveIOError(os.path.join(destination, *parts), exc) from exc

    stats.target_size = stats.bytes_done
    stats.elapsed = time.perf_counter() - start
    logger.info(
        "archive_extract: done (container=%s destination=%s files=%s dirs=%s bytes=%s "
        "skipped=%s)",
        path,
        destination,
        stats.files_done,
        stats.dirs_done,
        stats.bytes_done,
        stats.skipped_count,
    )
    return stats
