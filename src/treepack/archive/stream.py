"""Whole-stream compression of a single file.

A whole-stream file is one opaque compressed blob with no index. It has its
own inverse here; containers produced by `archive_tree` are read by
`extract_archive` instead.
"""

from __future__ import annotations

import os
import time
import zipfile
from logging import getLogger
from typing import IO, Iterator

from treepack.archive.codecs import CHUNK_SIZE, StreamCodec, is_codec_error
from treepack.archive.models import ArchiveStats, EntryKind, EntryReport
from treepack.archive.settings import get_archive_settings
from treepack.errors import ArchiveCorrupt, ArchiveIOError, ArchiveUnsupported

logger = getLogger(__name__)

# Longest magic number among stream codecs.
_MAGIC_PROBE_SIZE = 8


def _open_source(path: str) -> IO[bytes]:
    if os.path.isdir(path):
        raise ArchiveUnsupported(
            f"Source '{path}' is a directory.", "Use archive_tree() for directories"
        )
    try:
        return open(path, "rb")  # pylint: disable=consider-using-with
    except OSError as exc:
        raise ArchiveIOError(path, exc) from exc


def _iter_source_chunks(fp: IO[bytes], path: str) -> Iterator[bytes]:
    while True:
        try:
            chunk = fp.read(CHUNK_SIZE)
        except OSError as exc:
            raise ArchiveIOError(path, exc) from exc
        if not chunk:
            return
        yield chunk


def _iter_decoded_chunks(reader: IO[bytes], path: str, codec: StreamCodec) -> Iterator[bytes]:
    while True:
        try:
            chunk = reader.read(CHUNK_SIZE)
        except Exception as exc:  # noqa: BLE001
            if is_codec_error(exc):
                raise ArchiveCorrupt(path, f"damaged {codec.value} stream: {exc}") from exc
            if isinstance(exc, OSError):
                raise ArchiveIOError(path, exc) from exc
            raise
        if not chunk:
            return
        yield chunk


def _check_distinct(source: str, destination: str) -> None:
    """Refuse to write a stream over its own input."""
    same = source == destination
    if not same and os.path.exists(destination):
        try:
            same = os.path.samefile(source, destination)
        except OSError as exc:
            raise ArchiveIOError(exc.filename or source, exc) from exc
    if same:
        raise ArchiveUnsupported(
            f"Source and destination are the same file ('{source}').",
            "Write the output to a different path",
        )


def _ensure_parent(path: str) -> None:
    try:
        os.makedirs(os.path.dirname(path), exist_ok=True)
    except OSError as exc:
        raise ArchiveIOError(path, exc) from exc


def compress_stream(
    source_file: str | os.PathLike,
    dest_file: str | os.PathLike,
    *,
    codec: str | StreamCodec | None = None,
    level: int | None = None,
) -> ArchiveStats:
    """Compress `source_file` into a single `codec` stream at `dest_file`."""
    settings = get_archive_settings()
    codec = StreamCodec.parse(codec or settings.stream_codec)
    if level is None:
        level = settings.level

    source = os.path.abspath(source_file)
    destination = os.path.abspath(dest_file)
    _check_distinct(source, destination)
    start = time.perf_counter()
    stats = ArchiveStats()

    with _open_source(source) as in_fp:
        _ensure_parent(destination)
        try:
            with open(destination, "wb") as out_fp, codec.open_writer(
                out_fp, level=level
            ) as writer:
                for chunk in _iter_source_chunks(in_fp, source):
                    writer.write(chunk)
                    stats.bytes_done += len(chunk)
        except OSError as exc:
            raise ArchiveIOError(destination, exc) from exc

    stats.files_done = 1
    stats.source_size = stats.bytes_done
    stats.target_size = os.path.getsize(destination)
    stats.bytes_compressed = stats.target_size
    stats.elapsed = time.perf_counter() - start
    stats.entries.append(
        EntryReport(
            index=0,
            name=os.path.basename(source),
            kind=EntryKind.FILE,
            size=stats.bytes_done,
            target=destination,
        )
    )
    logger.info(
        "stream_compress: done (source=%s destination=%s codec=%s bytes=%s compressed=%s)",
        source,
        destination,
        codec.value,
        stats.source_size,
        stats.target_size,
    )
    return stats


def detect_stream_codec(path: str | os.PathLike) -> StreamCodec | None:
    """Return the whole-stream codec of the file at `path`, if recognised."""
    with _open_source(os.fspath(path)) as fp:
        try:
            head = fp.read(_MAGIC_PROBE_SIZE)
        except OSError as exc:
            raise ArchiveIOError(os.fspath(path), exc) from exc
    return StreamCodec.detect(head)


def decompress_stream(
    source_file: str | os.PathLike,
    dest_file: str | os.PathLike,
    *,
    codec: str | StreamCodec | None = None,
) -> ArchiveStats:
    """
    Decompress the whole-stream file `source_file` into `dest_file`.

    The codec is detected from the stream's magic bytes unless given.
    """
    source = os.path.abspath(source_file)
    destination = os.path.abspath(dest_file)
    _check_distinct(source, destination)
    detected = detect_stream_codec(source)
    if codec is None:
        if detected is None:
            if zipfile.is_zipfile(source):
                raise ArchiveUnsupported(
                    f"'{source}' is an archive container, not a compressed stream.",
                    "Use extract_archive() for containers",
                )
            raise ArchiveUnsupported(f"'{source}' is not a recognised compressed stream.")
        codec = detected
    else:
        codec = StreamCodec.parse(codec)
        if detected is not codec:
            raise ArchiveCorrupt(source, f"not a {codec.value} stream")

    start = time.perf_counter()
    stats = ArchiveStats(source_size=os.path.getsize(source))

    with _open_source(source) as in_fp, codec.open_reader(in_fp) as reader:
        _ensure_parent(destination)
        try:
            out_fp = open(destination, "wb")  # pylint: disable=consider-using-with
        except OSError as exc:
            raise ArchiveIOError(destination, exc) from exc
        with out_fp:
            for chunk in _iter_decoded_chunks(reader, source, codec):
                try:
                    out_fp.write(chunk)
                except OSError as exc:
                    raise ArchiveIOError(destination, exc) from exc
                stats.bytes_done += len(chunk)

    stats.files_done = 1
    stats.bytes_compressed = stats.source_size
    stats.target_size = stats.bytes_done
    stats.elapsed = time.perf_counter() - start
    stats.entries.append(
        EntryReport(
            index=0,
            name=os.path.basename(destination),
            kind=EntryKind.FILE,
            size=stats.bytes_done,
            target=destination,
        )
    )
    logger.info(
        "stream_decompress: done (source=%s destination=%s codec=%s bytes=%s)",
        source,
        destination,
        codec.value,
        stats.bytes_done,
    )
    return stats
