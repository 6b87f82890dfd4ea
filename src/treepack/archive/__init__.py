"""Archive engine: tree walking, zip containers and whole-stream compression."""

from treepack.archive.codecs import CompressionMethod, StreamCodec
from treepack.archive.extract import extract_archive, read_index
from treepack.archive.models import (
    ArchiveEntry,
    ArchiveStats,
    EntryKind,
    EntryReport,
    FsEntry,
)
from treepack.archive.security import UnsafeArchivePath
from treepack.archive.stream import compress_stream, decompress_stream
from treepack.archive.walker import walk_tree
from treepack.archive.zip_create import archive_tree

__all__ = [
    "ArchiveEntry",
    "ArchiveStats",
    "CompressionMethod",
    "EntryKind",
    "EntryReport",
    "FsEntry",
    "StreamCodec",
    "UnsafeArchivePath",
    "archive_tree",
    "compress_stream",
    "decompress_stream",
    "extract_archive",
    "read_index",
    "walk_tree",
]
