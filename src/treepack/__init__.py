"""Pack a directory tree into a compressed container and unpack it again.

Two independent operations are provided:

- tree archives: :func:`archive_tree` walks a directory and writes a zip
  container; :func:`extract_archive` restores it below a destination root,
  refusing any entry that would land outside it.
- whole streams: :func:`compress_stream` compresses a single file into one
  opaque stream; :func:`decompress_stream` reverses it.

Example::

    from treepack import archive_tree, extract_archive

    archive_tree("docs", "docs.zip")
    extract_archive("docs.zip", "docs.restored")
"""

from treepack.archive import (
    ArchiveStats,
    CompressionMethod,
    StreamCodec,
    archive_tree,
    compress_stream,
    decompress_stream,
    extract_archive,
    read_index,
)

__version__ = "0.1.0"

__all__ = [
    "ArchiveStats",
    "CompressionMethod",
    "StreamCodec",
    "archive_tree",
    "compress_stream",
    "decompress_stream",
    "extract_archive",
    "read_index",
]
