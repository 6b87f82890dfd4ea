"""Compression codecs.

Two closed sets of codecs are exposed:

- `CompressionMethod`: per-entry methods stored in the container index and
  applied by `zipfile` while writing or reading an entry payload.
- `StreamCodec`: whole-stream codecs used to compress one file into a single
  opaque blob with no index.

Both are plain enums; callers dispatch through their methods rather than
inspecting codec objects.
"""

from __future__ import annotations

import bz2
import enum
import gzip
import io
import lzma
import zipfile
import zlib
from typing import BinaryIO

import zstandard

from treepack.errors import ArchiveUnsupported

CHUNK_SIZE = 1024 * 1024

# APPNOTE method id for Zstandard entries; `zipfile` handles it natively on
# interpreters that define `zipfile.ZIP_ZSTANDARD`.
ZIP_ZSTANDARD_ID = 93

_zip_zstandard = getattr(zipfile, "ZIP_ZSTANDARD", None)

CODEC_ERRORS: tuple[type[BaseException], ...] = (
    zipfile.BadZipFile,
    gzip.BadGzipFile,
    EOFError,
    zlib.error,
    lzma.LZMAError,
    zstandard.ZstdError,
)


def is_codec_error(exc: BaseException) -> bool:
    """Return True if `exc` signals damaged compressed data (not a host I/O error)."""

    if isinstance(exc, CODEC_ERRORS):
        return True
    # bz2 reports damaged streams as a bare OSError without errno.
    if isinstance(exc, OSError) and exc.errno is None:
        return True
    # compression.zstd (3.14+) errors raised from zipfile
    return type(exc).__name__ == "ZstdError"


class CompressionMethod(str, enum.Enum):
    """Per-entry compression method recorded in the container index."""

    STORED = "stored"
    DEFLATE = "deflate"
    BZIP2 = "bzip2"
    LZMA = "lzma"
    ZSTD = "zstd"

    @classmethod
    def parse(cls, value: str | CompressionMethod) -> CompressionMethod:
        """Return the method named `value`, raising `ArchiveUnsupported` if unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            choices = ", ".join(m.value for m in cls)
            raise ArchiveUnsupported(
                f"Unknown compression method '{value}'.",
                f"Use one of: {choices}",
            ) from exc

    @classmethod
    def from_zip_type(cls, compress_type: int) -> CompressionMethod | None:
        """Map a ZIP method id to a method, or None when unknown."""
        for method, zip_type in _ZIP_TYPES.items():
            if zip_type == compress_type:
                return method
        if compress_type == ZIP_ZSTANDARD_ID:
            return cls.ZSTD
        return None

    @property
    def available(self) -> bool:
        """True if the running interpreter can read and write this method."""
        if self is CompressionMethod.ZSTD:
            return _zip_zstandard is not None
        return True

    @property
    def zip_type(self) -> int:
        """ZIP method id passed to `zipfile`."""
        if not self.available:
            raise ArchiveUnsupported(
                f"Compression method '{self.value}' is not supported by this Python.",
                "Use deflate, or Python 3.14+ for zstd entries",
            )
        if self is CompressionMethod.ZSTD:
            return int(_zip_zstandard)  # type: ignore[arg-type]
        return _ZIP_TYPES[self]

    def compresslevel(self, level: int | None) -> int | None:
        """Return the level to hand to `zipfile`, clamped to the method's range."""
        if level is None or self in (CompressionMethod.STORED, CompressionMethod.LZMA):
            return None
        if self is CompressionMethod.DEFLATE:
            return max(0, min(9, level))
        if self is CompressionMethod.BZIP2:
            return max(1, min(9, level))
        return level


_ZIP_TYPES: dict[CompressionMethod, int] = {
    CompressionMethod.STORED: zipfile.ZIP_STORED,
    CompressionMethod.DEFLATE: zipfile.ZIP_DEFLATED,
    CompressionMethod.BZIP2: zipfile.ZIP_BZIP2,
    CompressionMethod.LZMA: zipfile.ZIP_LZMA,
}


class ZstdFrameReader:
    """
    Decompressing reader for a sequence of zstd frames.

    `zstandard`'s stream reader reports a stream cut short inside a frame as a
    clean end of file; this reader raises `EOFError` instead, like `gzip`,
    `bz2` and `lzma` do.
    """

    def __init__(self, fileobj: BinaryIO) -> None:
        self._fileobj = fileobj
        self._dctx = zstandard.ZstdDecompressor()
        self._dobj = self._dctx.decompressobj()
        self._buffer = b""
        self._in_frame = False
        self._exhausted = False

    def __enter__(self) -> ZstdFrameReader:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._buffer = b""
        self._exhausted = True

    def read(self, size: int = -1) -> bytes:
        while not self._exhausted and (size < 0 or len(self._buffer) < size):
            self._fill()
        if size < 0:
            data, self._buffer = self._buffer, b""
        else:
            data, self._buffer = self._buffer[:size], self._buffer[size:]
        return data

    def _fill(self) -> None:
        chunk = self._fileobj.read(CHUNK_SIZE)
        if not chunk:
            if self._in_frame:
                raise EOFError(
                    "Compressed file ended before the end-of-stream marker was reached"
                )
            self._exhausted = True
            return
        self._feed(chunk)

    def _feed(self, data: bytes) -> None:
        # One decompressobj per frame; bytes past a frame start the next one.
        while data:
            self._in_frame = True
            self._buffer += self._dobj.decompress(data)
            if not self._dobj.eof:
                return
            self._in_frame = False
            data = self._dobj.unused_data
            self._dobj = self._dctx.decompressobj()


class StreamCodec(str, enum.Enum):
    """Whole-stream codec for single-file compression."""

    GZIP = "gzip"
    ZSTD = "zstd"
    BZIP2 = "bzip2"
    XZ = "xz"

    @classmethod
    def parse(cls, value: str | StreamCodec) -> StreamCodec:
        """Return the codec named `value`, raising `ArchiveUnsupported` if unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            choices = ", ".join(c.value for c in cls)
            raise ArchiveUnsupported(
                f"Unknown stream codec '{value}'.", f"Use one of: {choices}"
            ) from exc

    @classmethod
    def detect(cls, head: bytes) -> StreamCodec | None:
        """Identify a stream codec from the first bytes of a stream."""
        for codec in cls:
            if head.startswith(codec.magic):
                return codec
        return None

    @property
    def magic(self) -> bytes:
        return _MAGIC[self]

    @property
    def default_level(self) -> int:
        return _DEFAULT_LEVEL[self]

    def open_writer(self, fileobj: BinaryIO, level: int | None = None) -> BinaryIO:
        """Wrap `fileobj` in a compressing writer.

        Closing the returned writer finishes the stream but leaves `fileobj`
        open.
        """
        if level is None:
            level = self.default_level
        if self is StreamCodec.GZIP:
            return gzip.GzipFile(
                fileobj=fileobj, mode="wb", compresslevel=max(0, min(9, level)), mtime=0
            )
        if self is StreamCodec.ZSTD:
            compressor = zstandard.ZstdCompressor(level=level)
            return compressor.stream_writer(fileobj, closefd=False)
        if self is StreamCodec.BZIP2:
            return bz2.BZ2File(fileobj, mode="wb", compresslevel=max(1, min(9, level)))
        return lzma.LZMAFile(fileobj, mode="wb", preset=max(0, min(9, level)))

    def open_reader(self, fileobj: BinaryIO) -> BinaryIO:
        """Wrap `fileobj` in a decompressing reader."""
        if self is StreamCodec.GZIP:
            return gzip.GzipFile(fileobj=fileobj, mode="rb")
        if self is StreamCodec.ZSTD:
            return ZstdFrameReader(fileobj)
        if self is StreamCodec.BZIP2:
            return bz2.BZ2File(fileobj, mode="rb")
        return lzma.LZMAFile(fileobj, mode="rb")

    def compress(self, data: bytes, level: int | None = None) -> bytes:
        """One-shot compression of `data`."""
        buf = io.BytesIO()
        with self.open_writer(buf, level=level) as writer:
            writer.write(data)
        return buf.getvalue()

    def decompress(self, data: bytes) -> bytes:
        """One-shot decompression of `data`."""
        out = io.BytesIO()
        with self.open_reader(io.BytesIO(data)) as reader:
            for chunk in iter(lambda: reader.read(CHUNK_SIZE), b""):
                out.write(chunk)
        return out.getvalue()


_MAGIC: dict[StreamCodec, bytes] = {
    StreamCodec.GZIP: b"\x1f\x8b",
    StreamCodec.ZSTD: b"\x28\xb5\x2f\xfd",
    StreamCodec.BZIP2: b"BZh",
    StreamCodec.XZ: b"\xfd7zXZ\x00",
}

# gzip at 9 matches `gzip --best`.
_DEFAULT_LEVEL: dict[StreamCodec, int] = {
    StreamCodec.GZIP: 9,
    StreamCodec.ZSTD: 19,
    StreamCodec.BZIP2: 9,
    StreamCodec.XZ: 6,
}
