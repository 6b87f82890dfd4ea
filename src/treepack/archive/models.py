"""Records exchanged between the walker, the writer, the reader and the driver."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from treepack.archive.codecs import CompressionMethod


class EntryKind(str, enum.Enum):
    """Kind of a filesystem or archive entry."""

    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"
    SPECIAL = "special"


@dataclass(frozen=True)
class FsEntry:
    """A filesystem entry found while walking a source tree."""

    path: str
    name: str
    kind: EntryKind


@dataclass(frozen=True)
class ArchiveEntry:
    """An entry listed in a container index."""

    name: str
    kind: EntryKind
    size: int
    compressed_size: int
    method: CompressionMethod | None
    permission_bits: int | None
    comment: str
    offset: int

    @property
    def is_dir(self) -> bool:
        return self.kind == EntryKind.DIRECTORY


@dataclass(frozen=True)
class EntryReport:
    """One processed entry, surfaced to the caller for reporting."""

    index: int
    name: str
    kind: EntryKind
    size: int
    target: str = ""
    comment: str = ""


@dataclass
class ArchiveStats:  # pylint: disable=too-many-instance-attributes
    """Aggregate counters for one archive, extract or stream operation."""

    files_done: int = 0
    dirs_done: int = 0
    bytes_done: int = 0
    bytes_compressed: int = 0
    skipped_symlinks_count: int = 0
    skipped_unsafe_paths_count: int = 0
    skipped_unreadable_count: int = 0
    skipped_special_count: int = 0
    source_size: int = 0
    target_size: int = 0
    elapsed: float = 0.0
    entries: list[EntryReport] = field(default_factory=list)

    @property
    def entry_count(self) -> int:
        """Number of file and directory entries processed."""
        return self.files_done + self.dirs_done

    @property
    def skipped_count(self) -> int:
        """Number of entries skipped for any reason."""
        return (
            self.skipped_symlinks_count
            + self.skipped_unsafe_paths_count
            + self.skipped_unreadable_count
            + self.skipped_special_count
        )

    def as_payload(self) -> dict:
        """Return a JSON-ready summary."""
        return {
            "progress": {
                "files_done": self.files_done,
                "dirs_done": self.dirs_done,
                "bytes_done": self.bytes_done,
                "bytes_compressed": self.bytes_compressed,
            },
            "skipped_symlinks_count": self.skipped_symlinks_count,
            "skipped_unsafe_paths_count": self.skipped_unsafe_paths_count,
            "skipped_unreadable_count": self.skipped_unreadable_count,
            "skipped_special_count": self.skipped_special_count,
            "source_size": self.source_size,
            "target_size": self.target_size,
            "elapsed": round(self.elapsed, 6),
            "entries": [
                {
                    "index": report.index,
                    "name": report.name,
                    "kind": report.kind.value,
                    "size": report.size,
                    "target": report.target,
                    "comment": report.comment,
                }
                for report in self.entries
            ],
        }
