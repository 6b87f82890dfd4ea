"""Error hierarchy with friendly messages."""

from __future__ import annotations


class TreepackError(Exception):
    """Base exception for all treepack errors."""

    def __init__(self, message: str, suggestion: str | None = None) -> None:
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)

    def __str__(self) -> str:
        if self.suggestion:
            return f"{self.message}\nSuggestion: {self.suggestion}"
        return self.message


class ArchiveError(TreepackError):
    """Archive engine error."""


class ArchiveCorrupt(ArchiveError):
    """Container index or payload is unreadable or inconsistent."""

    def __init__(self, path: str, detail: str) -> None:
        super().__init__(
            f"Archive '{path}' is corrupted: {detail}",
            "Try re-downloading or check file integrity",
        )
        self.path = path
        self.detail = detail


class ArchiveUnsupported(ArchiveError):
    """Unknown compression method, codec or source kind."""


class ArchiveIOError(ArchiveError):
    """Host filesystem failure while reading or writing."""

    def __init__(self, path: str, exc: OSError) -> None:
        super().__init__(f"I/O error on '{path}': {exc.strerror or exc}")
        self.path = path


class ArchiveLimitExceeded(ArchiveError):
    """Container exceeds an extraction limit."""

    def __init__(self, message: str) -> None:
        super().__init__(
            message,
            "Raise the matching TREEPACK_EXTRACT_MAX_* variable if the archive is trusted",
        )
