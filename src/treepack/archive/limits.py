"""Archive extraction limits.

These limits protect the host from zip-bombs and keep extraction resource
usage bounded.

All limits are configurable via environment variables.
"""

from __future__ import annotations

from dataclasses import dataclass

from treepack.archive.settings import _env_int

# Compression ratio is only checked above this size; tiny files compress
# arbitrarily well (e.g. a 4 KiB file of zeros).
RATIO_CHECK_MIN_SIZE = 1024 * 1024


@dataclass(frozen=True)
class ExtractionLimits:
    """Resource limits applied during extraction."""

    max_files: int
    max_total_size: int
    max_file_size: int
    max_path_length: int
    max_depth: int
    max_compression_ratio: int


def get_extraction_limits() -> ExtractionLimits:
    """Read extraction limits from environment variables."""

    return ExtractionLimits(
        max_files=_env_int("TREEPACK_EXTRACT_MAX_FILES", 100_000),
        max_total_size=_env_int("TREEPACK_EXTRACT_MAX_TOTAL_SIZE", 16 * 1024**3),  # 16 GiB
        max_file_size=_env_int("TREEPACK_EXTRACT_MAX_FILE_SIZE", 4 * 1024**3),  # 4 GiB
        max_path_length=_env_int("TREEPACK_EXTRACT_MAX_PATH_LENGTH", 4096),
        max_depth=_env_int("TREEPACK_EXTRACT_MAX_DEPTH", 128),
        max_compression_ratio=_env_int("TREEPACK_EXTRACT_MAX_COMPRESSION_RATIO", 1000),
    )
