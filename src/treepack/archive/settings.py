"""Engine settings read from environment variables.

Every public entry point accepts keyword overrides; these values are only the
defaults used when the caller does not pass one.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

UnsafePathPolicy = Literal["abort", "skip"]

UNSAFE_PATH_POLICIES: tuple[str, ...] = ("abort", "skip")


def _env_int(name: str, default: int) -> int:
    """Read an integer env var, returning `default` on missing/invalid."""

    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_optional_int(name: str) -> int | None:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _env_bool(name: str) -> bool:
    return str(os.environ.get(name, "")).lower() in {"1", "true", "yes"}


def _env_str(name: str, default: str) -> str:
    value = (os.environ.get(name) or "").strip().lower()
    return value or default


@dataclass(frozen=True)
class ArchiveSettings:
    """Defaults for archive creation and extraction."""

    method: str
    level: int | None
    stream_codec: str
    on_unsafe_path: UnsafePathPolicy
    fs_strict: bool


def get_archive_settings() -> ArchiveSettings:
    """Read archive settings from environment variables."""

    policy = _env_str("TREEPACK_ON_UNSAFE_PATH", "abort")
    if policy not in UNSAFE_PATH_POLICIES:
        policy = "abort"
    return ArchiveSettings(
        method=_env_str("TREEPACK_METHOD", "deflate"),
        level=_env_optional_int("TREEPACK_LEVEL"),
        stream_codec=_env_str("TREEPACK_STREAM_CODEC", "gzip"),
        on_unsafe_path=policy,  # type: ignore[arg-type]
        fs_strict=_env_bool("TREEPACK_FS_STRICT"),
    )
