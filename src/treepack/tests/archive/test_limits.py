"""
Tests for environment-driven settings and extraction limits.
"""

from treepack.archive.limits import get_extraction_limits
from treepack.archive.settings import get_archive_settings


def test_extraction_limits_defaults():
    limits = get_extraction_limits()

    assert limits.max_files == 100_000
    assert limits.max_file_size == 4 * 1024**3
    assert limits.max_total_size == 16 * 1024**3
    assert limits.max_compression_ratio == 1000


def test_extraction_limits_from_env(monkeypatch):
    monkeypatch.setenv("TREEPACK_EXTRACT_MAX_FILES", "10")
    monkeypatch.setenv("TREEPACK_EXTRACT_MAX_DEPTH", "4")

    limits = get_extraction_limits()

    assert limits.max_files == 10
    assert limits.max_depth == 4


def test_extraction_limits_invalid_env_falls_back(monkeypatch):
    monkeypatch.setenv("TREEPACK_EXTRACT_MAX_FILES", "lots")

    assert get_extraction_limits().max_files == 100_000


def test_archive_settings_defaults():
    settings = get_archive_settings()

    assert settings.method == "deflate"
    assert settings.level is None
    assert settings.stream_codec == "gzip"
    assert settings.on_unsafe_path == "abort"
    assert settings.fs_strict is False


def test_archive_settings_from_env(monkeypatch):
    monkeypatch.setenv("TREEPACK_METHOD", "LZMA")
    monkeypatch.setenv("TREEPACK_LEVEL", "3")
    monkeypatch.setenv("TREEPACK_STREAM_CODEC", "zstd")
    monkeypatch.setenv("TREEPACK_ON_UNSAFE_PATH", "skip")
    monkeypatch.setenv("TREEPACK_FS_STRICT", "true")

    settings = get_archive_settings()

    assert settings.method == "lzma"
    assert settings.level == 3
    assert settings.stream_codec == "zstd"
    assert settings.on_unsafe_path == "skip"
    assert settings.fs_strict is True


def test_archive_settings_unknown_policy_falls_back(monkeypatch):
    monkeypatch.setenv("TREEPACK_ON_UNSAFE_PATH", "ignore")
    monkeypatch.setenv("TREEPACK_LEVEL", "high")

    settings = get_archive_settings()

    assert settings.on_unsafe_path == "abort"
    assert settings.level is None
