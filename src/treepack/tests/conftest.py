"""Shared fixtures for the treepack test suite."""

import os

import pytest


@pytest.fixture(autouse=True)
def _isolate_treepack_env(monkeypatch):
    """Tests must not pick up TREEPACK_* settings from the calling shell."""
    for name in list(os.environ):
        if name.startswith("TREEPACK_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def sample_tree(tmp_path):
    """Build `root/{a.txt: "hello", sub/b.txt: "", sub/}`."""
    root = tmp_path / "root"
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_bytes(b"hello")
    (root / "sub" / "b.txt").write_bytes(b"")
    return root
