"""Helpers for building test containers."""

import stat
import zipfile
from io import BytesIO


def make_zip_bytes(entries: dict[str, bytes]) -> bytes:
    """Build a zip file (as bytes) from a mapping of path -> content."""
    buf = BytesIO()
    with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, content in entries.items():
            zf.writestr(name, content)
    return buf.getvalue()


def make_zip_with_symlink_entry() -> bytes:
    """Build a zip file containing a symlink entry (Info-ZIP style external_attr)."""
    buf = BytesIO()
    with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        info = zipfile.ZipInfo("link")
        info.create_system = 3  # Unix
        info.external_attr = (stat.S_IFLNK | 0o777) << 16
        zf.writestr(info, "target")
        zf.writestr("ok.txt", b"ok")
    return buf.getvalue()


def unix_zipinfo(name: str, mode: int) -> zipfile.ZipInfo:
    """ZipInfo carrying Unix mode bits."""
    info = zipfile.ZipInfo(name)
    info.create_system = 3
    info.external_attr = mode << 16
    if name.endswith("/"):
        info.external_attr |= 0x10
    return info
