"""Shared pytest fixtures for spmcache tests."""

import struct
import zipfile
from pathlib import Path

import pytest


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    """Return the path to a (not yet existing) local prebuild directory."""
    return tmp_path / "prebuild"


@pytest.fixture
def make_zip():
    """Return a helper writing a zip archive with the given members."""

    def _make_zip(path: Path, files: dict[str, bytes]) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(path, "w") as zf:
            for name, content in files.items():
                zf.writestr(name, content)
        return path

    return _make_zip



@pytest.fixture
def make_corrupt_zip():
    """Return a helper writing a deflated zip whose compressed stream is damaged.

    The archive directory is intact (and CRCs are unchanged), so the damage
    only shows up while decompressing the member.
    """

    def _make_corrupt_zip(path: Path, name: str = "Package.swift") -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            zf.writestr(name, bytes(range(256)) * 16)
        data = bytearray(path.read_bytes())
        # local file header: 30 fixed bytes, then the name and the extra field
        name_len, extra_len = struct.unpack("<HH", data[26:30])
        start = 30 + name_len + extra_len
        # 0xff starts a final block of the reserved type 3, i.e., "invalid block type"
        data[start : start + 4] = b"\xff\xff\xff\xff"
        path.write_bytes(bytes(data))
        return path

    return _make_corrupt_zip
