"""Module packing and extracting artifact archives."""

from __future__ import annotations

import os
import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import Protocol

from .errors import ArchiveError

# ZIP timestamps cannot represent dates before 1980.
_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


class ArchiveReader(Protocol):
    """Extracts an archive into a directory."""

    def extract(self, archive: Path, dest: Path) -> None: ...


class ArchivePacker(Protocol):
    """Packs a directory tree into an archive."""

    def pack(self, src_dir: Path, archive: Path) -> None: ...


class Archiver(ArchiveReader, ArchivePacker, Protocol):
    """Both extracts and packs archives."""


class ZipArchiver:
    """
    Zip implementation of ArchiveReader and ArchivePacker.

    Packing is deterministic: entries are sorted, timestamps are fixed and
    only the permission bits of each file are kept, so the same tree always
    produces the same bytes (and thus the same checksum).
    """

    def __init__(self, *, compression: int = zipfile.ZIP_DEFLATED) -> None:
        self.compression = compression

    def extract(self, archive: Path, dest: Path) -> None:
        try:
            with zipfile.ZipFile(archive) as zf:
                for info in zf.infolist():
                    _check_member_name(info.filename)
                dest.mkdir(parents=True, exist_ok=True)
                for info in zf.infolist():
                    zf.extract(info, dest)
                    mode = (info.external_attr >> 16) & 0o777
                    if mode and not info.is_dir():
                        os.chmod(dest / info.filename, mode)
        except ArchiveError:
            raise
        except (
            zipfile.BadZipFile,
            zipfile.LargeZipFile,
            zlib.error,
            EOFError,
            OSError,
            # unsupported compression methods and encrypted members
            NotImplementedError,
            RuntimeError,
        ) as exc:
            raise ArchiveError(f"cannot extract {archive.name}: {exc}") from exc

    def pack(self, src_dir: Path, archive: Path) -> None:
        dirs, files = _iter_tree(src_dir)
        archive.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(archive, "w") as zf:
            # Explicit directory entries to preserve empty dirs.
            for rel in dirs:
                info = zipfile.ZipInfo(f"{rel}/", date_time=_ZIP_EPOCH)
                info.external_attr = (0o40755 & 0xFFFF) << 16
                zf.writestr(info, b"")
            for rel in files:
                src = src_dir / rel
                info = zipfile.ZipInfo(rel, date_time=_ZIP_EPOCH)
                info.compress_type = self.compression
                info.external_attr = (src.stat().st_mode & 0o777) << 16
                zf.writestr(info, src.read_bytes())


def _check_member_name(name: str) -> None:
    """Reject absolute member names and names escaping the destination."""
    path = PurePosixPath(name.replace("\\", "/"))
    if path.is_absolute() or ".." in path.parts or (path.parts and ":" in path.parts[0]):
        raise ArchiveError(f"unsafe archive member: {name}")


def _iter_tree(root: Path) -> tuple[list[str], list[str]]:
    dirs: list[str] = []
    files: list[str] = []
    # Follows symlinks the same way `zip -r` does.
    for cur_root, cur_dirs, cur_files in os.walk(root, followlinks=True):
        rel_root = Path(cur_root).relative_to(root)
        for name in cur_dirs:
            dirs.append((rel_root / name).as_posix())
        for name in cur_files:
            files.append((rel_root / name).as_posix())
    return sorted(dirs), sorted(files)
