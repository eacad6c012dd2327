"""Content digests for cached archives."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Protocol


class Hasher(Protocol):
    """Computes a deterministic digest over the bytes of a file."""

    def hexdigest(self, path: Path) -> str: ...


class MD5Hasher:
    """
    Hasher producing lowercase hex MD5 digests.

    The digests are byte-for-byte compatible with `md5sum` output so that
    ledgers written by other tools (or by hand) keep validating.
    """

    chunk_size = 8192

    def hexdigest(self, path: Path) -> str:
        md5 = hashlib.md5(usedforsecurity=False)
        with open(path, "rb") as fp:
            while chunk := fp.read(self.chunk_size):
                md5.update(chunk)
        return md5.hexdigest()
