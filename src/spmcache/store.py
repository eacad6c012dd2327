"""Module to manage the on-disk prebuild cache directory."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Final

from filelock import BaseFileLock, FileLock

from .ledger import (
    DEFAULT_ARCHIVE_EXTENSION,
    HashLedger,
    archive_name,
    load_ledger,
    save_ledger,
    validate_tag,
)

DEFAULT_LEDGER_NAME: Final[str] = "hashes.md5"
STORE_LOCKS_DIRNAME: Final[str] = ".locks"

log = logging.getLogger("spmcache/store")


class LocalStore:
    """
    Directory holding one archive per tag plus the hash ledger.

    Layout:

        $cache_dir/<tag>.zip
        $cache_dir/hashes.md5
        $cache_dir/.locks/<tag>.lock
        $cache_dir/.locks/hashes.md5.lock
    """

    def __init__(
        self,
        cache_dir: str | Path,
        *,
        ledger_name: str = DEFAULT_LEDGER_NAME,
        extension: str = DEFAULT_ARCHIVE_EXTENSION,
        lock_timeout: float = -1,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.ledger_name = ledger_name
        self.extension = extension
        self.lock_timeout = lock_timeout

    def __repr__(self) -> str:
        return f"LocalStore({str(self.cache_dir)!r})"

    @property
    def ledger_path(self) -> Path:
        """Returns the path to the ledger file."""
        return self.cache_dir / self.ledger_name

    def archive_path(self, tag: str) -> Path:
        """Returns the path to the archive stored for the tag."""
        return self.cache_dir / archive_name(validate_tag(tag), self.extension)

    def exists(self, tag: str) -> bool:
        return self.archive_path(tag).exists()

    def tag_lock(self, tag: str) -> BaseFileLock:
        """Return a FileLock serializing resolutions of the same tag."""
        return self._lock(f"{validate_tag(tag)}.lock")

    def ledger_lock(self) -> BaseFileLock:
        """Return a FileLock guarding read-modify-write of the ledger."""
        return self._lock(f"{self.ledger_name}.lock")

    def _lock(self, name: str) -> BaseFileLock:
        lock_file_path = self.cache_dir / STORE_LOCKS_DIRNAME / name
        lock_file_path.parent.mkdir(parents=True, exist_ok=True)
        return FileLock(lock_file_path, timeout=self.lock_timeout)

    def load_ledger(self) -> HashLedger:
        return load_ledger(self.ledger_path, extension=self.extension)

    def recorded_hash(self, tag: str) -> str | None:
        """Return the checksum the ledger records for the tag, if any."""
        return self.load_ledger().get(tag)

    def record(self, tag: str, digest: str) -> None:
        """Record the checksum for the tag, overwriting any previous entry."""
        with self.ledger_lock():
            ledger = self.load_ledger()
            previous = ledger.get(tag)
            ledger.update(tag, digest)
            save_ledger(ledger, self.ledger_path)
        if previous is None:
            log.info("recording hash for %s: %s (new entry)", tag, digest)
        elif previous != digest:
            log.info("recording hash for %s: %s (was %s)", tag, digest, previous)

    def store(self, tag: str, source: Path) -> Path:
        """
        Move the given archive into the store, replacing the current one.

        The source must live on the same filesystem as the store (e.g., in
        a scratch directory created under `cache_dir`) so that the move is
        an atomic `os.replace()`.
        """
        dest = self.archive_path(tag)
        dest.parent.mkdir(parents=True, exist_ok=True)
        os.replace(source, dest)
        return dest

    def remove(self, tag: str) -> None:
        """Delete the archive stored for the tag, if any. Ledger entries stay."""
        self.archive_path(tag).unlink(missing_ok=True)
