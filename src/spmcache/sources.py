"""
Cache tiers providing prebuilt archives for a tag.

Both sources leave the archive they return inside the LocalStore, with the
ledger updated accordingly, so the caller only needs to extract it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol

from .errors import SourceUnavailable, ValidationMismatch
from .fetch import HTTPFetcher
from .hashing import Hasher
from .ledger import HashLedger, archive_name, load_ledger
from .store import LocalStore

log = logging.getLogger("spmcache/sources")


class CacheTier(str, Enum):
    """Tier that produced an artifact."""

    LOCAL = "local"
    REMOTE = "remote"
    BUILD = "build"


@dataclass(frozen=True, kw_only=True)
class Artifact:
    """
    Archive available in the local store for a tag.

    Attributes:
        tag: the tag of the artifact.
        archive: path to the archive inside the local store.
        digest: checksum of the archive, as recorded in the ledger.
        tier: the tier that produced the archive.
        validated: whether the digest was checked against a recorded one.
    """

    tag: str
    archive: Path
    digest: str
    tier: CacheTier
    validated: bool


class CacheSource(Protocol):
    """
    A tier of the cache hierarchy.

    Methods:
        lookup: return the Artifact for the tag, or None on a miss. The
            scratch directory lives on the same filesystem as the store.
    """

    tier: CacheTier

    def lookup(self, tag: str, scratch: Path) -> Artifact | None: ...


class LocalSource:
    """Tier serving archives already present in the LocalStore."""

    tier = CacheTier.LOCAL

    def __init__(self, store: LocalStore, hasher: Hasher) -> None:
        self.store = store
        self.hasher = hasher

    def lookup(self, tag: str, scratch: Path) -> Artifact | None:
        _ = scratch
        path = self.store.archive_path(tag)
        if not path.exists():
            log.info("checking local cache for %s... miss", tag)
            return None

        expected = self.store.recorded_hash(tag)
        actual = self.hasher.hexdigest(path)

        if expected is None:
            # Trust on first use: record the hash so the next lookup validates.
            log.warning("checking local cache for %s... no recorded hash, skipping validation", tag)
            self.store.record(tag, actual)
            return Artifact(
                tag=tag, archive=path, digest=actual, tier=self.tier, validated=False
            )

        try:
            _check_digest(path, expected=expected, actual=actual)
        except ValidationMismatch as exc:
            log.warning("checking local cache for %s... corrupt: %s", tag, exc)
            log.info("deleting corrupt archive %s", path)
            self.store.remove(tag)
            return None

        log.info("checking local cache for %s... ok (hash validated)", tag)
        return Artifact(tag=tag, archive=path, digest=actual, tier=self.tier, validated=True)


class RemoteSource:
    """
    Tier downloading archives from a static HTTP(S) location.

    The base URL must serve the ledger (`hashes.md5`) and one archive per
    tag (`<tag>.zip`). The remote ledger is authoritative: when it lists
    the tag, the download must match the listed hash.
    """

    tier = CacheTier.REMOTE

    def __init__(
        self,
        base_url: str,
        *,
        store: LocalStore,
        fetcher: HTTPFetcher,
        hasher: Hasher,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.store = store
        self.fetcher = fetcher
        self.hasher = hasher

    def ledger_url(self) -> str:
        return f"{self.base_url}/{self.store.ledger_name}"

    def archive_url(self, tag: str) -> str:
        return f"{self.base_url}/{archive_name(tag, self.store.extension)}"

    def lookup(self, tag: str, scratch: Path) -> Artifact | None:
        log.info("checking remote cache for %s... start", tag)
        expected = self._remote_hash(tag, scratch)

        download = scratch / archive_name(tag, self.store.extension)
        url = self.archive_url(tag)
        try:
            self.fetcher.fetch(url, download)
        except SourceUnavailable as exc:
            log.info("checking remote cache for %s... miss: %s", tag, exc)
            return None

        actual = self.hasher.hexdigest(download)
        if expected is not None:
            try:
                _check_digest(download, expected=expected, actual=actual)
            except ValidationMismatch as exc:
                log.warning("checking remote cache for %s... corrupt: %s", tag, exc)
                download.unlink(missing_ok=True)
                return None
            log.info("checking remote cache for %s... ok (hash validated)", tag)
        else:
            log.warning("checking remote cache for %s... no remote hash, skipping validation", tag)

        path = self.store.store(tag, download)
        self.store.record(tag, actual)
        return Artifact(
            tag=tag,
            archive=path,
            digest=actual,
            tier=self.tier,
            validated=expected is not None,
        )

    def _remote_hash(self, tag: str, scratch: Path) -> str | None:
        """Fetch the remote ledger and return the hash it lists for tag, if any."""
        ledger_file = scratch / f"remote-{self.store.ledger_name}"
        url = self.ledger_url()
        try:
            self.fetcher.fetch(url, ledger_file)
        except SourceUnavailable as exc:
            log.info("fetching remote ledger... failure: %s", exc)
            return None
        try:
            ledger: HashLedger = load_ledger(ledger_file, extension=self.store.extension)
        except UnicodeDecodeError as exc:
            log.warning("fetching remote ledger... failure: not a text file: %s", exc)
            return None
        expected = ledger.get(tag)
        if expected is None:
            log.info("fetching remote ledger... ok (no entry for %s)", tag)
        else:
            log.info("fetching remote ledger... ok (%s: %s)", tag, expected)
        return expected


def _check_digest(path: Path, *, expected: str, actual: str) -> None:
    if actual.lower() != expected.lower():
        raise ValidationMismatch(path, expected=expected, actual=actual)
