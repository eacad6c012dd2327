"""Module implementing the ArtifactCache type."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from tempfile import TemporaryDirectory

from .archive import Archiver, ZipArchiver
from .builder import Builder, CommandBuilder
from .config import CacheConfig
from .errors import ArchiveError, BuildFailure
from .fetch import HTTPFetcher, RequestsFetcher
from .hashing import Hasher, MD5Hasher
from .ledger import archive_name, validate_tag
from .sources import Artifact, CacheSource, CacheTier, LocalSource, RemoteSource
from .store import LocalStore

log = logging.getLogger("spmcache/cache")


@dataclass(frozen=True, kw_only=True)
class ArtifactLocation:
    """
    Result of resolving a tag.

    Attributes:
        tag: the resolved tag.
        path: directory containing the extracted package.
        tier: the tier that provided the package.
        validated: False when the package came from a cache entry whose
            hash was unknown and was thus trusted on first use.
        digest: checksum of the cached archive, or None if a freshly
            built package could not be saved into the cache.
    """

    tag: str
    path: Path
    tier: CacheTier
    validated: bool
    digest: str | None


class ArtifactCache:
    """
    Component resolving prebuilt packages by tag.

    Cache lookup order:

    1. local store (fast, free)
    2. remote store, if configured (medium speed, cheap)
    3. fresh build (slow, expensive)

    Resolutions of the same tag are serialized using a file lock inside
    the cache directory, so concurrent processes never write or delete the
    same archive at the same time.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        builder: Builder | None = None,
        remote: CacheSource | None = None,
        hasher: Hasher | None = None,
        archiver: Archiver | None = None,
        fetcher: HTTPFetcher | None = None,
    ) -> None:
        """
        Initialize the cache.

        Parameters:
            config: the cache configuration. If None, use the defaults.
            builder: builder invoked on a cache miss. If None, we use the
                configured build command, if any.
            remote: remote tier. If None, we create a RemoteSource when
                the configuration contains a remote base URL.
            hasher: the Hasher to use (default: MD5Hasher).
            archiver: the Archiver to use (default: ZipArchiver).
            fetcher: the HTTPFetcher used by the default RemoteSource.
        """
        self.config = config if config is not None else CacheConfig()
        self.hasher = hasher if hasher is not None else MD5Hasher()
        self.archiver = archiver if archiver is not None else ZipArchiver()
        self.store = LocalStore(
            self.config.cache_dir,
            ledger_name=self.config.ledger_name,
            extension=self.config.archive_extension,
            lock_timeout=self.config.lock_timeout,
        )
        self.local = LocalSource(self.store, self.hasher)

        if remote is None and self.config.remote_base_url:
            remote = RemoteSource(
                self.config.remote_base_url,
                store=self.store,
                fetcher=(
                    fetcher
                    if fetcher is not None
                    else RequestsFetcher(timeout=self.config.timeout, progress=self.config.progress)
                ),
                hasher=self.hasher,
            )
        self.remote = remote

        if builder is None and self.config.build_command:
            builder = CommandBuilder.from_string(self.config.build_command)
        self.builder = builder

    def sources(self) -> list[CacheSource]:
        """Return the cache tiers in lookup order."""
        if self.remote is None:
            return [self.local]
        return [self.local, self.remote]

    def resolve(
        self,
        tag: str,
        *,
        output_dir: str | Path,
        force_fresh: bool = False,
    ) -> ArtifactLocation:
        """
        Make the package for tag available inside output_dir.

        Args:
            tag: the tag to resolve (e.g., "AzureCommunicationUICalling_1.14.1").
            output_dir: directory where to extract the package. It is
                created if missing; existing files are overwritten.
            force_fresh: skip the local and remote tiers and always build.

        Returns:
            ArtifactLocation describing where the package came from.

        Raises:
            ValueError: if the tag is invalid.
            BuildFailure: if no tier produced a usable package.
        """
        validate_tag(tag)
        output_dir = Path(output_dir)
        self.store.cache_dir.mkdir(parents=True, exist_ok=True)

        log.info("resolving %s... start", tag)
        with (
            self.store.tag_lock(tag),
            TemporaryDirectory(dir=self.store.cache_dir, prefix=".resolve-") as tmp_dir,
        ):
            location = self._resolve(tag, Path(tmp_dir), output_dir, force_fresh)
        log.info("resolving %s... ok (%s)", tag, location.tier.value)
        return location

    def _resolve(
        self,
        tag: str,
        scratch: Path,
        output_dir: Path,
        force_fresh: bool,
    ) -> ArtifactLocation:
        tiers: list[str] = []
        if force_fresh:
            log.info("resolving %s... skipping all cache checks (forced fresh build)", tag)
        else:
            if self.remote is None:
                log.info("resolving %s... remote cache disabled", tag)
            for source in self.sources():
                tiers.append(source.tier.value)
                artifact = self._lookup(source, tag, scratch)
                if artifact is None:
                    continue
                try:
                    return self._deliver(artifact, scratch, output_dir, tiers)
                except ArchiveError as exc:
                    log.warning("extracting %s... failure: %s", artifact.archive.name, exc)
                    if not artifact.validated:
                        log.warning(
                            "archive for %s was trusted on first use and is corrupt", tag
                        )
                    log.info("deleting corrupt archive %s", artifact.archive)
                    self.store.remove(tag)

        tiers.append(CacheTier.BUILD.value)
        return self._build(tag, scratch, output_dir, tiers)

    def _lookup(self, source: CacheSource, tag: str, scratch: Path) -> Artifact | None:
        try:
            return source.lookup(tag, scratch)
        except Exception as exc:
            log.warning("checking %s cache for %s... failure: %s", source.tier.value, tag, exc)
            return None

    def _deliver(
        self,
        artifact: Artifact,
        scratch: Path,
        output_dir: Path,
        tiers: list[str],
    ) -> ArtifactLocation:
        extracted = scratch / f"extract-{artifact.tier.value}"
        shutil.rmtree(extracted, ignore_errors=True)
        self.archiver.extract(artifact.archive, extracted)
        _install(artifact.tag, extracted, output_dir, tiers)

        if artifact.validated:
            log.info("resolving %s... %s hit (hash validated)", artifact.tag, artifact.tier.value)
        else:
            log.warning(
                "resolving %s... %s hit (NOT validated: no recorded hash, trusted on first use)",
                artifact.tag,
                artifact.tier.value,
            )
        return ArtifactLocation(
            tag=artifact.tag,
            path=output_dir,
            tier=artifact.tier,
            validated=artifact.validated,
            digest=artifact.digest,
        )

    def _build(
        self,
        tag: str,
        scratch: Path,
        output_dir: Path,
        tiers: list[str],
    ) -> ArtifactLocation:
        if self.builder is None:
            log.error("building %s... failure: no build command configured", tag)
            raise BuildFailure(tag, tiers, "no build command configured")

        staging = scratch / "build"
        staging.mkdir()
        log.info("building %s... start", tag)
        try:
            self.builder.build(tag, staging)
        except Exception as exc:
            log.error("building %s... failure: %s", tag, exc)
            raise BuildFailure(tag, tiers, exc) from exc
        log.info("building %s... ok", tag)

        digest = self._save(tag, staging, scratch)
        _install(tag, staging, output_dir, tiers)
        log.info("resolving %s... fresh build", tag)
        return ArtifactLocation(
            tag=tag,
            path=output_dir,
            tier=CacheTier.BUILD,
            validated=True,
            digest=digest,
        )

    def _save(self, tag: str, staging: Path, scratch: Path) -> str | None:
        """Pack the built tree into the local store and record its hash."""
        log.info("saving %s to the local cache... start", tag)
        archive = scratch / archive_name(tag, self.store.extension)
        try:
            self.archiver.pack(staging, archive)
            digest = self.hasher.hexdigest(archive)
            self.store.store(tag, archive)
            self.store.record(tag, digest)
        except Exception as exc:
            log.warning("saving %s to the local cache... failure: %s", tag, exc)
            return None
        log.info("saving %s to the local cache... ok (hash %s)", tag, digest)
        return digest


def _install(tag: str, src: Path, output_dir: Path, tiers: list[str]) -> None:
    """Copy the extracted package into output_dir, merging with existing files."""
    try:
        output_dir.mkdir(parents=True, exist_ok=True)
        shutil.copytree(src, output_dir, symlinks=True, dirs_exist_ok=True)
    except OSError as exc:
        log.error("copying %s into %s... failure: %s", tag, output_dir, exc)
        raise BuildFailure(tag, tiers, f"cannot write {output_dir}: {exc}") from exc
