"""Tests for the spmcache.cache module."""

import hashlib
import io
import logging
import zipfile
from pathlib import Path

import pytest
from filelock import Timeout

from spmcache.cache import ArtifactCache
from spmcache.config import CacheConfig
from spmcache.errors import BuildFailure, SourceUnavailable
from spmcache.sources import Artifact, CacheTier
from spmcache.store import LocalStore

_BASE_URL = "https://example.com/prebuild"
_TAG = "AzureCommunicationUICalling_1.14.1"


def _md5(content: bytes) -> str:
    """Compute MD5 hex digest for test data."""
    return hashlib.md5(content).hexdigest()


def _zip_bytes(files: dict[str, bytes]) -> bytes:
    """Return the bytes of a zip archive containing the given files."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buffer.getvalue()


class FakeFetcher:
    """HTTPFetcher serving canned responses and recording the requested URLs."""

    def __init__(self, resources: dict[str, bytes] | None = None) -> None:
        self.resources = resources if resources is not None else {}
        self.calls: list[str] = []

    def fetch(self, url: str, dest: Path) -> None:
        self.calls.append(url)
        if url not in self.resources:
            raise SourceUnavailable(url, "404 Not Found")
        dest.write_bytes(self.resources[url])


class FakeBuilder:
    """Builder writing a minimal package and counting invocations."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[str] = []

    def build(self, tag: str, output_dir: Path) -> None:
        self.calls.append(tag)
        if self.fail:
            raise RuntimeError("xcodebuild failed")
        (output_dir / "Package.swift").write_text(f"// built {tag}\n")
        (output_dir / "Frameworks").mkdir()
        (output_dir / "Frameworks" / "Calling.txt").write_text("framework\n")


class FakeRemoteSource:
    """CacheSource recording lookups and always missing."""

    tier = CacheTier.REMOTE

    def __init__(self) -> None:
        self.calls: list[str] = []

    def lookup(self, tag: str, scratch: Path) -> Artifact | None:
        self.calls.append(tag)
        return None


def _make_cache(
    cache_dir: Path,
    *,
    fetcher: FakeFetcher | None = None,
    builder: FakeBuilder | None = None,
) -> ArtifactCache:
    config = CacheConfig(cache_dir=cache_dir, remote_base_url=_BASE_URL, progress=False)
    return ArtifactCache(
        config,
        builder=builder if builder is not None else FakeBuilder(),
        fetcher=fetcher if fetcher is not None else FakeFetcher(),
    )


def _seed_local(cache_dir: Path, content: bytes, recorded: str | None) -> LocalStore:
    store = LocalStore(cache_dir)
    cache_dir.mkdir(parents=True, exist_ok=True)
    store.archive_path(_TAG).write_bytes(content)
    if recorded is not None:
        store.record(_TAG, recorded)
    return store


class TestArtifactCacheLocal:
    """Tests for resolving from the local tier."""

    def test_local_hit_valid(self, cache_dir: Path, tmp_path: Path):
        """A validated local hit does not touch the network nor build."""
        content = _zip_bytes({"Package.swift": b"// local\n"})
        _seed_local(cache_dir, content, _md5(content))
        fetcher = FakeFetcher()
        builder = FakeBuilder()
        cache = _make_cache(cache_dir, fetcher=fetcher, builder=builder)

        location = cache.resolve(_TAG, output_dir=tmp_path / "output")

        assert location.tier == CacheTier.LOCAL
        assert location.validated is True
        assert location.digest == _md5(content)
        assert (tmp_path / "output" / "Package.swift").read_bytes() == b"// local\n"
        assert fetcher.calls == []
        assert builder.calls == []

    def test_local_hit_corrupt_falls_through_to_remote(self, cache_dir: Path, tmp_path: Path):
        """A corrupt local archive is deleted and the remote tier is consulted."""
        content = _zip_bytes({"Package.swift": b"// local\n"})
        _seed_local(cache_dir, content, _md5(b"something else"))
        remote = FakeRemoteSource()
        builder = FakeBuilder()
        cache = ArtifactCache(
            CacheConfig(cache_dir=cache_dir, remote_base_url=None),
            builder=builder,
            remote=remote,
        )

        location = cache.resolve(_TAG, output_dir=tmp_path / "output")

        assert remote.calls == [_TAG]
        assert builder.calls == [_TAG]
        assert location.tier == CacheTier.BUILD

    def test_local_hit_corrupt_deletes_file(self, cache_dir: Path, tmp_path: Path):
        content = _zip_bytes({"Package.swift": b"// local\n"})
        store = _seed_local(cache_dir, content, _md5(b"something else"))
        cache = ArtifactCache(
            CacheConfig(cache_dir=cache_dir, remote_base_url=None),
            builder=FakeBuilder(fail=True),
            remote=FakeRemoteSource(),
        )

        with pytest.raises(BuildFailure):
            cache.resolve(_TAG, output_dir=tmp_path / "output")

        assert not store.archive_path(_TAG).exists()

    def test_local_unrecorded_is_trusted(self, cache_dir: Path, tmp_path: Path, caplog):
        content = _zip_bytes({"Package.swift": b"// local\n"})
        store = _seed_local(cache_dir, content, None)
        fetcher = FakeFetcher()
        cache = _make_cache(cache_dir, fetcher=fetcher)

        with caplog.at_level(logging.WARNING):
            location = cache.resolve(_TAG, output_dir=tmp_path / "output")

        assert location.tier == CacheTier.LOCAL
        assert location.validated is False
        assert store.recorded_hash(_TAG) == _md5(content)
        assert fetcher.calls == []
        assert "NOT validated" in caplog.text

    def test_local_unextractable_falls_through(self, cache_dir: Path, tmp_path: Path):
        """An archive matching its hash but not extractable is treated as corrupt."""
        content = b"not a zip at all"
        store = _seed_local(cache_dir, content, _md5(content))
        builder = FakeBuilder()
        cache = _make_cache(cache_dir, builder=builder)

        location = cache.resolve(_TAG, output_dir=tmp_path / "output")

        assert location.tier == CacheTier.BUILD
        assert builder.calls == [_TAG]
        # the rebuilt archive replaced the corrupt one
        assert store.archive_path(_TAG).read_bytes() != content

    @pytest.mark.parametrize("recorded", [True, False])
    def test_local_damaged_stream_falls_through(
        self, cache_dir: Path, tmp_path: Path, make_corrupt_zip, caplog, recorded: bool
    ):
        """A zip whose compressed data is damaged is replaced by a fresh build."""
        store = LocalStore(cache_dir)
        make_corrupt_zip(store.archive_path(_TAG))
        content = store.archive_path(_TAG).read_bytes()
        if recorded:
            store.record(_TAG, _md5(content))
        builder = FakeBuilder()
        config = CacheConfig(cache_dir=cache_dir, remote_base_url=None)
        cache = ArtifactCache(config, builder=builder)

        with caplog.at_level(logging.WARNING):
            location = cache.resolve(_TAG, output_dir=tmp_path / "output")

        assert location.tier == CacheTier.BUILD
        assert builder.calls == [_TAG]
        assert (tmp_path / "output" / "Package.swift").read_text() == f"// built {_TAG}\n"
        assert store.archive_path(_TAG).read_bytes() != content
        assert store.recorded_hash(_TAG) == location.digest
        assert ("trusted on first use and is corrupt" in caplog.text) is not recorded

        second = cache.resolve(_TAG, output_dir=tmp_path / "second")
        assert second.tier == CacheTier.LOCAL
        assert builder.calls == [_TAG]


class TestArtifactCacheRemote:
    """Tests for resolving from the remote tier."""

    def test_remote_hit_valid(self, cache_dir: Path, tmp_path: Path):
        content = _zip_bytes({"Package.swift": b"// remote\n"})
        fetcher = FakeFetcher(
            {
                f"{_BASE_URL}/hashes.md5": f"{_md5(content)}  {_TAG}.zip\n".encode(),
                f"{_BASE_URL}/{_TAG}.zip": content,
            }
        )
        builder = FakeBuilder()
        cache = _make_cache(cache_dir, fetcher=fetcher, builder=builder)

        location = cache.resolve(_TAG, output_dir=tmp_path / "output")

        assert location.tier == CacheTier.REMOTE
        assert location.validated is True
        assert (tmp_path / "output" / "Package.swift").read_bytes() == b"// remote\n"
        store = LocalStore(cache_dir)
        assert store.archive_path(_TAG).read_bytes() == content
        assert store.recorded_hash(_TAG) == _md5(content)
        assert builder.calls == []

    def test_remote_hit_mismatch_builds(self, cache_dir: Path, tmp_path: Path):
        content = _zip_bytes({"Package.swift": b"// remote\n"})
        fetcher = FakeFetcher(
            {
                f"{_BASE_URL}/hashes.md5": f"{_md5(b'other')}  {_TAG}.zip\n".encode(),
                f"{_BASE_URL}/{_TAG}.zip": content,
            }
        )
        builder = FakeBuilder()
        cache = _make_cache(cache_dir, fetcher=fetcher, builder=builder)

        location = cache.resolve(_TAG, output_dir=tmp_path / "output")

        assert location.tier == CacheTier.BUILD
        assert builder.calls == [_TAG]
        assert (tmp_path / "output" / "Package.swift").read_text() == f"// built {_TAG}\n"
        store = LocalStore(cache_dir)
        assert store.archive_path(_TAG).read_bytes() != content

    def test_remote_without_hash_is_trusted(self, cache_dir: Path, tmp_path: Path):
        content = _zip_bytes({"Package.swift": b"// remote\n"})
        fetcher = FakeFetcher({f"{_BASE_URL}/{_TAG}.zip": content})
        cache = _make_cache(cache_dir, fetcher=fetcher)

        location = cache.resolve(_TAG, output_dir=tmp_path / "output")

        assert location.tier == CacheTier.REMOTE
        assert location.validated is False
        assert LocalStore(cache_dir).recorded_hash(_TAG) == _md5(content)

    def test_total_miss_triggers_build(self, cache_dir: Path, tmp_path: Path):
        fetcher = FakeFetcher()
        builder = FakeBuilder()
        cache = _make_cache(cache_dir, fetcher=fetcher, builder=builder)

        location = cache.resolve(_TAG, output_dir=tmp_path / "output")

        assert builder.calls == [_TAG]
        assert location.tier == CacheTier.BUILD
        assert fetcher.calls == [f"{_BASE_URL}/hashes.md5", f"{_BASE_URL}/{_TAG}.zip"]

    def test_remote_disabled(self, cache_dir: Path, tmp_path: Path):
        builder = FakeBuilder()
        config = CacheConfig(cache_dir=cache_dir, remote_base_url=None)
        cache = ArtifactCache(config, builder=builder)

        assert cache.remote is None
        location = cache.resolve(_TAG, output_dir=tmp_path / "output")

        assert location.tier == CacheTier.BUILD

    def test_remote_exception_is_recovered(self, cache_dir: Path, tmp_path: Path, caplog):
        """Unexpected errors inside a tier are logged and treated as a miss."""

        class BrokenFetcher:
            def fetch(self, url: str, dest: Path) -> None:
                raise OSError("disk full")

        builder = FakeBuilder()
        cache = _make_cache(cache_dir, fetcher=BrokenFetcher(), builder=builder)

        with caplog.at_level(logging.WARNING):
            location = cache.resolve(_TAG, output_dir=tmp_path / "output")

        assert location.tier == CacheTier.BUILD
        assert "disk full" in caplog.text


class TestArtifactCacheBuild:
    """Tests for the fresh build tier."""

    def test_force_fresh_bypasses_valid_local_hit(self, cache_dir: Path, tmp_path: Path):
        content = _zip_bytes({"Package.swift": b"// local\n"})
        _seed_local(cache_dir, content, _md5(content))
        fetcher = FakeFetcher()
        builder = FakeBuilder()
        cache = _make_cache(cache_dir, fetcher=fetcher, builder=builder)

        location = cache.resolve(_TAG, output_dir=tmp_path / "output", force_fresh=True)

        assert location.tier == CacheTier.BUILD
        assert builder.calls == [_TAG]
        assert fetcher.calls == []
        assert (tmp_path / "output" / "Package.swift").read_text() == f"// built {_TAG}\n"

    def test_build_success_persists(self, cache_dir: Path, tmp_path: Path):
        """After a fresh build, the next resolution is a validated local hit."""
        fetcher = FakeFetcher()
        builder = FakeBuilder()
        cache = _make_cache(cache_dir, fetcher=fetcher, builder=builder)

        first = cache.resolve(_TAG, output_dir=tmp_path / "first")
        calls_after_first = list(fetcher.calls)
        second = cache.resolve(_TAG, output_dir=tmp_path / "second")

        assert first.tier == CacheTier.BUILD
        assert first.digest is not None
        assert second.tier == CacheTier.LOCAL
        assert second.validated is True
        assert second.digest == first.digest
        assert builder.calls == [_TAG]
        assert fetcher.calls == calls_after_first
        assert (tmp_path / "second" / "Frameworks" / "Calling.txt").read_text() == "framework\n"

    def test_build_overwrites_ledger_entry(self, cache_dir: Path, tmp_path: Path):
        store = _seed_local(cache_dir, b"stale", _md5(b"stale"))
        cache = _make_cache(cache_dir)

        location = cache.resolve(_TAG, output_dir=tmp_path / "output", force_fresh=True)

        ledger = store.load_ledger()
        assert len(ledger.entries) == 1
        assert ledger.get(_TAG) == location.digest
        assert location.digest == _md5(store.archive_path(_TAG).read_bytes())

    def test_build_failure(self, cache_dir: Path, tmp_path: Path):
        cache = _make_cache(cache_dir, builder=FakeBuilder(fail=True))

        with pytest.raises(BuildFailure) as excinfo:
            cache.resolve(_TAG, output_dir=tmp_path / "output")

        assert excinfo.value.tag == _TAG
        assert excinfo.value.tiers == ("local", "remote", "build")
        assert "xcodebuild failed" in str(excinfo.value)
        assert not LocalStore(cache_dir).exists(_TAG)

    def test_no_builder(self, cache_dir: Path, tmp_path: Path):
        cache = ArtifactCache(CacheConfig(cache_dir=cache_dir, remote_base_url=None))

        with pytest.raises(BuildFailure, match="no build command configured"):
            cache.resolve(_TAG, output_dir=tmp_path / "output")

    def test_save_failure_still_delivers(self, cache_dir: Path, tmp_path: Path, caplog):
        class BrokenPackArchiver:
            def extract(self, archive: Path, dest: Path) -> None:
                raise AssertionError("not reached")

            def pack(self, src_dir: Path, archive: Path) -> None:
                raise OSError("no space left on device")

        cache = ArtifactCache(
            CacheConfig(cache_dir=cache_dir, remote_base_url=None),
            builder=FakeBuilder(),
            archiver=BrokenPackArchiver(),
        )

        with caplog.at_level(logging.WARNING):
            location = cache.resolve(_TAG, output_dir=tmp_path / "output")

        assert location.tier == CacheTier.BUILD
        assert location.digest is None
        assert (tmp_path / "output" / "Package.swift").exists()
        assert "no space left on device" in caplog.text


class TestArtifactCacheResolve:
    """Tests for the resolution context (locking, scratch dirs, logging)."""

    def test_invalid_tag(self, cache_dir: Path, tmp_path: Path):
        cache = _make_cache(cache_dir)
        with pytest.raises(ValueError, match="Invalid tag"):
            cache.resolve("../../etc", output_dir=tmp_path / "output")

    def test_scratch_removed_on_success(self, cache_dir: Path, tmp_path: Path):
        cache = _make_cache(cache_dir)
        cache.resolve(_TAG, output_dir=tmp_path / "output")
        assert list(cache_dir.glob(".resolve-*")) == []

    def test_scratch_removed_on_failure(self, cache_dir: Path, tmp_path: Path):
        cache = _make_cache(cache_dir, builder=FakeBuilder(fail=True))
        with pytest.raises(BuildFailure):
            cache.resolve(_TAG, output_dir=tmp_path / "output")
        assert list(cache_dir.glob(".resolve-*")) == []

    def test_lock_released(self, cache_dir: Path, tmp_path: Path):
        cache = _make_cache(cache_dir, builder=FakeBuilder(fail=True))
        with pytest.raises(BuildFailure):
            cache.resolve(_TAG, output_dir=tmp_path / "output")
        lock = cache.store.tag_lock(_TAG)
        lock.acquire(timeout=0)
        lock.release()

    def test_output_dir_merged(self, cache_dir: Path, tmp_path: Path):
        output = tmp_path / "output"
        output.mkdir()
        (output / "keep.txt").write_text("keep")
        cache = _make_cache(cache_dir)

        cache.resolve(_TAG, output_dir=output)

        assert (output / "keep.txt").read_text() == "keep"
        assert (output / "Package.swift").exists()

    def test_tier_events_are_logged(self, cache_dir: Path, tmp_path: Path, caplog):
        cache = _make_cache(cache_dir)
        with caplog.at_level(logging.INFO):
            cache.resolve(_TAG, output_dir=tmp_path / "first")
            cache.resolve(_TAG, output_dir=tmp_path / "second")
        assert "fresh build" in caplog.text
        assert "local hit (hash validated)" in caplog.text

    def test_same_tag_is_serialized(self, cache_dir: Path, tmp_path: Path):
        """A resolution waits for the one already holding the tag lock."""
        builder = FakeBuilder()
        config = CacheConfig(cache_dir=cache_dir, remote_base_url=None, lock_timeout=0)
        cache = ArtifactCache(config, builder=builder)
        cache_dir.mkdir(parents=True)

        with cache.store.tag_lock(_TAG):
            with pytest.raises(Timeout):
                cache.resolve(_TAG, output_dir=tmp_path / "output")

        assert builder.calls == []
        assert not (tmp_path / "output").exists()
        cache.resolve(_TAG, output_dir=tmp_path / "output")
        assert builder.calls == [_TAG]

    def test_other_tags_are_not_blocked(self, cache_dir: Path, tmp_path: Path):
        builder = FakeBuilder()
        config = CacheConfig(cache_dir=cache_dir, remote_base_url=None, lock_timeout=0)
        cache = ArtifactCache(config, builder=builder)
        cache_dir.mkdir(parents=True)

        with cache.store.tag_lock("AzureCommunicationUIChat_1.0.0"):
            location = cache.resolve(_TAG, output_dir=tmp_path / "output")

        assert location.tier == CacheTier.BUILD

    def test_unwritable_output_dir_on_hit(self, cache_dir: Path, tmp_path: Path):
        """Failing to write the output is a BuildFailure and keeps the cached archive."""
        content = _zip_bytes({"Package.swift": b"// local\n"})
        store = _seed_local(cache_dir, content, _md5(content))
        output = tmp_path / "output"
        output.write_text("not a directory")
        cache = _make_cache(cache_dir)

        with pytest.raises(BuildFailure, match="cannot write") as excinfo:
            cache.resolve(_TAG, output_dir=output)

        assert excinfo.value.tiers == ("local",)
        assert store.archive_path(_TAG).read_bytes() == content

    def test_unwritable_output_dir_on_build(self, cache_dir: Path, tmp_path: Path):
        output = tmp_path / "output"
        output.write_text("not a directory")
        cache = ArtifactCache(
            CacheConfig(cache_dir=cache_dir, remote_base_url=None),
            builder=FakeBuilder(),
        )

        with pytest.raises(BuildFailure, match="cannot write"):
            cache.resolve(_TAG, output_dir=output)

        # the build is cached nonetheless
        assert LocalStore(cache_dir).exists(_TAG)
