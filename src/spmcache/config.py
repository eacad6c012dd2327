"""Module containing the cache configuration."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Final

import dacite

from .fetch import DEFAULT_TIMEOUT
from .ledger import DEFAULT_ARCHIVE_EXTENSION
from .store import DEFAULT_LEDGER_NAME

DEFAULT_CACHE_DIRNAME: Final[str] = "prebuild"

DEFAULT_REMOTE_BASE_URL: Final[str] = (
    "https://github.com/billp/communication-ui-library-ios-spm-exported"
    "/raw/refs/heads/main/prebuild"
)


def cache_dir_or_default(cache_dir: str | Path | None) -> Path:
    """
    Return cache_dir as a Path if not empty. Otherwise return the
    default value for the cache_dir (i.e., `./prebuild`).
    """
    return Path.cwd() / DEFAULT_CACHE_DIRNAME if cache_dir is None else Path(cache_dir)


@dataclass(frozen=True, kw_only=True)
class CacheConfig:
    """
    Configuration of an ArtifactCache.

    Attributes:
        cache_dir: directory holding the archives and the ledger.
        remote_base_url: base URL of the remote cache, or None to disable it.
        ledger_name: file name of the ledger, locally and remotely.
        archive_extension: extension of the archive files.
        timeout: seconds to wait for each network request.
        lock_timeout: seconds to wait for the per-tag lock (-1 waits forever).
        build_command: command producing the package on a cache miss.
        progress: whether to show download progress bars.
    """

    cache_dir: Path = field(default_factory=lambda: cache_dir_or_default(None))
    remote_base_url: str | None = DEFAULT_REMOTE_BASE_URL
    ledger_name: str = DEFAULT_LEDGER_NAME
    archive_extension: str = DEFAULT_ARCHIVE_EXTENSION
    timeout: float = DEFAULT_TIMEOUT
    lock_timeout: float = -1
    build_command: str | None = None
    progress: bool = True

    def __post_init__(self):
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got: {self.timeout}")
        if not self.ledger_name or "/" in self.ledger_name:
            raise ValueError(f"Invalid ledger name: {self.ledger_name!r}")
        if not self.archive_extension or "/" in self.archive_extension:
            raise ValueError(f"Invalid archive extension: {self.archive_extension!r}")


_DACITE_CONFIG = dacite.Config(
    type_hooks={Path: Path, float: float},
    strict=True,
)


def config_from_dict(data: dict) -> CacheConfig:
    """Create a CacheConfig from a dict, rejecting unknown keys."""
    return dacite.from_dict(CacheConfig, data, config=_DACITE_CONFIG)


def load_config(path: str | Path) -> CacheConfig:
    """
    Load the configuration from a JSON file.

    Relative `cache_dir` values are resolved against the directory
    containing the configuration file.
    """
    path = Path(path)
    with open(path) as filep:
        data = json.load(filep)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a JSON object")
    config = config_from_dict(data)
    if "cache_dir" in data and not config.cache_dir.is_absolute():
        config = replace(config, cache_dir=path.parent / config.cache_dir)
    return config
