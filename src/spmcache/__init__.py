"""Prebuilt package cache for the Swift Package Manager package generator.

The `ArtifactCache` class resolves the package for a tag by looking,
in order, at the local prebuild directory, at the remote prebuild
directory, and finally by running the (expensive) package build.

Every archive is validated against a `hashes.md5` ledger mapping
each `<tag>.zip` archive to its MD5 checksum.
"""

from importlib.metadata import PackageNotFoundError, version

from .builder import CommandBuilder
from .cache import ArtifactCache, ArtifactLocation
from .config import CacheConfig, load_config
from .errors import (
    ArchiveError,
    BuildFailure,
    SourceUnavailable,
    SpmCacheError,
    ValidationMismatch,
)
from .ledger import HashLedger
from .sources import CacheTier

try:
    __version__ = version("spmcache")
except PackageNotFoundError:  # pragma: no cover - not installed
    __version__ = "0.0.0"

__all__ = [
    "ArchiveError",
    "ArtifactCache",
    "ArtifactLocation",
    "BuildFailure",
    "CacheConfig",
    "CacheTier",
    "CommandBuilder",
    "HashLedger",
    "SourceUnavailable",
    "SpmCacheError",
    "ValidationMismatch",
    "load_config",
    "__version__",
]
