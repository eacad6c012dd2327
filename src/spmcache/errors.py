"""Errors raised while resolving prebuilt artifacts."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path


class SpmCacheError(RuntimeError):
    """Base class for errors emitted by the spmcache package."""


class ValidationMismatch(SpmCacheError):
    """The checksum of an archive differs from the recorded one."""

    def __init__(self, path: Path, *, expected: str, actual: str) -> None:
        super().__init__(f"hash mismatch for {path.name}: expected {expected}, got {actual}")
        self.path = path
        self.expected = expected
        self.actual = actual


class SourceUnavailable(SpmCacheError):
    """A remote resource cannot be fetched (network error, 404, timeout)."""

    def __init__(self, url: str, reason: object) -> None:
        super().__init__(f"cannot fetch {url}: {reason}")
        self.url = url
        self.reason = reason


class ArchiveError(SpmCacheError):
    """An archive cannot be extracted or contains unsafe members."""


class BuildFailure(SpmCacheError):
    """
    Terminal error: no tier produced a usable artifact for the tag.

    Attributes:
        tag: the tag we were resolving.
        tiers: names of the tiers attempted, in order.
    """

    def __init__(self, tag: str, tiers: Sequence[str], reason: object) -> None:
        attempted = ", ".join(tiers)
        super().__init__(f"cannot resolve {tag} (tried: {attempted}): {reason}")
        self.tag = tag
        self.tiers = tuple(tiers)
        self.reason = reason
