"""Diff between the local ledger and the archives on disk."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from enum import Enum

from .hashing import Hasher, MD5Hasher
from .ledger import validate_tag
from .store import LocalStore


class StatusState(str, Enum):
    """State of a tag comparing the ledger vs the local store."""

    VALIDATED = "validated"
    MISMATCH = "mismatch"
    UNRECORDED = "unrecorded"
    STALE = "stale"


@dataclass(frozen=True, kw_only=True)
class StatusEntry:
    """Single entry in a ledger-vs-store diff."""

    tag: str
    recorded: str | None
    actual: str | None
    state: StatusState


def _scan_local_tags(store: LocalStore) -> set[str]:
    """Return the tags having an archive in the store."""
    result: set[str] = set()
    if not store.cache_dir.exists():
        return result
    suffix = f".{store.extension}"
    for path in store.cache_dir.glob(f"*{suffix}"):
        if not path.is_file():
            continue
        tag = path.name.removesuffix(suffix)
        try:
            result.add(validate_tag(tag))
        except ValueError:
            continue
    return result


def diff(store: LocalStore, hasher: Hasher | None = None) -> Iterator[StatusEntry]:
    """
    Compare ledger entries against the archives in the store.

    Yields ``StatusEntry`` objects in two phases:

    1. Ledger tags, in sorted order: ``VALIDATED`` or ``MISMATCH`` when the
       archive exists, ``STALE`` otherwise.
    2. Archives without a ledger entry (``UNRECORDED``), in sorted order.
    """
    hasher = hasher if hasher is not None else MD5Hasher()
    local_tags = _scan_local_tags(store)
    ledger = store.load_ledger()

    seen: set[str] = set()
    for tag in sorted(ledger.tags()):
        seen.add(tag)
        recorded = ledger.get(tag)
        if tag not in local_tags:
            yield StatusEntry(tag=tag, recorded=recorded, actual=None, state=StatusState.STALE)
            continue
        actual = hasher.hexdigest(store.archive_path(tag))
        state = StatusState.VALIDATED if actual == recorded else StatusState.MISMATCH
        yield StatusEntry(tag=tag, recorded=recorded, actual=actual, state=state)

    for tag in sorted(local_tags - seen):
        actual = hasher.hexdigest(store.archive_path(tag))
        yield StatusEntry(tag=tag, recorded=None, actual=actual, state=StatusState.UNRECORDED)
