"""Module containing the hash ledger (tag -> checksum) implementation."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Final

DEFAULT_ARCHIVE_EXTENSION: Final[str] = "zip"

_TAG_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+-]*$")

log = logging.getLogger("spmcache/ledger")


def validate_tag(tag: str) -> str:
    """
    Ensure the tag maps to a single safe file name and return it.

    Raises:
        ValueError: if the tag is empty or contains unsafe characters.
    """
    if not _TAG_PATTERN.fullmatch(tag):
        raise ValueError(f"Invalid tag: {tag!r}")
    return tag


def archive_name(tag: str, extension: str = DEFAULT_ARCHIVE_EXTENSION) -> str:
    """Return the archive file name used for the given tag."""
    return f"{tag}.{extension}"


@dataclass(kw_only=True)
class HashLedger:
    """
    Ledger mapping archive names to their checksums.

    The on-disk format is the one produced by `md5sum`, i.e., one
    `<hash>  <tag>.<extension>` line per archive. Entries keep the order
    in which they were first added.
    """

    extension: str = DEFAULT_ARCHIVE_EXTENSION
    entries: dict[str, str] = field(default_factory=dict)

    @classmethod
    def parse(cls, text: str, *, extension: str = DEFAULT_ARCHIVE_EXTENSION) -> HashLedger:
        """Parse the ledger text, skipping blank and malformed lines."""
        ledger = cls(extension=extension)
        for lineno, line in enumerate(text.splitlines(), start=1):
            fields = line.split()
            if not fields:
                continue
            if len(fields) != 2:
                log.debug("ignoring malformed ledger line %d: %r", lineno, line)
                continue
            digest, name = fields
            # `md5sum -b` marks binary files with a leading asterisk
            name = name.removeprefix("*")
            ledger.entries[name] = digest.lower()
        return ledger

    def get(self, tag: str) -> str | None:
        """Return the checksum recorded for the tag or None."""
        return self.entries.get(archive_name(tag, self.extension))

    def update(self, tag: str, digest: str) -> None:
        """Replace the checksum recorded for the tag, or append a new entry."""
        self.entries[archive_name(tag, self.extension)] = digest.lower()

    def tags(self) -> list[str]:
        """Return the tags with a recorded checksum, in ledger order."""
        suffix = f".{self.extension}"
        return [name.removesuffix(suffix) for name in self.entries if name.endswith(suffix)]

    def dumps(self) -> str:
        """Serialize the ledger using the normalized two-space format."""
        return "".join(f"{digest}  {name}\n" for name, digest in self.entries.items())


def load_ledger(path: Path, *, extension: str = DEFAULT_ARCHIVE_EXTENSION) -> HashLedger:
    """Load the ledger from the given file, or return an empty ledger if not found."""
    if not path.exists():
        return HashLedger(extension=extension)
    return HashLedger.parse(path.read_text(encoding="utf-8"), extension=extension)


def save_ledger(ledger: HashLedger, path: Path) -> None:
    """Atomically write the ledger to the given path."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with TemporaryDirectory(dir=path.parent) as tmp_dir:
        tmp_file = Path(tmp_dir) / path.name
        tmp_file.write_text(ledger.dumps(), encoding="utf-8")
        os.replace(tmp_file, path)
