"""Module invoking the external package build pipeline."""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

log = logging.getLogger("spmcache/builder")


class Builder(Protocol):
    """
    Produces the package for a tag from scratch.

    Methods:
        build: write the package for tag into output_dir, raising
            an exception on failure.
    """

    def build(self, tag: str, output_dir: Path) -> None: ...


class CommandBuilder:
    """
    Builder running an external command.

    Each argument may contain the `{tag}` and `{output_dir}` placeholders,
    e.g. `./generate-package.sh --tag {tag} --output-dir {output_dir}`.
    """

    def __init__(self, argv: Sequence[str], *, cwd: str | Path | None = None) -> None:
        if not argv:
            raise ValueError("empty build command")
        self.argv = list(argv)
        self.cwd = cwd

    @classmethod
    def from_string(cls, command: str, *, cwd: str | Path | None = None) -> CommandBuilder:
        """Create a CommandBuilder splitting the command like a POSIX shell."""
        return cls(shlex.split(command), cwd=cwd)

    def command_for(self, tag: str, output_dir: Path) -> list[str]:
        """Return the argv with placeholders replaced."""
        return [
            arg.replace("{tag}", tag).replace("{output_dir}", str(output_dir))
            for arg in self.argv
        ]

    def build(self, tag: str, output_dir: Path) -> None:
        argv = self.command_for(tag, output_dir)
        log.info("running %s", shlex.join(argv))
        subprocess.run(argv, check=True, cwd=self.cwd)
