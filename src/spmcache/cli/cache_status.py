"""Cache status command."""

import click
from rich.console import Console

from ..config import cache_dir_or_default
from ..status import StatusState, diff
from ..store import LocalStore
from .cache import cache

_STATE_CHARS: dict[StatusState, tuple[str, str]] = {
    StatusState.MISMATCH: ("M", "red"),
    StatusState.UNRECORDED: ("U", "yellow"),
    StatusState.STALE: ("S", "dim"),
    StatusState.VALIDATED: ("V", "green"),
}


@cache.command()
@click.option("-d", "--dir", "cache_dir", default=None, help="Cache directory (default: prebuild)")
@click.option("-a", "--all", "show_all", is_flag=True, help="Include validated archives")
def status(cache_dir: str | None, show_all: bool) -> None:
    """Show the local cache status relative to the ledger.

    Each tag is prefixed with a status letter:

    \b
      'M'  modified (archive hash differs from the ledger)
      'U'  unrecorded (archive on disk, not in the ledger)
      'S'  stale (in the ledger, no archive on disk)

    Use `-a, --all` to see validated archives as well, which are
    printed using the following status letter:

    \b
      'V'  validated (archive on disk, same hash as the ledger)
    """
    store = LocalStore(cache_dir_or_default(cache_dir))
    console = Console()
    for entry in diff(store):
        if entry.state == StatusState.VALIDATED and not show_all:
            continue
        char, color = _STATE_CHARS[entry.state]
        console.print(f"[{color}]{char}[/] {entry.tag}", highlight=False)
