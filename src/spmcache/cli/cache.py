"""Cache command group."""

from . import cli


@cli.group()
def cache() -> None:
    """Inspect the local prebuild cache."""
