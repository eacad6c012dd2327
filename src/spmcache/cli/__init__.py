"""spmcache command-line interface."""

from importlib.metadata import version

import click

_PACKAGE_NAME = "spmcache"


def _get_version() -> str:
    """Return the installed package version string."""
    return version(_PACKAGE_NAME)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(message="%(version)s", package_name=_PACKAGE_NAME)
def cli() -> None:
    """Prebuilt Swift package cache command-line tool."""


@cli.command(hidden=True)
def help() -> None:
    """Show usage information."""
    click.echo('Use "spmcache --help" for usage information.')
    click.echo('Use "spmcache <command> --help" for help on a specific command.')


@cli.command("version")
def version_cmd() -> None:
    """Print the version number."""
    click.echo(_get_version())


def main() -> None:
    cli()


# Register subcommands (must be after cli is defined)
from . import cache as _cache  # noqa: E402, F401
from . import cache_hash as _cache_hash  # noqa: E402, F401
from . import cache_status as _cache_status  # noqa: E402, F401
from . import resolve as _resolve  # noqa: E402, F401
