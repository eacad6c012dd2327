"""Resolve command."""

from __future__ import annotations

import shutil
from dataclasses import replace
from pathlib import Path

import click
import dacite

from ..cache import ArtifactCache
from ..config import CacheConfig, cache_dir_or_default, load_config
from ..errors import BuildFailure
from ..ledger import validate_tag
from . import cli
from .logger import configure_logging


def _load_config(
    config_file: str | None,
    *,
    cache_dir: str | None,
    remote_url: str | None,
    no_remote: bool,
    build_command: str | None,
    timeout: float | None,
    no_progress: bool,
) -> CacheConfig:
    """Merge defaults, the optional JSON config file and the command line flags."""
    try:
        config = load_config(config_file) if config_file is not None else CacheConfig()
    except (OSError, ValueError, dacite.DaciteError) as exc:
        raise click.BadParameter(str(exc), param_hint="--config") from exc

    overrides: dict[str, object] = {}
    if cache_dir is not None:
        overrides["cache_dir"] = cache_dir_or_default(cache_dir)
    if remote_url is not None:
        overrides["remote_base_url"] = remote_url
    if no_remote:
        overrides["remote_base_url"] = None
    if build_command is not None:
        overrides["build_command"] = build_command
    if timeout is not None:
        overrides["timeout"] = timeout
    if no_progress:
        overrides["progress"] = False
    try:
        return replace(config, **overrides)
    except ValueError as exc:
        raise click.UsageError(str(exc)) from exc


def _confirm_output_dir(output_dir: Path, assume_yes: bool) -> None:
    """Ask before wiping an existing, non-empty output directory."""
    if not output_dir.exists() or not any(output_dir.iterdir()):
        return
    if not assume_yes and not click.confirm(
        f"Output directory '{output_dir}' already exists. Remove it?", default=False
    ):
        click.echo("Cannot proceed with existing output directory.", err=True)
        raise SystemExit(1)
    shutil.rmtree(output_dir)


@cli.command()
@click.option("-t", "--tag", required=True, help="Tag of the package to resolve")
@click.option(
    "-o",
    "--output-dir",
    default="output",
    show_default=True,
    type=click.Path(file_okay=False),
    help="Directory where to extract the package",
)
@click.option("--force-build", is_flag=True, help="Skip all cache checks and force a fresh build")
@click.option("-d", "--dir", "cache_dir", default=None, help="Cache directory (default: prebuild)")
@click.option("--remote-url", default=None, help="Base URL of the remote prebuild cache")
@click.option("--no-remote", is_flag=True, help="Do not use the remote prebuild cache")
@click.option("--build-command", default=None, help="Command building the package on a miss")
@click.option(
    "-c",
    "--config",
    "config_file",
    default=None,
    type=click.Path(dir_okay=False),
    help="JSON configuration file",
)
@click.option("--timeout", default=None, type=float, help="Network timeout in seconds")
@click.option("--no-progress", is_flag=True, help="Do not show download progress bars")
@click.option(
    "-y", "--yes", "assume_yes", is_flag=True, help="Remove the output dir without asking"
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def resolve(
    tag: str,
    output_dir: str,
    force_build: bool,
    cache_dir: str | None,
    remote_url: str | None,
    no_remote: bool,
    build_command: str | None,
    config_file: str | None,
    timeout: float | None,
    no_progress: bool,
    assume_yes: bool,
    verbose: bool,
) -> None:
    """Get the package for TAG from the cache, or build it.

    We look at the local prebuild cache first, then at the remote one,
    and we run the build command when both miss. Freshly built packages
    are saved into the local cache for the next time.
    """
    if remote_url is not None and no_remote:
        raise click.UsageError("--remote-url and --no-remote are mutually exclusive")
    try:
        validate_tag(tag)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="--tag") from exc
    config = _load_config(
        config_file,
        cache_dir=cache_dir,
        remote_url=remote_url,
        no_remote=no_remote,
        build_command=build_command,
        timeout=timeout,
        no_progress=no_progress,
    )
    try:
        artifact_cache = ArtifactCache(config)
    except ValueError as exc:
        raise click.UsageError(str(exc)) from exc

    dest = Path(output_dir)
    _confirm_output_dir(dest, assume_yes)
    configure_logging(verbose)

    try:
        location = artifact_cache.resolve(tag, output_dir=dest, force_fresh=force_build)
    except BuildFailure as exc:
        click.echo(f"error: {exc}", err=True)
        raise SystemExit(1) from exc

    validation = "hash validated" if location.validated else "NOT validated"
    click.echo(f"Package location: {location.path}")
    click.echo(f"Source: {location.tier.value} ({validation})")
