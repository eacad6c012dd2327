"""Cache hash command."""

import click

from ..config import cache_dir_or_default
from ..hashing import MD5Hasher
from ..ledger import archive_name
from ..store import LocalStore
from .cache import cache


@cache.command("hash")
@click.argument("tag")
@click.option("-d", "--dir", "cache_dir", default=None, help="Cache directory (default: prebuild)")
def hash_cmd(tag: str, cache_dir: str | None) -> None:
    """Record the hash of the archive for TAG and print its ledger line.

    The printed line can be appended to the remote ledger when
    publishing the archive to the remote prebuild cache.
    """
    store = LocalStore(cache_dir_or_default(cache_dir))
    try:
        path = store.archive_path(tag)
    except ValueError as exc:
        raise click.BadParameter(str(exc), param_hint="TAG") from exc
    if not path.exists():
        click.echo(f"error: no archive for {tag} in {store.cache_dir}", err=True)
        raise SystemExit(1)
    digest = MD5Hasher().hexdigest(path)
    store.record(tag, digest)
    click.echo(f"{digest}  {archive_name(tag, store.extension)}")
