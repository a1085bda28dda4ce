import typer

from sourcecache.cli.commands._remote import build_remote, err_console
from sourcecache.kernel.errors import SourceCacheError


def fetch(
    reference: str = typer.Argument(..., help="A remote source reference."),
    cache_dir: str = typer.Option(None, "--cache-dir", help="Subdirectory of the cache home to use."),
    home: str = typer.Option(None, "--home", help="Override the cache home directory."),
):
    """
    Fetch REFERENCE into the cache and print the cached file path.
    """
    remote = build_remote(home)
    try:
        path = remote.fetch(reference, cache_dir=cache_dir)
    except SourceCacheError as exc:
        err_console.print(f"[red]Fetch failed:[/red] {exc}", soft_wrap=True)
        raise typer.Exit(1)
    typer.echo(path)
