import typer

from sourcecache.cli.commands._remote import build_remote, err_console
from sourcecache.kernel.errors import SourceCacheError


def locate(
    reference: str = typer.Argument(..., help="A local path or a remote source reference."),
    cache_dir: str = typer.Option(None, "--cache-dir", help="Subdirectory of the cache home to use."),
    home: str = typer.Option(None, "--home", help="Override the cache home directory."),
):
    """
    Print a local path for REFERENCE, fetching it first if it is remote.
    """
    remote = build_remote(home)
    try:
        path = remote.locate(reference, cache_dir=cache_dir)
    except SourceCacheError as exc:
        err_console.print(f"[red]Locate failed:[/red] {exc}", soft_wrap=True)
        raise typer.Exit(1)
    typer.echo(path)
