import typer

from sourcecache.kernel.cache_key import derive_cache_key
from sourcecache.kernel.errors import InvalidURLError, UnsupportedSchemeError
from sourcecache.kernel.source import parse


def cache_key(
    reference: str = typer.Argument(..., help="A remote source reference."),
):
    """
    Print the cache key REFERENCE is stored under.
    """
    try:
        key = derive_cache_key(parse(reference))
    except (InvalidURLError, UnsupportedSchemeError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(1)
    typer.echo(key)
