import typer
import importlib.metadata
from sourcecache.internal.logging import get_logger

logger = get_logger(__name__)


def version():
    """
    Show the sourcecache version.
    """
    try:
        # Read version from installed package metadata
        package_version = importlib.metadata.version("sourcecache")
    except importlib.metadata.PackageNotFoundError:
        typer.echo("sourcecache is not installed or version metadata not found.")
        logger.warning("sourcecache package version not found.")
        raise typer.Exit(1)
    typer.echo(f"sourcecache version: {package_version}")
