import typer

from sourcecache.cli.commands import (
    cache_key,
    fetch,
    locate,
    parse,
    version,
)
from sourcecache.internal.logging import setup_logging

cli_app = typer.Typer(
    name="sourcecache",
    help="Resolve remote source references to cached local paths.",
    no_args_is_help=True
)


@cli_app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr."),
):
    setup_logging(log_level_name="DEBUG" if verbose else "WARNING", console_output=verbose)


cli_app.command("locate")(locate.locate)
cli_app.command("fetch")(fetch.fetch)
cli_app.command("parse")(parse.parse)
cli_app.command("cache-key")(cache_key.cache_key)
cli_app.command("version")(version.version)

if __name__ == "__main__":
    cli_app()
