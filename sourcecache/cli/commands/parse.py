import typer
from rich.console import Console
from rich.table import Table

from sourcecache.kernel import source as source_parser
from sourcecache.kernel.cache_key import REDACTED, redact_query
from sourcecache.kernel.errors import InvalidURLError, UnsupportedSchemeError

console = Console()


def _display_user(user: str) -> str:
    name, sep, _ = user.partition(":")
    return f"{name}:{REDACTED}" if sep else name


def parse(
    reference: str = typer.Argument(..., help="A remote source reference."),
):
    """
    Show how REFERENCE is parsed. Secrets in the user info and query are masked.
    """
    try:
        u = source_parser.parse(reference)
    except (InvalidURLError, UnsupportedSchemeError) as exc:
        console.print(f"[red]Not a remote reference:[/red] {exc}", soft_wrap=True)
        raise typer.Exit(1)

    table = Table(title="Source")
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", overflow="fold")

    for field, value in (
        ("getter", u.getter),
        ("scheme", u.scheme),
        ("user", _display_user(u.user)),
        ("host", u.host),
        ("dir", u.dir),
        ("file", u.file),
        ("query", redact_query(u.raw_query)),
    ):
        table.add_row(field, value)
    console.print(table)
