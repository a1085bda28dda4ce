"""
Shared wiring for commands that need a Remote.
"""
import typer
from rich.console import Console

from sourcecache.factory import new_remote
from sourcecache.kernel.errors import RemoteSourcesDisabledError
from sourcecache.kernel.remote import Remote

err_console = Console(stderr=True)


def build_remote(home: str | None) -> Remote:
    try:
        return new_remote(home=home or "")
    except RemoteSourcesDisabledError as exc:
        err_console.print(f"[red]Error:[/red] {exc}", soft_wrap=True)
        raise typer.Exit(1)
