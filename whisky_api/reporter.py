from __future__ import annotations

from typing import Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from whisky_api.domain.models import Whisky


def build_whisky_table(whiskies: Sequence[Whisky], title: str = "Whisky Collection") -> Table:
    """
    Build a rich table of whiskies in the order the store returned them.
    """
    table = Table(
        title=title,
        box=box.ROUNDED,
        caption=f"{len(whiskies)} record(s)",
    )

    table.add_column("Id", justify="right", style="magenta", no_wrap=True)
    table.add_column("Name", style="cyan")
    table.add_column("Origin", style="green")

    for whisky in whiskies:
        table.add_row(str(whisky.id), whisky.name, whisky.origin)

    return table


def print_whiskies(whiskies: Sequence[Whisky], console: Optional[Console] = None) -> None:
    console = console or Console()
    if not whiskies:
        console.print("[yellow]The collection is empty.[/yellow]")
        return
    console.print(build_whisky_table(whiskies))


__all__ = ["build_whisky_table", "print_whiskies"]
