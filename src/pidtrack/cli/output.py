"""Rich console output helpers."""

from __future__ import annotations

from rich.console import Console
from rich.table import Table

# Shared console instance
console = Console()
error_console = Console(stderr=True)


def print_error(message: str) -> None:
    """Print an error message."""
    error_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]{message}[/green]")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[dim]{message}[/dim]")


def create_table(title: str, columns: list[tuple[str, str]]) -> Table:
    """Create a styled table.

    Args:
        title: Table title
        columns: List of (name, style) tuples
    """
    table = Table(title=title, show_header=True, header_style="bold")
    for name, style in columns:
        table.add_column(name, style=style)
    return table


def print_metrics_table(title: str, entries: list[dict], user_names: dict[str, str]) -> None:
    """Print one metrics period as a row per (user, item type, task type)."""
    table = create_table(
        title,
        [
            ("User", "cyan"),
            ("Item type", "magenta"),
            ("Task type", "yellow"),
            ("Count", ""),
            ("Blocks", "green"),
        ],
    )

    if not entries:
        console.print(table)
        print_info("  No completions in this period.")
        return

    for entry in entries:
        name = user_names.get(entry["user_id"], entry["user_id"])
        first = True
        for item_type, by_task in sorted(entry["counts"].items()):
            for task_type, count in sorted(by_task.items()):
                table.add_row(
                    name if first else "",
                    item_type,
                    task_type,
                    str(count),
                    str(entry["total_blocks"]) if first else "",
                )
                first = False
    console.print(table)
