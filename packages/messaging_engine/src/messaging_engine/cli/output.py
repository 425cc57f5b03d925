"""Console output helpers for the relay CLI."""

from rich.console import Console
from rich.table import Table

console = Console()
error_console = Console(stderr=True)


def print_header(text: str) -> None:
    console.rule(f"[bold]{text}")


def print_success(text: str) -> None:
    console.print(f"[green]{text}[/green]")


def print_info(text: str) -> None:
    console.print(text)


def print_warning(text: str) -> None:
    console.print(f"[yellow]{text}[/yellow]")


def print_error(text: str) -> None:
    error_console.print(f"[bold red]Error:[/bold red] {text}")


def print_table(title: str, columns: list[str], rows: list[list[str]]) -> None:
    table = Table(title=title)
    for column in columns:
        table.add_column(column)
    for row in rows:
        table.add_row(*row)
    console.print(table)
