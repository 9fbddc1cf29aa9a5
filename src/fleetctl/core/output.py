"""Output formatting for command results."""

import json
from enum import Enum
from typing import Any

import click
import yaml
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table
from tabulate import tabulate

console = Console()
error_console = Console(stderr=True)


class OutputFormat(str, Enum):
    """Supported output formats."""

    TABLE = "table"
    JSON = "json"
    YAML = "yaml"
    RAW = "raw"


# target, stage and rollback statuses share one palette
STATUS_STYLES = {
    "pending": "dim",
    "running": "yellow",
    "connected": "cyan",
    "completed": "green",
    "deployed": "green",
    "success": "green",
    "failed": "red",
    "skipped": "dim",
}


def styled_status(status: str) -> str:
    """Wrap a status value in its Rich markup style."""
    style = STATUS_STYLES.get(status)
    return f"[{style}]{status}[/{style}]" if style else status


def _cell(value: Any) -> str:
    return "" if value is None else str(value)


class OutputFormatter:
    """Prints command results in the format chosen with ``-o``.

    Status messages (success, info, warning) are dropped in quiet mode;
    data and errors are always printed.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.TABLE,
        color: bool = True,
        quiet: bool = False,
    ):
        self.format = format
        self.color = color
        self.quiet = quiet
        self._console = Console(no_color=not color, highlight=color)

    @property
    def console(self) -> Console:
        return self._console

    def _message(self, prefix: str, message: str) -> None:
        if not self.quiet:
            self._console.print(f"{prefix} {message}")

    def print(self, message: str, style: str | None = None) -> None:
        if not self.quiet:
            self._console.print(message, style=style)

    def print_success(self, message: str) -> None:
        self._message("[green]✓[/green]", message)

    def print_info(self, message: str) -> None:
        self._message("[blue]ℹ[/blue]", message)

    def print_warning(self, message: str) -> None:
        self._message("[yellow]Warning:[/yellow]", message)

    def print_error(self, message: str) -> None:
        error_console.print(f"[red]Error:[/red] {message}")

    def print_data(
        self,
        data: list[dict[str, Any]] | dict[str, Any],
        headers: list[str] | None = None,
        title: str | None = None,
    ) -> None:
        """Print a record or a list of records.

        Args:
            data: One record (dict) or rows (list of dicts)
            headers: Columns to show for rows, defaulting to the first row's keys
            title: Table title, used by the table format only
        """
        if self.format == OutputFormat.JSON:
            self._print_document(json.dumps(data, indent=2, default=str), "json")
        elif self.format == OutputFormat.YAML:
            self._print_document(yaml.safe_dump(data, default_flow_style=False, allow_unicode=True), "yaml")
        elif self.format == OutputFormat.RAW:
            self._print_raw(data, headers)
        elif isinstance(data, dict):
            self._print_record(data, title)
        elif data:
            self._print_rows(data, headers or list(data[0].keys()), title)
        else:
            self._console.print("[dim]No data to display[/dim]")

    def _print_document(self, text: str, lexer: str) -> None:
        # plain print keeps machine-readable output free of ANSI codes
        if self.color:
            self._console.print(Syntax(text, lexer, theme="monokai"))
        else:
            print(text)

    def _print_raw(self, data: Any, headers: list[str] | None) -> None:
        if isinstance(data, dict):
            for key, value in data.items():
                print(f"{key}: {value}")
        elif data:
            headers = headers or list(data[0].keys())
            print(tabulate([[_cell(row.get(h)) for h in headers] for row in data], headers=headers, tablefmt="plain"))

    def _print_record(self, record: dict[str, Any], title: str | None) -> None:
        table = Table(title=title, header_style="bold cyan")
        table.add_column("Field", style="dim")
        table.add_column("Value")
        for key, value in record.items():
            table.add_row(str(key), _cell(value))
        self._console.print(table)

    def _print_rows(self, rows: list[dict[str, Any]], headers: list[str], title: str | None) -> None:
        table = Table(title=title, header_style="bold cyan")
        for header in headers:
            table.add_column(header)
        for row in rows:
            cells = [_cell(row.get(h)) for h in headers]
            if "status" in headers:
                i = headers.index("status")
                cells[i] = styled_status(cells[i])
            table.add_row(*cells)
        self._console.print(table)

    def confirm(self, message: str, default: bool = False) -> bool:
        """Ask a yes/no question. Quiet mode answers with the default."""
        if self.quiet:
            return default
        try:
            return click.confirm(message, default=default)
        except click.Abort:
            return False


def format_duration(seconds: float) -> str:
    """Short human-readable duration, e.g. ``4.2s``, ``3m05s`` or ``1h12m``."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    if minutes < 60:
        return f"{minutes}m{secs:02d}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h{minutes:02d}m"
