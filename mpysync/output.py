"""Output formatting for the mpysync CLI."""

import json
import sys
from typing import Any, Optional

from rich.console import Console
from rich.table import Table

from .utils import format_size


class OutputFormatter:
    """Formats user-facing output as rich text or JSON."""

    def __init__(self, json_output: bool = False, quiet: bool = False):
        """Initialize output formatter.

        Args:
            json_output: Emit machine-readable JSON instead of text
            quiet: Suppress non-essential output
        """
        self.json_output = json_output
        self.quiet = quiet
        self.console = Console()
        self.err_console = Console(stderr=True)

    def print(self, message: str) -> None:
        """Print a plain message (suppressed in JSON mode)."""
        if not self.json_output:
            self.console.print(message, highlight=False)

    def info(self, message: str) -> None:
        """Print an informational message."""
        if not self.quiet and not self.json_output:
            self.console.print(message, highlight=False)

    def success(self, message: str) -> None:
        """Print a success message."""
        if not self.quiet and not self.json_output:
            self.console.print(f"[green]✓[/green] {message}", highlight=False)

    def warning(self, message: str) -> None:
        """Print a warning to stderr."""
        self.err_console.print(f"[yellow]Warning:[/yellow] {message}", highlight=False)

    def error(self, message: str) -> None:
        """Print an error to stderr."""
        self.err_console.print(f"[red]Error:[/red] {message}", highlight=False)

    def progress_message(self, message: str) -> None:
        """Print a progress line."""
        if not self.quiet and not self.json_output:
            self.console.print(f"[dim]{message}[/dim]", highlight=False)

    def output_json(self, data: Any) -> None:
        """Write data as indented JSON to stdout."""
        sys.stdout.write(json.dumps(data, indent=2, default=str) + "\n")
        sys.stdout.flush()

    def output_table(
        self,
        data: list[dict[str, Any]],
        columns: list[str],
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        """Print rows as a table, or as JSON in JSON mode.

        Args:
            data: Rows as dictionaries
            columns: Keys to show, in order
            headers: Optional column titles keyed by column
        """
        if self.json_output:
            self.output_json([{c: row.get(c) for c in columns} for row in data])
            return
        headers = headers or {}
        table = Table(show_header=True, header_style="bold", box=None)
        for column in columns:
            table.add_column(headers.get(column, column))
        for row in data:
            table.add_row(*(str(row.get(c, "")) for c in columns))
        self.console.print(table)

    def print_summary(self, title: str, items: list[tuple[str, str]]) -> None:
        """Print a titled list of key/value rows."""
        if self.json_output:
            return
        self.console.print(f"\n[bold]{title}[/bold]")
        for key, value in items:
            self.console.print(f"  {key}: {value}", highlight=False)

    @staticmethod
    def format_size(size: int) -> str:
        return format_size(size)
