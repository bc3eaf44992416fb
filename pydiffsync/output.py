"""Console output helpers for the CLI and the sync engine."""

import json
from typing import Any, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table


class OutputFormatter:
    """Formats user-facing output.

    All messages go through a rich Console so colors and markup are
    handled consistently. In quiet mode only errors are printed, in JSON
    mode human readable messages are sent to stderr so stdout stays
    machine readable.
    """

    def __init__(
        self,
        json_output: bool = False,
        quiet: bool = False,
        console: Optional[Console] = None,
    ):
        self.json_output = json_output
        self.quiet = quiet
        self.console = console or Console(highlight=False, stderr=json_output)
        self.err_console = Console(highlight=False, stderr=True)

    def print(self, message: str = "") -> None:
        """Print a plain message."""
        if self.quiet:
            return
        self.console.print(message, markup=False)

    def info(self, message: str) -> None:
        """Print an informational message."""
        if self.quiet:
            return
        self.console.print(message, markup=False)

    def success(self, message: str) -> None:
        """Print a success message in green."""
        if self.quiet:
            return
        self.console.print(f"[green]{escape(message)}[/green]")

    def warning(self, message: str) -> None:
        """Print a warning message in yellow."""
        if self.quiet:
            return
        self.console.print(f"[yellow]{escape(message)}[/yellow]")

    def error(self, message: str) -> None:
        """Print an error message in red. Errors are shown even when quiet."""
        self.err_console.print(f"[red]{escape(message)}[/red]")

    def print_summary(self, title: str, rows: list[tuple[str, Any]]) -> None:
        """Print a two-column summary table.

        Args:
            title: Table title
            rows: (label, value) pairs
        """
        if self.quiet:
            return
        table = Table(title=title, show_header=False)
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for label, value in rows:
            table.add_row(label, str(value))
        self.console.print(table)

    def output_json(self, data: Any) -> None:
        """Write data as JSON to stdout."""
        print(json.dumps(data, indent=2, sort_keys=True))
