"""Console output helpers for the CLI."""

import json
from typing import Any

from rich.console import Console


class OutputFormatter:
    """Formats CLI output as rich text or JSON.

    Status messages go to stderr so that ``--json`` output on stdout stays
    machine readable.
    """

    def __init__(self, json_output: bool = False, quiet: bool = False):
        self.json_output = json_output
        self.quiet = quiet
        self.console = Console()
        self.err_console = Console(stderr=True)

    def print(self, *objects: Any) -> None:
        if not self.quiet and not self.json_output:
            self.console.print(*objects)

    def info(self, message: str) -> None:
        if not self.quiet:
            self.err_console.print(message)

    def success(self, message: str) -> None:
        if not self.quiet:
            self.err_console.print(f"[green]✓[/green] {message}")

    def warning(self, message: str) -> None:
        self.err_console.print(f"[yellow]Warning:[/yellow] {message}")

    def error(self, message: str) -> None:
        self.err_console.print(f"[red]Error:[/red] {message}")

    def output_json(self, data: Any) -> None:
        self.console.print(
            json.dumps(data, indent=2, default=str),
            markup=False,
            highlight=False,
            soft_wrap=True,
        )
