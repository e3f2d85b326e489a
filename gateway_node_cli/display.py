import logging
from rich.logging import RichHandler
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from typing import List, Optional

from .schemas import HEALTH_THRESHOLD, ServiceHealthSnapshot, UpdateResult, VersionCheck

class Display:
    """
    A centralized display handler for all CLI output.

    LOGGING STANDARDS:

    This module handles structured UI elements (tables, panels) and configures
    the logging system. All other modules should use Python's logging system
    for user communication:

    - DEBUG: Command lines, raw tool output, detailed flow info (verbose mode only)
    - INFO: Pipeline stage progress, successful operations
    - WARNING: Degraded version facts, best-effort cleanup failures, fallbacks
    - ERROR: Failed pipeline stages, configuration errors

    Other modules use logging.getLogger(__name__) and never call display
    methods for simple messages. Only the command layer renders reports.
    """

    def __init__(self, verbose: bool = False):
        self._console = Console()
        self._verbose = verbose

        # Clear any existing handlers to avoid duplicate logs
        root_logger = logging.getLogger()
        if root_logger.hasHandlers():
            root_logger.handlers.clear()

        logging.basicConfig(
            level="DEBUG" if verbose else "INFO",
            format="%(message)s",
            datefmt="[%X]",
            handlers=[RichHandler(console=self._console, rich_tracebacks=True, show_path=verbose, show_level=verbose)]
        )

    @property
    def verbose(self) -> bool:
        """Returns whether verbose mode is enabled."""
        return self._verbose

    def success(self, message: str):
        """Prints a success message."""
        self._console.print(f"[bold green]Success:[/] {message}")

    def error(self, message: str, suggestion: Optional[str] = None):
        """Prints an error message and an optional suggestion."""
        error_panel = Panel(
            f"[bold red]Error:[/] {message}\n"
            + (f"\n[bold]Suggestion:[/] {suggestion}" if suggestion else ""),
            border_style="red",
            expand=False,
        )
        self._console.print(error_panel)

    def panel(self, content: str, title: str, border_style: str = "blue"):
        """Prints content within a styled panel."""
        self._console.print(
            Panel(
                content,
                title=f"[bold]{title}[/bold]",
                border_style=border_style,
                expand=False,
            )
        )

    def table(self, title: str, columns: List[str], rows: List[List[str]]):
        """Creates and prints a table."""
        table = Table(title=title)
        for column in columns:
            table.add_column(column, style="cyan")
        for row in rows:
            table.add_row(*row)
        self._console.print(table)

    def version_check(self, check: VersionCheck):
        """Displays the three version facts and the update decision."""
        facts = check.facts
        self.table(
            "Node Versions",
            ["Source", "Version"],
            [
                ["Deployed", facts.deployed or "unknown"],
                ["Local checkout", facts.local or "unknown"],
                ["Latest release", facts.latest or "unknown"],
            ],
        )
        verdict = "[bold yellow]Update available[/]" if check.comparison.update_needed else "[bold green]Up to date[/]"
        self._console.print(f"{verdict}: {check.comparison.reason}")

    def health(self, snapshot: ServiceHealthSnapshot):
        """Displays per-service state and the health verdict."""
        if snapshot.services:
            table = Table(title="Node Services")
            table.add_column("Service", style="cyan")
            table.add_column("Running", style="magenta")
            table.add_column("State", style="yellow")
            table.add_column("Status", style="blue")
            for service in snapshot.services:
                table.add_row(
                    f"[bold]{service.name}[/bold]",
                    "✅" if service.state == "running" else "❌",
                    service.state,
                    service.status or "N/A",
                )
            self._console.print(table)

        style = "green" if snapshot.is_healthy else "red"
        self.panel(
            f"{snapshot.running_count}/{snapshot.total_count} services running "
            f"({snapshot.health_fraction:.0%}, threshold {float(HEALTH_THRESHOLD):.0%})",
            "Health",
            border_style=style,
        )

    def update_report(self, result: UpdateResult):
        """Displays the step log of an update run followed by its outcome."""
        table = Table(title="Update Steps")
        table.add_column("#", style="dim", justify="right")
        table.add_column("Step", style="cyan")
        for index, step in enumerate(result.steps, start=1):
            table.add_row(str(index), step)
        self._console.print(table)

        if result.health is not None:
            self.health(result.health)

        if result.success:
            flags = []
            if result.repository_updated:
                flags.append("source updated")
            if result.built_from_source:
                flags.append("images built from source")
            elif result.images_updated:
                flags.append("images updated")
            if result.archive_ref:
                flags.append(f"local changes archived to {result.archive_ref}")
            suffix = f" ({', '.join(flags)})" if flags else ""
            self.success(f"{result.message}{suffix}")

    def json(self, data: str):
        """Prints pre-formatted JSON to the console."""
        self._console.print(data)

    def print(self, *args, **kwargs):
        """A wrapper around rich.print for general output."""
        self._console.print(*args, **kwargs)
