import logging
from datetime import datetime
from typing import Any, List, Optional, Sequence

from rich.box import HEAVY, ROUNDED, SIMPLE
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from topicfilter.domain.models.common import CacheRecord

logger = logging.getLogger(__name__)

KEEP_LABEL = "KEEP"
FILTER_LABEL = "FILTER"


class ConsoleDisplay:
    """Renders classification results and status messages with rich."""

    def __init__(self, console: Optional[Console] = None):
        self._console = console or Console()

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    def display_results(self, items: Sequence[str], decisions: Sequence[bool], topics: Sequence[str]) -> None:
        """Prints one row per item with its KEEP/FILTER decision.

        Args:
            items: The items in the order they were classified.
            decisions: The matching decisions (True keeps the item visible).
            topics: The topic set the items were checked against.
        """
        table = Table(show_header=True, box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("#", style="cyan", justify="right")
        table.add_column("Item", style="white")
        table.add_column("Decision", style="bold")

        for i, (item, keep) in enumerate(zip(items, decisions), 1):
            content = str(item)
            if len(content) > 100:
                content = content[:97] + "..."
            decision = f"[bold green]{KEEP_LABEL}[/bold green]" if keep else f"[bold red]{FILTER_LABEL}[/bold red]"
            table.add_row(str(i), content, decision)

        kept = sum(1 for d in decisions if d)
        self.console.print(Panel(
            Text(f"Topics: {', '.join(topics)}", justify="center"),
            border_style="cyan",
            box=SIMPLE,
        ))
        self.console.print(table)
        self.console.print(f"[dim]{kept} kept, {len(decisions) - kept} filtered[/dim]")
        logger.debug(f"Displayed {len(decisions)} classification results")

    def display_cache_info(self, records: List[CacheRecord], ttl_seconds: float, location: str) -> None:
        """Summarizes the persisted cache snapshot."""
        table = Table(show_header=False, box=SIMPLE, border_style="cyan", padding=(0, 1))
        table.add_column("Key", style="bold cyan")
        table.add_column("Value", style="white")
        table.add_row("Location", location)
        table.add_row("Entries", str(len(records)))
        table.add_row("TTL", f"{ttl_seconds:g}s")
        if records:
            newest = max(r["timestamp"] for r in records)
            oldest = min(r["timestamp"] for r in records)
            table.add_row("Oldest", datetime.fromtimestamp(oldest).strftime("%Y-%m-%d %H:%M:%S"))
            table.add_row("Newest", datetime.fromtimestamp(newest).strftime("%Y-%m-%d %H:%M:%S"))
            table.add_row("Filtered", str(sum(1 for r in records if not r["decision"])))
        self.console.print(table)

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(error_message, style="white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1),
        )
        self.console.print(panel)

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1),
        )
        self.console.print(panel)

    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        logger.warning(f"Display warning: {warning_message}")
        panel = Panel(
            Text(warning_message, style="white"),
            title="[bold yellow]Warning[/bold yellow]",
            border_style="yellow",
            box=HEAVY,
            padding=(0, 1),
        )
        self.console.print(panel)
