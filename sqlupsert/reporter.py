from __future__ import annotations

from collections import Counter
from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from sqlupsert.domain.models import Outcome

MAX_FAILURE_ROWS = 20


def _format_bytes(value: Optional[int]) -> str:
    if not value:
        return "N/A"
    return f"{value / (1024 * 1024):.2f}"


def print_summary(summary: Dict[str, Any], console: Optional[Console] = None) -> None:
    """
    Render the run summary as a rich table.
    """
    console = console or Console()

    table = Table(title=f"Upsert into {summary.get('table', '?')}", box=box.ROUNDED)
    table.add_column("Strategy", style="cyan", no_wrap=True)
    table.add_column("Commit", style="blue")
    table.add_column("Records", justify="right", style="magenta")
    table.add_column("Succeeded", justify="right", style="bold green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Batches", justify="right")
    table.add_column("Rows Affected", justify="right")
    table.add_column("Duration (s)", justify="right", style="green")
    table.add_column("Records/s", justify="right", style="bold green")
    table.add_column("Peak Memory (MB)", justify="right", style="yellow")

    table.add_row(
        str(summary.get("strategy", "Unknown")),
        str(summary.get("commit_mode", "?")),
        f"{summary.get('records', 0):,}",
        f"{summary.get('succeeded', 0):,}",
        f"{summary.get('failed', 0):,}",
        str(summary.get("batches", 0)),
        f"{summary.get('rows_affected', 0):,}",
        f"{summary.get('duration_seconds', 0.0):.2f}",
        f"{summary.get('records_per_sec', 0.0):,.2f}",
        _format_bytes(summary.get("peak_rss_bytes")),
    )
    console.print(table)


def print_failures(outcomes: List[Outcome], console: Optional[Console] = None, limit: int = MAX_FAILURE_ROWS) -> None:
    """
    Render failed outcomes, grouped counts first, then the first `limit` records.
    """
    console = console or Console()
    failed = [o for o in outcomes if not o.succeeded]
    if not failed:
        console.print("[green]All records succeeded.[/green]")
        return

    counts = Counter((o.status.value, o.status_code) for o in failed)
    caption = ", ".join(f"{status} {code}: {n}" for (status, code), n in sorted(counts.items()))

    table = Table(title="Failed records", box=box.ROUNDED, caption=caption)
    table.add_column("Record", justify="right", style="cyan")
    table.add_column("Status", style="red")
    table.add_column("Code", justify="right")
    table.add_column("Kind")
    table.add_column("Message", overflow="fold")

    for outcome in failed[:limit]:
        table.add_row(
            str(outcome.index),
            outcome.status.value,
            outcome.status_code,
            outcome.error_kind.value if outcome.error_kind else "",
            outcome.message,
        )
    if len(failed) > limit:
        table.add_row("…", "", "", "", f"{len(failed) - limit} more")
    console.print(table)


__all__ = ["print_summary", "print_failures"]
