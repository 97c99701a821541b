"""CLI formatters — console, relevance indicators, ages and tables."""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.table import Table
from rich.text import Text


def get_console(no_color: bool = False) -> Console:
    """Get a Rich Console, optionally with color disabled."""
    return Console(no_color=no_color)


def relevance_indicator(reason: str) -> Text:
    """Map a retrieval reason bucket to a colored marker."""
    mapping = {
        "highly_relevant": Text("*** ", style="bold green"),
        "relevant": Text("**  ", style="green"),
        "somewhat_relevant": Text("*   ", style="yellow"),
        "low_relevance": Text("-   ", style="dim"),
    }
    return mapping.get(reason, Text("?   ", style="dim"))


def format_age(seconds: float) -> str:
    """Human-readable age of a record."""
    seconds = max(0.0, seconds)
    if seconds < 60:
        return f"{seconds:.0f}s"
    if seconds < 3600:
        return f"{int(seconds // 60)}m"
    if seconds < 86400:
        return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60):02d}m"
    return f"{int(seconds // 86400)}d"


def truncate(text: str, width: int = 60) -> str:
    text = " ".join(text.split())
    return text if len(text) <= width else text[: width - 3] + "..."


def build_table(title: str, columns: list[str], rows: list[list[Any]]) -> Table:
    """Build a Rich table with standard styling."""
    table = Table(title=title, show_header=True, header_style="bold")
    for col in columns:
        table.add_column(col)
    for row in rows:
        table.add_row(*(v if isinstance(v, Text) else str(v) for v in row))
    return table
