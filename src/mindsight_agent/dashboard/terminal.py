"""Rich tables for the one-shot CLI commands (sources, query, config)."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from mindsight_agent.cache.registry import Source
from mindsight_agent.metrics import Sample, format_value


def _format_labels(labels: Dict[str, str]) -> str:
    parts = [f'{k}="{v}"' for k, v in sorted(labels.items()) if k != "__name__"]
    return "{" + ", ".join(parts) + "}" if parts else ""


def _color_for_value(value: float) -> str:
    if math.isnan(value) or math.isinf(value):
        return "red"
    return "green"


def build_sources_table(sources: List[Source]) -> Table:
    table = Table(show_header=True, header_style="bold", title=f"{len(sources)} sources")
    table.add_column("ID", justify="right", width=6)
    table.add_column("Endpoint", style="cyan")
    table.add_column("Query")

    # Same endpoint means a shared connection, so flag the repeats
    seen = set()
    for src in sources:
        endpoint = escape(src.endpoint)
        if src.endpoint in seen:
            endpoint = f"[dim]{endpoint}[/dim]"
        seen.add(src.endpoint)
        table.add_row(str(src.id), endpoint, escape(src.query))
    return table


def build_samples_table(samples: List[Sample], title: str = "") -> Table:
    table = Table(show_header=True, header_style="bold", title=escape(title) if title else None)
    table.add_column("Metric", style="cyan")
    table.add_column("Labels")
    table.add_column("Value", justify="right")
    table.add_column("Timestamp (UTC)", width=20)

    for sample in samples:
        ts = datetime.fromtimestamp(sample.timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        color = _color_for_value(sample.value)
        table.add_row(
            escape(sample.name) or "[dim](none)[/dim]",
            escape(_format_labels(sample.labels)),
            f"[{color}]{format_value(sample.value)}[/{color}]",
            ts,
        )
    return table


def build_config_table(settings: Dict[str, str]) -> Table:
    table = Table(show_header=False, box=None)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in settings.items():
        table.add_row(key, escape(value) if value else "[dim](unset)[/dim]")
    return table


def print_sources(sources: List[Source], console: Optional[Console] = None):
    console = console or Console()
    if not sources:
        console.print("[yellow]No sources configured upstream.[/yellow]")
        return
    console.print(build_sources_table(sources))


def print_samples(samples: List[Sample], title: str = "", console: Optional[Console] = None):
    console = console or Console()
    console.print(build_samples_table(samples, title=title))


def print_config(settings: Dict[str, str], console: Optional[Console] = None):
    console = console or Console()
    console.print(build_config_table(settings))
