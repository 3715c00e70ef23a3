"""pixelmend kb command."""

from __future__ import annotations

from collections import defaultdict
from pathlib import Path

import click
from rich.table import Table

from pixelmend.core.config import load_config
from pixelmend.core.errors import ConfigError
from pixelmend.core.output import console, print_kb_entries
from pixelmend.knowledge.store import SqliteKnowledgeStore, outcome_counts


@click.command()
@click.option("--signature", help="Only show entries for this issue signature")
@click.option("--stats", is_flag=True, help="Show success/failure counts per signature")
def kb(signature: str | None, stats: bool):
    """Inspect the knowledge base of verified fix attempts."""
    project_path = Path.cwd()
    try:
        config = load_config(project_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    store = SqliteKnowledgeStore(project_path / config.knowledge.path)

    entries = store.query_by_signature(signature) if signature else store.entries()

    if not stats:
        print_kb_entries(entries)
        return

    grouped = defaultdict(list)
    for entry in entries:
        grouped[entry.issue_signature].append(entry)

    table = Table(title="Knowledge base by signature")
    table.add_column("Signature")
    table.add_column("Successes", justify="right")
    table.add_column("Failures", justify="right")
    for sig in sorted(grouped):
        successes, failures = outcome_counts(grouped[sig])
        table.add_row(sig, f"[green]{successes}[/green]", f"[red]{failures}[/red]")
    console.print(table)
