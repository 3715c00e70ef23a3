"""pixelmend undo command."""

from __future__ import annotations

from pathlib import Path

import click

from pixelmend.core.output import console
from pixelmend.fix.undo import UndoManager, UndoResult


def print_undo_result(result: UndoResult) -> None:
    if result.success:
        console.print(f"  [green]✅ {result.entry_id}[/green]  {result.message}")
    else:
        console.print(f"  [red]❌ {result.entry_id}[/red]  {result.message}")


@click.command()
@click.argument("entry_id", required=False)
@click.option("--last", is_flag=True, help="Undo all fixes from the last healing run")
@click.option("--list", "list_all", is_flag=True, help="List all undoable fixes")
def undo(entry_id: str | None, last: bool, list_all: bool):
    """Undo fixes committed by `pixelmend heal`.

    Pass an ENTRY_ID to undo a specific fix, or use --last to undo
    the entire last run.
    """
    manager = UndoManager(Path.cwd())

    if list_all:
        entries = manager.list_undoable()
        if not entries:
            console.print("\n  No undoable fixes found.\n")
            return

        console.print("\n  [bold]Undoable Fixes[/bold]\n")
        for entry in entries:
            console.print(f"  {entry.entry_id}  {entry.file}  [{entry.timestamp}]")
            if entry.description:
                console.print(f"     [dim]{entry.description}[/dim]")
        console.print()
        return

    if last:
        results = manager.undo_last_session()
        if not results:
            console.print("\n  No recent healing run to undo.\n")
            return

        console.print("\n  [bold]Undoing last healing run:[/bold]\n")
        for result in results:
            print_undo_result(result)
        console.print()
        return

    if entry_id:
        print_undo_result(manager.undo(entry_id))
        return

    console.print("\n  Usage: pixelmend undo <ENTRY_ID> or pixelmend undo --last")
    console.print("  Run `pixelmend undo --list` to see available undos.\n")
