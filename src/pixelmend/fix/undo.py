"""Undo support for committed fixes whose backups were retained."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from pixelmend.core.config import get_pixelmend_dir
from pixelmend.fix.applier import MANIFEST_NAME, atomic_write

logger = logging.getLogger(__name__)


@dataclass
class UndoEntry:
    """An undoable committed fix."""

    entry_id: str
    run_id: str
    file: Path
    backup: Path
    description: str
    timestamp: str


@dataclass
class UndoResult:
    entry_id: str
    success: bool
    message: str
    file: Path | None = None


class UndoManager:
    """Restores files from the backups of committed fixes."""

    def __init__(self, project_path: Path):
        self.project_path = project_path
        self.pixelmend_dir = get_pixelmend_dir(project_path)
        self.backup_dir = self.pixelmend_dir / "backups"

    def _manifests(self) -> list[Path]:
        if not self.backup_dir.exists():
            return []
        return [
            run_dir / MANIFEST_NAME
            for run_dir in sorted(self.backup_dir.iterdir(), reverse=True)
            if (run_dir / MANIFEST_NAME).exists()
        ]

    def list_undoable(self) -> list[UndoEntry]:
        """Committed fixes with a backup on disk, newest run first."""
        entries = []
        for manifest_file in self._manifests():
            manifest = json.loads(manifest_file.read_text())
            for entry in reversed(manifest):
                backup = Path(entry["backup"])
                if entry.get("status") != "committed" or not backup.exists():
                    continue
                entries.append(UndoEntry(
                    entry_id=entry["entry_id"],
                    run_id=manifest_file.parent.name,
                    file=Path(entry["file"]),
                    backup=backup,
                    description=entry.get("description", ""),
                    timestamp=entry["timestamp"],
                ))
        return entries

    def undo(self, entry_id: str) -> UndoResult:
        """Undo a specific fix by restoring its backup.

        Backups are whole-file snapshots, so a fix is only undoable while it
        is the newest committed fix of its file.
        """
        entries = self.list_undoable()
        for index, entry in enumerate(entries):
            if entry.entry_id != entry_id:
                continue
            target_file = self._resolve(entry.file)

            newer = [e.entry_id for e in entries[:index] if self._resolve(e.file) == target_file]
            if newer:
                return UndoResult(
                    entry_id=entry_id,
                    success=False,
                    message=(
                        f"Cannot undo {entry_id}: {entry.file} has newer fixes; "
                        f"undo {', '.join(newer)} first"
                    ),
                    file=entry.file,
                )

            atomic_write(target_file, entry.backup.read_bytes())
            self._mark(entry, "undone")
            logger.info("Restored %s from %s", target_file, entry.backup)
            return UndoResult(
                entry_id=entry_id,
                success=True,
                message=f"Reverted {entry_id}: restored {entry.file}",
                file=entry.file,
            )

        return UndoResult(
            entry_id=entry_id,
            success=False,
            message=f"No undo history for {entry_id}",
        )

    def undo_last_session(self) -> list[UndoResult]:
        """Undo every committed fix of the most recent run, newest first."""
        entries = self.list_undoable()
        if not entries:
            return []
        latest = entries[0].run_id
        return [self.undo(e.entry_id) for e in entries if e.run_id == latest]

    def _resolve(self, file: Path) -> Path:
        return file if file.is_absolute() else self.project_path / file

    def _mark(self, entry: UndoEntry, status: str) -> None:
        manifest_file = self.backup_dir / entry.run_id / MANIFEST_NAME
        manifest = json.loads(manifest_file.read_text())
        for item in manifest:
            if item["entry_id"] == entry.entry_id:
                item["status"] = status
        atomic_write(manifest_file, json.dumps(manifest, indent=2).encode("utf-8"))
