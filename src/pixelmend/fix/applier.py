"""Fix application, backup management and rollback."""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import threading
from datetime import datetime
from pathlib import Path

from pixelmend.core.config import FixConfig, get_pixelmend_dir
from pixelmend.core.errors import FatalAttemptError, StaleSnapshotError
from pixelmend.core.models import FixApplicationRecord, FixCandidate, FixStatus
from pixelmend.fix.line_matcher import locate_line

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"


def atomic_write(path: Path, data: bytes) -> None:
    """Replace *path* with *data* so readers never see a partial file."""
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if path.exists():
            shutil.copymode(path, tmp)
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise


def _terminator(line: str) -> str:
    if line.endswith("\r\n"):
        return "\r\n"
    if line.endswith(("\n", "\r")):
        return line[-1]
    return ""


def replace_line(original: str, suggested: str) -> str:
    """Build the replacement for *original*, keeping its terminator.

    A suggestion without leading whitespace inherits the original indent.
    """
    ending = _terminator(original)
    body = suggested.rstrip("\r\n")
    if body and not body[0].isspace():
        stripped = original.rstrip("\r\n")
        indent = stripped[: len(stripped) - len(stripped.lstrip())]
        body = indent + body
    if ending:
        body = body.replace("\r\n", "\n").replace("\n", ending)
    return body + ending


class FixApplier:
    """Applies single-line fixes to source files with backup support."""

    def __init__(self, project_path: Path, run_id: str, config: FixConfig | None = None):
        self.project_path = project_path
        self.run_id = run_id
        self.config = config or FixConfig()
        self.pixelmend_dir = get_pixelmend_dir(project_path)
        self.backup_dir = self.pixelmend_dir / "backups" / run_id
        self._manifest_lock = threading.Lock()
        self._counter = 0

    def apply(self, candidate: FixCandidate, issue_id: str = "") -> FixApplicationRecord:
        """Apply *candidate* to its file.

        Returns an APPLIED record, or an APPLY_FAILED one when the file is
        missing or no longer holds the candidate's line.  Raises
        :class:`FatalAttemptError` when the backup cannot be written.
        """
        file_path = self._resolve_file(candidate.file_path)

        if not file_path.is_file():
            return FixApplicationRecord(
                candidate=candidate,
                status=FixStatus.APPLY_FAILED,
                message=f"File not found: {candidate.file_path}",
            )

        raw = file_path.read_bytes()
        content = raw.decode("utf-8", errors="surrogateescape")
        lines = content.splitlines(keepends=True)

        try:
            line_no = self._locate(candidate, lines)
        except StaleSnapshotError as e:
            logger.info("Stale candidate for %s: %s", file_path.name, e)
            return FixApplicationRecord(
                candidate=candidate,
                status=FixStatus.APPLY_FAILED,
                message=f"stale_snapshot: {e}",
            )

        new_line = replace_line(lines[line_no - 1], candidate.suggested_content)
        if new_line == lines[line_no - 1]:
            return FixApplicationRecord(
                candidate=candidate,
                status=FixStatus.APPLY_FAILED,
                message="no_change: suggestion matches the current line",
            )

        backup = self._create_backup(issue_id, candidate, file_path, line_no)

        lines[line_no - 1] = new_line
        try:
            atomic_write(file_path, "".join(lines).encode("utf-8", errors="surrogateescape"))
        except OSError as e:
            logger.error("Writing %s failed: %s", file_path, e)
            self._update_manifest(backup, "reverted")
            backup.unlink(missing_ok=True)
            return FixApplicationRecord(
                candidate=candidate,
                status=FixStatus.APPLY_FAILED,
                message=f"write_failed: {e}",
            )

        logger.info("Applied %s fix to %s:%d", candidate.origin.value, file_path.name, line_no)
        return FixApplicationRecord(
            candidate=candidate,
            status=FixStatus.APPLIED,
            backup_path=backup,
            applied_line=line_no,
            message=candidate.description,
        )

    def revert(self, record: FixApplicationRecord) -> FixApplicationRecord:
        """Restore the pre-apply bytes of the record's file."""
        if record.backup_path is None:
            return record
        file_path = self._resolve_file(record.candidate.file_path)
        try:
            atomic_write(file_path, record.backup_path.read_bytes())
        except OSError as e:
            raise FatalAttemptError("revert_failed", f"Could not restore {file_path}: {e}") from e

        record.status = FixStatus.REVERTED
        self._update_manifest(record.backup_path, "reverted")
        record.backup_path.unlink(missing_ok=True)
        logger.info("Reverted %s", file_path.name)
        return record

    def commit(self, record: FixApplicationRecord) -> FixApplicationRecord:
        """Keep the applied change; retain the backup for undo if configured."""
        record.status = FixStatus.COMMITTED
        if record.backup_path is not None:
            self._update_manifest(record.backup_path, "committed")
            if not self.config.keep_backups:
                record.backup_path.unlink(missing_ok=True)
        return record

    def _locate(self, candidate: FixCandidate, lines: list[str]) -> int:
        line_no = locate_line(
            lines,
            candidate.line_number,
            candidate.current_content,
            window=self.config.fuzzy_window,
            threshold=self.config.fuzzy_threshold,
        )
        if line_no is None:
            raise StaleSnapshotError(
                f"line {candidate.line_number} no longer matches {candidate.current_content.strip()!r}"
            )
        return line_no

    def _resolve_file(self, file: Path) -> Path:
        """Resolve a possibly relative file path."""
        if file.is_absolute():
            return file
        return self.project_path / file

    def _create_backup(
        self, issue_id: str, candidate: FixCandidate, file_path: Path, line_no: int
    ) -> Path:
        """Copy the whole file into the run's backup directory and record it."""
        with self._manifest_lock:
            self._counter += 1
            entry_id = f"{self.run_id}/{issue_id or 'fix'}:{self._counter}"
            try:
                self.backup_dir.mkdir(parents=True, exist_ok=True)
                backup_file = self.backup_dir / f"{self._counter:03d}-{file_path.name}.bak"
                shutil.copy2(file_path, backup_file)

                manifest = self._read_manifest()
                manifest.append({
                    "entry_id": entry_id,
                    "issue_id": issue_id,
                    "file": str(file_path),
                    "backup": str(backup_file),
                    "line": line_no,
                    "description": candidate.description,
                    "origin": candidate.origin.value,
                    "status": "applied",
                    "timestamp": datetime.now().strftime("%Y-%m-%dT%H-%M-%S"),
                })
                self._write_manifest(manifest)
            except OSError as e:
                logger.error("Backup of %s failed: %s", file_path, e)
                raise FatalAttemptError("backup_failed", f"Could not back up {file_path}: {e}") from e
        return backup_file

    def _read_manifest(self) -> list[dict]:
        manifest_file = self.backup_dir / MANIFEST_NAME
        if manifest_file.exists():
            return json.loads(manifest_file.read_text())
        return []

    def _write_manifest(self, manifest: list[dict]) -> None:
        atomic_write(
            self.backup_dir / MANIFEST_NAME,
            json.dumps(manifest, indent=2).encode("utf-8"),
        )

    def _update_manifest(self, backup_path: Path, status: str) -> None:
        with self._manifest_lock:
            try:
                manifest = self._read_manifest()
                for entry in manifest:
                    if entry["backup"] == str(backup_path):
                        entry["status"] = status
                self._write_manifest(manifest)
            except (OSError, ValueError) as e:
                logger.warning("Could not update backup manifest: %s", e)
