"""The self-healing loop: apply, verify, then commit or revert, one candidate at a time."""

from __future__ import annotations

import concurrent.futures
import logging
import re
import threading
from pathlib import Path

from pixelmend.core.config import HealConfig
from pixelmend.core.errors import FatalAttemptError
from pixelmend.core.models import (
    AttemptRecord,
    FixCandidate,
    FixStatus,
    IssueResolution,
    IssueStatus,
    KnowledgeBaseEntry,
    LocalizedIssue,
    Outcome,
    VerificationResult,
)
from pixelmend.fix.applier import FixApplier
from pixelmend.fix.generator import FixGenerator
from pixelmend.fix.locks import FileLockRegistry, LockRegistry
from pixelmend.fix.verifier import FixVerifier
from pixelmend.knowledge.store import KnowledgeStore

logger = logging.getLogger(__name__)

REASON_NO_FIXES = "no_fixes_generated"
REASON_EXHAUSTED = "all_fixes_exhausted"
REASON_CANCELLED = "cancelled"
REASON_ALREADY_CLEAN = "surface_already_clean"


def _safe_name(issue_id: str) -> str:
    return re.sub(r"[^\w.-]+", "_", issue_id)


class SelfHealingController:
    """Drives candidates for each issue through the apply/verify/commit-or-revert cycle."""

    def __init__(
        self,
        generator: FixGenerator,
        applier: FixApplier,
        verifier: FixVerifier,
        knowledge: KnowledgeStore,
        run_dir: Path,
        config: HealConfig | None = None,
        file_locks: FileLockRegistry | None = None,
        surface_locks: LockRegistry | None = None,
    ):
        self.generator = generator
        self.applier = applier
        self.verifier = verifier
        self.knowledge = knowledge
        self.run_dir = run_dir
        self.config = config or HealConfig()
        self.file_locks = file_locks or FileLockRegistry()
        self.surface_locks = surface_locks or LockRegistry()
        self._cancel = threading.Event()
        self._failed: dict[str, set] = {}
        self._surface_diff: dict[str, float] = {}
        self._state_lock = threading.Lock()

    def cancel(self) -> None:
        """Stop starting new attempts; in-flight attempts finish verify-or-revert."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def run(self, issues: list[LocalizedIssue]) -> list[IssueResolution]:
        """Resolve *issues*, returning resolutions in the same order."""
        if self.config.max_workers <= 1 or len(issues) <= 1:
            try:
                return [self.resolve(issue) for issue in issues]
            except BaseException:
                self.cancel()
                raise

        with concurrent.futures.ThreadPoolExecutor(
            max_workers=self.config.max_workers, thread_name_prefix="pixelmend-heal"
        ) as pool:
            futures = [pool.submit(self.resolve, issue) for issue in issues]
            try:
                return [f.result() for f in futures]
            except BaseException:
                # Queued issues see the flag and return CANCELLED; running
                # attempts still finish verify-or-revert before shutdown.
                self.cancel()
                raise

    def resolve(self, issue: LocalizedIssue) -> IssueResolution:
        resolution = IssueResolution(issue=issue, status=IssueStatus.FAILED)
        if self.cancelled:
            resolution.status, resolution.reason = IssueStatus.CANCELLED, REASON_CANCELLED
            return resolution
        if self._surface_clean(issue):
            return self._skip_clean(resolution)

        candidates = self.generator.generate(issue)
        if not candidates:
            logger.info("%s: no fix candidates", issue.issue_id)
            resolution.reason = REASON_NO_FIXES
            return resolution

        with self._state_lock:
            failed = self._failed.setdefault(issue.issue_id, set())

        for n, candidate in enumerate(candidates, 1):
            if self.cancelled:
                resolution.status, resolution.reason = IssueStatus.CANCELLED, REASON_CANCELLED
                return resolution
            if candidate.key in failed:
                continue
            if self._surface_clean(issue):
                return self._skip_clean(resolution)

            try:
                attempt = self._attempt(issue, candidate, n)
            except FatalAttemptError as e:
                logger.error("%s: aborted (%s)", issue.issue_id, e)
                resolution.status, resolution.reason = IssueStatus.ABORTED, e.reason
                return resolution

            resolution.attempts.append(attempt)
            if attempt.record.status == FixStatus.COMMITTED:
                resolution.status, resolution.reason = IssueStatus.FIXED, ""
                logger.info("%s: fixed by %s", issue.issue_id, candidate.description)
                return resolution
            failed.add(candidate.key)

        resolution.reason = REASON_EXHAUSTED
        logger.info("%s: all %d candidate(s) failed", issue.issue_id, len(candidates))
        return resolution

    def _attempt(self, issue: LocalizedIssue, candidate: FixCandidate, n: int) -> AttemptRecord:
        timeout = self.config.lock_timeout
        with self.file_locks.hold(candidate.file_path, timeout), \
                self.surface_locks.hold(issue.surface, timeout):
            record = self.applier.apply(candidate, issue.issue_id)
            if record.status == FixStatus.APPLY_FAILED:
                logger.info("%s: candidate %d not applied: %s", issue.issue_id, n, record.message)
                return AttemptRecord(record=record)

            try:
                verification = self.verifier.verify(
                    issue,
                    record,
                    self.run_dir / _safe_name(issue.issue_id) / f"attempt-{n}",
                    before=self._current_diff(issue),
                )
            except BaseException:
                self.applier.revert(record)
                raise

            entry = self._entry(issue, candidate, verification)
            if verification.accepted:
                try:
                    self.knowledge.append(entry)
                except FatalAttemptError:
                    self.applier.revert(record)
                    raise
                self.applier.commit(record)
                with self._state_lock:
                    self._surface_diff[issue.surface] = verification.diff_percentage_after
            else:
                self.applier.revert(record)
                if verification.transient:
                    logger.info(
                        "%s: candidate %d not judged: %s", issue.issue_id, n, verification.reason
                    )
                else:
                    self.knowledge.append(entry)

        return AttemptRecord(record=record, verification=verification)

    def _current_diff(self, issue: LocalizedIssue) -> float:
        with self._state_lock:
            return self._surface_diff.get(
                issue.surface, issue.comparison.effective_diff_percentage
            )

    def _surface_clean(self, issue: LocalizedIssue) -> bool:
        return self._current_diff(issue) < self.verifier.config.pass_threshold

    @staticmethod
    def _skip_clean(resolution: IssueResolution) -> IssueResolution:
        logger.info("%s: surface already below threshold", resolution.issue.issue_id)
        resolution.status, resolution.reason = IssueStatus.SKIPPED, REASON_ALREADY_CLEAN
        return resolution

    def _entry(
        self, issue: LocalizedIssue, candidate: FixCandidate, verification: VerificationResult
    ) -> KnowledgeBaseEntry:
        return KnowledgeBaseEntry(
            issue_signature=self.generator.signature(issue, candidate.file_path),
            fix_description=candidate.description,
            outcome=Outcome.SUCCESS if verification.accepted else Outcome.FAILURE,
            diff_percentage_after=verification.diff_percentage_after,
            file_path=str(candidate.file_path),
            line_number=candidate.line_number,
            original_content=candidate.current_content,
            suggested_content=candidate.suggested_content,
        )
