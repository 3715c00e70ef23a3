"""Fix generation: heuristics first, then the generation service, biased by history."""

from __future__ import annotations

import dataclasses
import logging
from collections import defaultdict
from pathlib import Path

from pixelmend.core.config import FixConfig
from pixelmend.core.models import FixCandidate, FixOrigin, LocalizedIssue, Outcome
from pixelmend.fix.ai_fixer import GeneratedFixer
from pixelmend.fix.heuristics import HeuristicFixer
from pixelmend.fix.line_matcher import locate_line
from pixelmend.knowledge.store import KnowledgeStore, issue_signature, outcome_counts

logger = logging.getLogger(__name__)


def rank_candidates(candidates: list[FixCandidate], limit: int) -> list[FixCandidate]:
    """Collapse duplicates, sort by confidence then origin, and cap."""
    best: dict[tuple, FixCandidate] = {}
    for c in candidates:
        current = best.get(c.key)
        if current is None or (c.confidence, -c.origin.rank) > (current.confidence, -current.origin.rank):
            best[c.key] = c
    ranked = sorted(best.values(), key=lambda c: (-c.confidence, c.origin.rank))
    return ranked[:limit]


class FixGenerator:
    """Produces ranked fix candidates for a localized issue."""

    def __init__(
        self,
        heuristic: HeuristicFixer,
        knowledge: KnowledgeStore,
        generated: GeneratedFixer | None = None,
        config: FixConfig | None = None,
    ):
        self.heuristic = heuristic
        self.knowledge = knowledge
        self.generated = generated
        self.config = config or FixConfig()

    def signature(self, issue: LocalizedIssue, file_path: Path | str) -> str:
        return issue_signature(issue.classification, issue.primary_selector, file_path)

    def generate(self, issue: LocalizedIssue) -> list[FixCandidate]:
        candidates = self.heuristic.generate(issue)

        if self.generated is not None and not any(
            c.confidence >= self.config.generation_threshold for c in candidates
        ):
            candidates.extend(self.generated.generate(issue))

        candidates.extend(self._from_knowledge(issue))
        candidates = [self._biased(issue, c) for c in candidates]
        ranked = rank_candidates(candidates, self.config.max_candidates)
        logger.info("%s: %d candidate(s) after ranking", issue.issue_id, len(ranked))
        return ranked

    def _from_knowledge(self, issue: LocalizedIssue) -> list[FixCandidate]:
        """Re-propose fixes that previously succeeded for the same signature."""
        files = []
        for ref in issue.code_references:
            if ref.file_path not in files:
                files.append(ref.file_path)

        candidates = []
        for file_path in files:
            successes: dict[tuple, list] = defaultdict(list)
            for entry in self.knowledge.query_by_signature(self.signature(issue, file_path)):
                if entry.outcome != Outcome.SUCCESS or not entry.original_content:
                    continue
                if entry.file_path and Path(entry.file_path).name != Path(file_path).name:
                    continue
                key = (entry.line_number, entry.original_content, entry.suggested_content)
                successes[key].append(entry)
            if not successes:
                continue

            try:
                lines = Path(file_path).read_text(encoding="utf-8", errors="replace").splitlines()
            except OSError:
                continue

            for (line_number, original, suggested), entries in successes.items():
                line_no = locate_line(
                    lines,
                    line_number,
                    original,
                    window=self.config.fuzzy_window,
                    threshold=self.config.fuzzy_threshold,
                )
                if line_no is None:
                    continue
                candidates.append(
                    FixCandidate(
                        file_path=Path(file_path),
                        line_number=line_no,
                        current_content=lines[line_no - 1],
                        suggested_content=suggested,
                        confidence=min(0.9, 0.6 + 0.1 * len(entries)),
                        description=f"Re-apply known fix: {entries[-1].fix_description}",
                        origin=FixOrigin.KNOWLEDGE_BASE,
                    )
                )
        return candidates

    def _biased(self, issue: LocalizedIssue, candidate: FixCandidate) -> FixCandidate:
        entries = self.knowledge.query_by_signature(self.signature(issue, candidate.file_path))
        successes, failures = outcome_counts(entries)
        total = successes + failures
        if total == 0:
            return candidate
        factor = 1 + self.config.kb_weight * (successes - failures) / total
        confidence = min(1.0, max(0.0, candidate.confidence * factor))
        return dataclasses.replace(candidate, confidence=confidence)
