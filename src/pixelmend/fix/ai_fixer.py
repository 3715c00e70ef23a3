"""Generated fix candidates from the text/vision generation capability."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any

from pixelmend.core.capabilities import GenerationCapability, call_with_timeout
from pixelmend.core.errors import CapabilityError
from pixelmend.core.models import FixCandidate, FixOrigin, LocalizedIssue

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5


class GeneratedFixer:
    """Asks a generation capability for single-line fixes."""

    def __init__(
        self,
        generator: GenerationCapability,
        project_path: Path | None = None,
        context_lines: int = 5,
        timeout: float = 120.0,
        max_references: int = 3,
    ):
        self.generator = generator
        self.project_path = (project_path or Path.cwd()).resolve()
        self.context_lines = context_lines
        self.timeout = timeout
        self.max_references = max_references

    def generate(self, issue: LocalizedIssue) -> list[FixCandidate]:
        refs = issue.code_references[: self.max_references]
        if not refs:
            return []

        files = {self._display(Path(r.file_path)): Path(r.file_path) for r in refs}
        prompt = self._build_prompt(issue, refs)
        images = [
            p for p in (
                issue.comparison.baseline_path,
                issue.comparison.current_path,
                issue.comparison.diff_path,
            )
            if p is not None and Path(p).is_file()
        ]

        try:
            text = call_with_timeout("generation", self.timeout, self.generator.generate, prompt, images)
        except CapabilityError as e:
            logger.warning("%s: fix generation failed: %s", issue.issue_id, e)
            return []

        candidates = self._parse_response(text, files)
        logger.info("%s: %d generated candidate(s)", issue.issue_id, len(candidates))
        return candidates

    def _display(self, path: Path) -> str:
        try:
            return path.resolve().relative_to(self.project_path).as_posix()
        except ValueError:
            return str(path)

    def _context(self, path: Path, line_number: int) -> str:
        try:
            lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
        except OSError:
            return "(file unreadable)"
        start = max(1, line_number - self.context_lines)
        end = min(len(lines), line_number + self.context_lines)
        return "\n".join(f"{n:5d}: {lines[n - 1]}" for n in range(start, end + 1))

    def _build_prompt(self, issue: LocalizedIssue, refs) -> str:
        selectors = ", ".join(issue.selectors) or "(none)"
        sections = []
        for ref in refs:
            path = Path(ref.file_path)
            sections.append(
                f"FILE: {self._display(path)} (line {ref.line_number}, "
                f"confidence {ref.confidence:.2f})\n{self._context(path, ref.line_number)}"
            )
        code = "\n\n".join(sections)
        return f"""A visual regression was detected in a web page.

ISSUE:
  Surface: {issue.surface}
  Type: {issue.classification.value}
  Description: {issue.description}
  Changed pixels: {issue.comparison.effective_diff_percentage:.2f}%
  Affected selectors: {selectors}

SOURCE CODE:
{code}

Propose single-line fixes that restore the baseline appearance. Only edit the
files shown above. Respond with a JSON array and nothing else:
[{{"filePath": "<path as shown>", "lineNumber": <int>,
   "currentContent": "<exact current line>", "suggestedFix": "<replacement line>",
   "description": "<what the change does>", "confidence": <0.0-1.0>}}]
"""

    def _parse_response(self, text: str | None, files: dict[str, Path]) -> list[FixCandidate]:
        if not text:
            return []
        match = re.search(r"\[.*\]", text, re.DOTALL)
        if not match:
            logger.debug("Generation response holds no JSON array")
            return []
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError:
            logger.debug("Generation response is not valid JSON")
            return []
        if not isinstance(data, list):
            return []

        by_absolute = {str(p.resolve()): p for p in files.values()}
        candidates = []
        for item in data:
            candidate = self._to_candidate(item, files, by_absolute)
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    def _to_candidate(
        self, item: Any, files: dict[str, Path], by_absolute: dict[str, Path]
    ) -> FixCandidate | None:
        if not isinstance(item, dict):
            return None
        raw_path = str(item.get("filePath") or "")
        path = files.get(raw_path) or by_absolute.get(raw_path)
        if path is None:
            logger.debug("Dropping generated fix for unknown file %r", raw_path)
            return None

        suggested = item.get("suggestedFix")
        current = item.get("currentContent")
        if not isinstance(suggested, str) or not isinstance(current, str):
            return None
        try:
            line_number = int(item.get("lineNumber"))
        except (TypeError, ValueError):
            return None
        if line_number < 1:
            return None
        try:
            confidence = float(item.get("confidence", DEFAULT_CONFIDENCE))
        except (TypeError, ValueError):
            confidence = DEFAULT_CONFIDENCE

        return FixCandidate(
            file_path=path,
            line_number=line_number,
            current_content=current,
            suggested_content=suggested,
            confidence=min(1.0, max(0.0, confidence)),
            description=str(item.get("description") or "Generated fix"),
            origin=FixOrigin.GENERATED,
        )
