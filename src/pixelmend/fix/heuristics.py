"""Deterministic fix candidates: revert recent edits near the suspect lines."""

from __future__ import annotations

import difflib
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from pixelmend.core.models import (
    Classification,
    CodeReference,
    FileType,
    FixCandidate,
    FixOrigin,
    LocalizedIssue,
)
from pixelmend.index.changes import ChangeDetector

logger = logging.getLogger(__name__)

COLOR_PROPERTIES = {
    "color", "background", "background-color", "background-image", "border-color",
    "outline-color", "fill", "stroke", "box-shadow", "text-shadow", "opacity",
    "caret-color", "text-decoration-color",
}
LAYOUT_PREFIXES = (
    "margin", "padding", "width", "height", "min-", "max-", "display", "position",
    "top", "left", "right", "bottom", "flex", "grid", "gap", "align-", "justify-",
    "float", "clear", "overflow", "z-index", "transform", "box-sizing", "line-height",
    "font-size", "border-width", "inset", "order", "visibility",
)

PROPERTY_CONFIDENCE = {
    Classification.COLOR: 0.85,
    Classification.LAYOUT: 0.80,
}
DEFAULT_PROPERTY_CONFIDENCE = 0.75
LINE_REVERT_CONFIDENCE = 0.75

_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)


def is_color_property(prop: str) -> bool:
    return prop in COLOR_PROPERTIES or prop.endswith("-color")


def is_layout_property(prop: str) -> bool:
    return prop.startswith(LAYOUT_PREFIXES)


# ---------------------------------------------------------------------------
# Minimal CSS rule parser
# ---------------------------------------------------------------------------


@dataclass
class CssDeclaration:
    prop: str
    value: str
    line: int


@dataclass
class CssRule:
    selector: str
    start_line: int
    end_line: int = 0
    declarations: list[CssDeclaration] = field(default_factory=list)

    def get(self, prop: str) -> CssDeclaration | None:
        for decl in reversed(self.declarations):
            if decl.prop == prop:
                return decl
        return None


def _normalize_selector(selector: str) -> str:
    return " ".join(selector.split())


def parse_rules(text: str) -> list[CssRule]:
    """Parse rule blocks (nested blocks included) with declaration line numbers."""
    text = _COMMENT.sub(lambda m: re.sub(r"[^\n]", " ", m.group(0)), text)
    rules: list[CssRule] = []
    stack: list[CssRule] = []
    buf: list[str] = []
    buf_line = 1
    line = 1

    def flush_declaration():
        raw = "".join(buf).strip()
        if stack and ":" in raw:
            prop, value = raw.split(":", 1)
            stack[-1].declarations.append(
                CssDeclaration(prop.strip().lower(), value.strip(), buf_line)
            )

    for ch in text:
        if ch == "{":
            stack.append(CssRule(_normalize_selector("".join(buf)), buf_line))
            buf = []
        elif ch == ";":
            flush_declaration()
            buf = []
        elif ch == "}":
            flush_declaration()
            buf = []
            if stack:
                rule = stack.pop()
                rule.end_line = line
                rules.append(rule)
        elif buf or not ch.isspace():
            if not buf:
                buf_line = line
            buf.append(ch)
        if ch == "\n":
            line += 1
    return rules


def rule_at_line(rules: list[CssRule], line: int) -> CssRule | None:
    """Innermost rule whose span contains *line*."""
    containing = [r for r in rules if r.start_line <= line <= r.end_line]
    if not containing:
        return None
    return min(containing, key=lambda r: r.end_line - r.start_line)


def _replace_value(line_text: str, prop: str, old: str, new: str) -> str | None:
    pattern = re.compile(
        r"(?P<head>(?<![\w-])" + re.escape(prop) + r"\s*:\s*)" + re.escape(old), re.IGNORECASE
    )
    match = pattern.search(line_text)
    if not match:
        return None
    return line_text[: match.start()] + match.group("head") + new + line_text[match.end():]


class HeuristicFixer:
    """Proposes reverts of lines changed since the last commit."""

    def __init__(self, change_detector: ChangeDetector, max_references: int = 3, window: int = 5):
        self.change_detector = change_detector
        self.max_references = max_references
        self.window = window

    def generate(self, issue: LocalizedIssue) -> list[FixCandidate]:
        candidates: list[FixCandidate] = []
        seen: set = set()
        for ref in issue.code_references[: self.max_references]:
            path = Path(ref.file_path)
            baseline = self.change_detector.baseline_content(path)
            if baseline is None:
                continue
            try:
                current = path.read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                logger.debug("Cannot read %s: %s", path, e)
                continue
            if current == baseline:
                continue

            file_type = FileType.from_path(path)
            if file_type == FileType.STYLESHEET:
                found = self._property_reverts(issue, ref, current, baseline)
            elif file_type in (FileType.MARKUP, FileType.SCRIPT):
                found = self._line_reverts(ref, current, baseline)
            else:
                found = []

            for candidate in found:
                if candidate.key not in seen:
                    seen.add(candidate.key)
                    candidates.append(candidate)

        if candidates:
            logger.info("%s: %d heuristic candidate(s)", issue.issue_id, len(candidates))
        return candidates

    def _wants(self, classification: Classification, prop: str) -> bool:
        if classification == Classification.COLOR:
            return is_color_property(prop)
        if classification == Classification.LAYOUT:
            return is_layout_property(prop)
        return True

    def _property_reverts(
        self, issue: LocalizedIssue, ref: CodeReference, current: str, baseline: str
    ) -> list[FixCandidate]:
        rules = parse_rules(current)
        rule = rule_at_line(rules, ref.line_number)
        if rule is None:
            return []
        baseline_rules = [
            r for r in parse_rules(baseline) if r.selector == rule.selector
        ]
        if not baseline_rules:
            return []
        base_rule = baseline_rules[-1]
        confidence = PROPERTY_CONFIDENCE.get(issue.classification, DEFAULT_PROPERTY_CONFIDENCE)
        lines = current.splitlines()

        candidates = []
        for decl in rule.declarations:
            if not self._wants(issue.classification, decl.prop):
                continue
            old = base_rule.get(decl.prop)
            if old is None or old.value == decl.value:
                continue
            line_text = lines[decl.line - 1] if decl.line <= len(lines) else ""
            suggested = _replace_value(line_text, decl.prop, decl.value, old.value)
            if suggested is None:
                continue
            candidates.append(
                FixCandidate(
                    file_path=Path(ref.file_path),
                    line_number=decl.line,
                    current_content=line_text,
                    suggested_content=suggested,
                    confidence=confidence,
                    description=(
                        f"Revert {decl.prop} in {rule.selector} from {decl.value} to {old.value}"
                    ),
                    origin=FixOrigin.HEURISTIC,
                )
            )
        return candidates

    def _line_reverts(self, ref: CodeReference, current: str, baseline: str) -> list[FixCandidate]:
        cur_lines = current.splitlines()
        base_lines = baseline.splitlines()
        low = ref.line_number - self.window
        high = ref.line_number + self.window

        candidates = []
        matcher = difflib.SequenceMatcher(None, base_lines, cur_lines, autojunk=False)
        for tag, i1, i2, j1, j2 in matcher.get_opcodes():
            if tag != "replace" or (i2 - i1) != (j2 - j1):
                continue
            for offset in range(j2 - j1):
                line_no = j1 + offset + 1
                if not low <= line_no <= high:
                    continue
                candidates.append(
                    FixCandidate(
                        file_path=Path(ref.file_path),
                        line_number=line_no,
                        current_content=cur_lines[j1 + offset],
                        suggested_content=base_lines[i1 + offset],
                        confidence=LINE_REVERT_CONFIDENCE,
                        description=f"Revert line {line_no} of {Path(ref.file_path).name} "
                        "to its committed version",
                        origin=FixOrigin.HEURISTIC,
                    )
                )
        return candidates
