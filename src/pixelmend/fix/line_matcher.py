"""Locating a candidate's target line in the file as it is now."""

from __future__ import annotations

import difflib


def _squash(text: str) -> str:
    return "".join(text.split())


def _window(line_number: int, total: int, radius: int) -> list[int]:
    """1-based line numbers within *radius* of *line_number*, nearest first."""
    order = [line_number]
    for d in range(1, radius + 1):
        order.extend((line_number - d, line_number + d))
    return [n for n in order if 1 <= n <= total]


def locate_line(
    lines: list[str],
    line_number: int,
    expected: str,
    window: int = 3,
    threshold: float = 0.8,
) -> int | None:
    """Find where *expected* now lives near *line_number*.

    Tries an exact match (line terminators ignored), then a whitespace
    insensitive match, then the best fuzzy match with a
    ``SequenceMatcher`` ratio of at least *threshold*.  Returns the 1-based
    line number, or None when the snapshot is stale.
    """
    if not lines:
        return None
    target = expected.rstrip("\r\n")
    candidates = _window(line_number, len(lines), window)

    for n in candidates:
        if lines[n - 1].rstrip("\r\n") == target:
            return n

    squashed = _squash(target)
    for n in candidates:
        if _squash(lines[n - 1]) == squashed:
            return n

    best_n, best_ratio = None, 0.0
    for n in candidates:
        ratio = difflib.SequenceMatcher(None, lines[n - 1].strip(), target.strip()).ratio()
        if ratio > best_ratio:
            best_n, best_ratio = n, ratio
    if best_n is not None and best_ratio >= threshold:
        return best_n
    return None
