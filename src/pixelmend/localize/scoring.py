"""Overlap and confidence scoring for localized issues."""

from __future__ import annotations

from pixelmend.core.models import BoundingBox, Classification, FileType

MODIFIED_BOOST = 1.5

_AFFINITY = {
    (Classification.COLOR, FileType.STYLESHEET): 1.5,
    (Classification.LAYOUT, FileType.STYLESHEET): 1.4,
    (Classification.TEXT, FileType.MARKUP): 1.4,
    (Classification.TEXT, FileType.SCRIPT): 1.4,
    (Classification.MISSING_ELEMENT, FileType.MARKUP): 1.3,
    (Classification.MISSING_ELEMENT, FileType.SCRIPT): 1.3,
}

_FALLBACK_AFFINITY = {
    FileType.STYLESHEET: 1.2,
    FileType.MARKUP: 1.1,
}


def overlap_ratio(region: BoundingBox, element: BoundingBox) -> float:
    """Intersection over the smaller of the two areas; 0 when either is empty."""
    smaller = min(region.area, element.area)
    if smaller <= 0:
        return 0.0
    return region.intersection_area(element) / smaller


def file_affinity(classification: Classification, file_type: FileType) -> float:
    """How likely a file of *file_type* is to cause a *classification* change."""
    if (classification, file_type) in _AFFINITY:
        return _AFFINITY[(classification, file_type)]
    return _FALLBACK_AFFINITY.get(file_type, 1.0)


def score_confidence(
    overlap: float,
    file_type: FileType,
    modified: bool,
    classification: Classification,
) -> float:
    """Confidence that a code reference is responsible for a region.

    ``0.5 * (0.5 + 0.5 * overlap) * affinity``, boosted 1.5x for files
    modified since the last commit, clamped to [0, 1].
    """
    overlap = min(1.0, max(0.0, overlap))
    score = 0.5 * (0.5 + 0.5 * overlap) * file_affinity(classification, file_type)
    if modified:
        score *= MODIFIED_BOOST
    return min(1.0, max(0.0, score))


def similarity(a: list[str], b: list[str]) -> float:
    """Shared items over the longer list."""
    longest = max(len(a), len(b))
    if longest == 0:
        return 0.0
    return len(set(a) & set(b)) / longest
