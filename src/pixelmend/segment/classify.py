"""Region classification from an external difference analysis."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path

from pixelmend.core.capabilities import GenerationCapability, call_with_timeout
from pixelmend.core.errors import CapabilityError
from pixelmend.core.models import (
    BoundingBox,
    ChangeType,
    Classification,
    ComparisonResult,
    DifferenceAnalysis,
    DiffRegion,
)

logger = logging.getLogger(__name__)

_DESCRIPTIONS = {
    Classification.COLOR: "Color change detected",
    Classification.LAYOUT: "Layout shift detected",
    Classification.TEXT: "Text content changed",
    Classification.MISSING_ELEMENT: "Element missing or added",
    Classification.UNKNOWN: "Visual difference detected",
}


def _shape_class(box: BoundingBox) -> tuple[Classification, str]:
    if box.width > box.height * 3:
        return Classification.TEXT, "Text content may be truncated or changed"
    if box.width < 10 or box.height < 10:
        return Classification.COLOR, "Color change detected in a small area"
    return Classification.LAYOUT, "Layout change or missing element detected"


def classify_regions(
    regions: list[tuple[BoundingBox, int]],
    analysis: DifferenceAnalysis | None,
) -> list[DiffRegion]:
    """Attach a classification and description to each segmented region."""
    if analysis is None or analysis.is_false_positive:
        return [
            DiffRegion(box=box, pixel_count=count, description=_DESCRIPTIONS[Classification.UNKNOWN])
            for box, count in regions
        ]

    suffix = ""
    if analysis.description:
        text = analysis.description
        suffix = f": {text[:100]}{'...' if len(text) > 100 else ''}"

    classified = []
    for box, count in regions:
        if analysis.change_type == ChangeType.MIXED:
            classification, description = _shape_class(box)
        else:
            classification = Classification(analysis.change_type.value)
            description = _DESCRIPTIONS[classification]
        classified.append(
            DiffRegion(
                box=box,
                classification=classification,
                description=description + suffix,
                pixel_count=count,
            )
        )
    return classified


_PROMPT = """You are reviewing a visual regression test. The images are, in order:
the baseline rendering, the current rendering, and a diff mask of changed pixels.

Surface: {name}
Changed pixels: {diff_percentage:.2f}% of the page

Classify the change. Respond with a single JSON object and nothing else:
{{"changeType": "COLOR|LAYOUT|TEXT|MISSING_ELEMENT|MIXED|UNKNOWN",
  "severity": "HIGH|MEDIUM|LOW",
  "description": "<one sentence>",
  "isFalsePositive": true|false}}
"""


class DifferenceClassifier:
    """Asks the generation capability to classify a comparison."""

    def __init__(self, generator: GenerationCapability, timeout: float = 120.0):
        self.generator = generator
        self.timeout = timeout

    def classify(self, result: ComparisonResult) -> DifferenceAnalysis | None:
        prompt = _PROMPT.format(name=result.name, diff_percentage=result.effective_diff_percentage)
        images = [
            p for p in (result.baseline_path, result.current_path, result.diff_path)
            if p is not None and Path(p).is_file()
        ]
        try:
            text = call_with_timeout(
                "generation", self.timeout, self.generator.generate, prompt, images
            )
        except CapabilityError as e:
            logger.warning("Classification of %s failed: %s", result.name, e)
            return None
        return parse_analysis(text)


def parse_analysis(text: str | None) -> DifferenceAnalysis | None:
    """Extract a DifferenceAnalysis from model output, or None if malformed."""
    if not text:
        return None
    match = re.search(r"\{.*\}", text, re.DOTALL)
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        logger.debug("Classification response is not valid JSON")
        return None
    if not isinstance(data, dict):
        return None
    return DifferenceAnalysis.from_dict(data)
