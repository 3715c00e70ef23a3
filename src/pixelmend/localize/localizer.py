"""Issue localization: diff regions -> affected elements -> ranked code references."""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Mapping

from pixelmend.core.config import LocalizeConfig
from pixelmend.core.errors import LocalizationError
from pixelmend.core.models import (
    AffectedElement,
    CodeReference,
    ComparisonResult,
    DiffRegion,
    FileType,
    LocalizedIssue,
    UIElement,
)
from pixelmend.index.mapper import elements_in_box
from pixelmend.index.source_index import SourceIndex
from pixelmend.localize.scoring import overlap_ratio, score_confidence, similarity
from pixelmend.segment.classify import DifferenceClassifier, classify_regions
from pixelmend.segment.segmenter import RegionSegmenter

logger = logging.getLogger(__name__)

REASON_NO_REGRESSION = "no_regression"
REASON_FALSE_POSITIVE = "false_positive"
REASON_LOCALIZATION_FAILED = "localization_failed"
REASON_NO_REGIONS = "no_regions"


@dataclass
class SurfaceLocalization:
    """What happened to one comparison result during localization."""

    name: str
    diff_percentage: float
    regression_detected: bool
    localized: bool = False
    reason: str = ""
    issues: list[LocalizedIssue] = field(default_factory=list)


@dataclass
class LocalizationRun:
    issues: list[LocalizedIssue] = field(default_factory=list)
    surfaces: list[SurfaceLocalization] = field(default_factory=list)


def _is_similar(a: LocalizedIssue, b: LocalizedIssue, threshold: float) -> bool:
    if a.classification != b.classification:
        return False
    if similarity(a.selectors, b.selectors) >= threshold:
        return True
    locations_a = [r.location for r in a.code_references]
    locations_b = [r.location for r in b.code_references]
    return similarity(locations_a, locations_b) >= threshold


def deduplicate_issues(
    issues: list[LocalizedIssue],
    threshold: float = 0.70,
    max_per_type: int = 3,
) -> list[LocalizedIssue]:
    """Collapse near-duplicate issues and cap how many of each type survive.

    Groups keep first-seen order; within a group issues are ranked by
    confidence, then severity.  Running the result through again returns it
    unchanged.
    """
    groups: OrderedDict = OrderedDict()
    for issue in issues:
        groups.setdefault(issue.classification, []).append(issue)

    kept: list[LocalizedIssue] = []
    for group in groups.values():
        ranked = sorted(group, key=lambda i: (-i.confidence, -i.severity.rank))
        chosen: list[LocalizedIssue] = []
        for issue in ranked:
            if len(chosen) >= max_per_type:
                break
            if any(_is_similar(issue, other, threshold) for other in chosen):
                logger.debug("Dropping %s as a duplicate", issue.issue_id)
                continue
            chosen.append(issue)
        kept.extend(chosen)
    return kept


class IssueLocalizer:
    """Builds :class:`LocalizedIssue` objects from comparison results."""

    def __init__(
        self,
        index: SourceIndex,
        elements: Mapping[str, list[UIElement]],
        segmenter: RegionSegmenter | None = None,
        config: LocalizeConfig | None = None,
        classifier: DifferenceClassifier | None = None,
    ):
        self.index = index
        self.elements = elements
        self.segmenter = segmenter or RegionSegmenter()
        self.config = config or LocalizeConfig()
        self.classifier = classifier

    def localize(self, results: list[ComparisonResult]) -> LocalizationRun:
        run = LocalizationRun()
        for result in results:
            surface = self.localize_result(result)
            run.surfaces.append(surface)
            run.issues.extend(surface.issues)
        logger.info(
            "Localized %d issue(s) across %d surface(s)", len(run.issues), len(run.surfaces)
        )
        return run

    def localize_result(self, result: ComparisonResult) -> SurfaceLocalization:
        diff = result.effective_diff_percentage
        surface = SurfaceLocalization(
            name=result.name,
            diff_percentage=diff,
            regression_detected=result.has_differences and diff > 0,
        )
        if not surface.regression_detected:
            surface.reason = REASON_NO_REGRESSION
            return surface

        analysis = result.analysis
        if analysis is None and self.classifier is not None:
            analysis = self.classifier.classify(result)
        if analysis is not None and analysis.is_false_positive:
            logger.info("%s: difference marked as a false positive", result.name)
            surface.reason = REASON_FALSE_POSITIVE
            return surface

        try:
            boxes = self.segmenter.segment_comparison(result)
        except LocalizationError as e:
            logger.error("%s: %s", result.name, e)
            surface.reason = REASON_LOCALIZATION_FAILED
            return surface

        if not boxes:
            logger.warning("%s: reported differences but the diff mask is empty", result.name)
            surface.reason = REASON_NO_REGIONS
            return surface

        regions = classify_regions(boxes, analysis)
        elements = self.elements.get(result.name, [])
        issues = [
            self._build_issue(result, n, region, elements, analysis)
            for n, region in enumerate(regions, 1)
        ]
        surface.issues = deduplicate_issues(
            issues,
            threshold=self.config.similarity_threshold,
            max_per_type=self.config.max_issues_per_type,
        )
        surface.localized = True
        return surface

    def _build_issue(self, result, n, region: DiffRegion, elements, analysis) -> LocalizedIssue:
        affected: list[AffectedElement] = []
        for element in elements_in_box(elements, region.box):
            overlap = overlap_ratio(region.box, element.bounding_box)
            if overlap >= self.config.min_overlap:
                affected.append(AffectedElement(element=element, overlap_percentage=overlap))

        best: dict[str, CodeReference] = {}
        for item in affected:
            for ref in item.element.code_references:
                confidence = score_confidence(
                    item.overlap_percentage,
                    FileType.from_path(ref.file_path),
                    self.index.is_modified(ref.file_path),
                    region.classification,
                )
                current = best.get(ref.location)
                if current is None or confidence > current.confidence:
                    best[ref.location] = CodeReference(
                        file_path=ref.file_path,
                        line_number=ref.line_number,
                        context_snippet=ref.context_snippet,
                        confidence=confidence,
                    )

        refs = sorted(
            best.values(),
            key=lambda r: (-r.confidence, str(r.file_path), r.line_number),
        )
        description = region.description
        if affected:
            description += f" affecting {len(affected)} element(s)"

        return LocalizedIssue(
            issue_id=f"{result.name}#{n}",
            comparison=result,
            region=region,
            classification=region.classification,
            affected_elements=affected,
            code_references=refs,
            description=description,
            analysis=analysis,
        )
