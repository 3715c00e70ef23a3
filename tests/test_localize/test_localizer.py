"""Tests for issue localization and deduplication."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from pixelmend.core.models import (
    AffectedElement,
    BoundingBox,
    ChangeType,
    Classification,
    CodeReference,
    ComparisonResult,
    DifferenceAnalysis,
    DiffRegion,
    LocalizedIssue,
    Severity,
    UIElement,
)
from pixelmend.index.mapper import UICodeMapper
from pixelmend.index.source_index import SourceIndexer
from pixelmend.localize.localizer import (
    REASON_FALSE_POSITIVE,
    REASON_LOCALIZATION_FAILED,
    REASON_NO_REGIONS,
    REASON_NO_REGRESSION,
    IssueLocalizer,
    deduplicate_issues,
)

ELEMENTS = [
    {"selector": ".header", "className": "header", "tagName": "DIV",
     "boundingBox": {"x": 40, "y": 40, "width": 20, "height": 20}},
    {"selector": ".footer", "className": "footer", "tagName": "DIV",
     "boundingBox": {"x": 0, "y": 900, "width": 1000, "height": 100}},
    {"selector": ".badge", "className": "badge", "tagName": "SPAN",
     "boundingBox": {"x": 55, "y": 55, "width": 100, "height": 100}},
]


def _write_mask(path: Path, size: tuple[int, int], *boxes: tuple[int, int, int, int]) -> Path:
    data = np.zeros((size[1], size[0]), dtype=np.uint8)
    for x, y, w, h in boxes:
        data[y:y + h, x:x + w] = 255
    Image.fromarray(data).save(path)
    return path


def _result(name: str, diff: float, diff_path: Path | None, **overrides) -> ComparisonResult:
    fields = dict(
        name=name,
        baseline_path=Path(f"{name}-baseline.png"),
        current_path=Path(f"{name}-current.png"),
        diff_path=diff_path,
        width=1000,
        height=1000,
        diff_pixel_count=int(diff * 10000),
        total_pixels=1_000_000,
        diff_percentage=diff,
        has_differences=diff > 0,
    )
    fields.update(overrides)
    return ComparisonResult(**fields)


@pytest.fixture
def site(tmp_path: Path) -> Path:
    root = tmp_path / "public"
    root.mkdir()
    (root / "site.css").write_text(
        ".header {\n  color: #f00;\n}\n.footer {\n  color: #000;\n}\n.badge {\n  color: #0a0;\n}\n"
    )
    (root / "index.html").write_text(
        '<div class="header">Title</div>\n'
        '<span class="badge">1</span>\n'
        '<div class="footer">Bye</div>\n'
    )
    return root


@pytest.fixture
def localizer_for(site: Path):
    def build(modified=(), classifier=None):
        index = SourceIndexer(site).build()
        index.mark_modified(modified)
        elements = UICodeMapper(index).map_elements(ELEMENTS)
        return IssueLocalizer(
            index,
            {"home": elements, "about": elements},
            classifier=classifier,
        )
    return build


class StubClassifier:
    def __init__(self, analysis):
        self.analysis = analysis
        self.calls = 0

    def classify(self, result):
        self.calls += 1
        return self.analysis


class TestIssueLocalizer:
    def test_only_regressed_surface_localized(self, localizer_for, tmp_path: Path):
        """A 0% surface is skipped; a 4% surface yields one issue."""
        mask = _write_mask(tmp_path / "about-diff.png", (1000, 1000), (40, 40, 20, 20))
        run = localizer_for().localize([
            _result("home", 0.0, None),
            _result("about", 4.0, mask),
        ])

        home, about = run.surfaces
        assert home.localized is False
        assert home.reason == REASON_NO_REGRESSION
        assert about.localized is True
        assert [i.issue_id for i in run.issues] == ["about#1"]
        assert run.issues[0].region.box == BoundingBox(40, 40, 20, 20)

    def test_zero_and_low_overlap_elements_excluded(self, localizer_for, tmp_path: Path):
        mask = _write_mask(tmp_path / "diff.png", (1000, 1000), (40, 40, 20, 20))
        issue = localizer_for().localize([_result("about", 4.0, mask)]).issues[0]

        assert issue.selectors == [".header"]
        assert issue.affected_elements[0].overlap_percentage == 1.0

    def test_code_references_ranked(self, localizer_for, site: Path, tmp_path: Path):
        """Stylesheets outrank markup for an unclassified region."""
        mask = _write_mask(tmp_path / "diff.png", (1000, 1000), (40, 40, 20, 20))
        issue = localizer_for().localize([_result("about", 4.0, mask)]).issues[0]

        css = (site / "site.css").resolve()
        html = (site / "index.html").resolve()
        assert [r.location for r in issue.code_references] == [f"{css}:1", f"{html}:1"]
        assert issue.code_references[0].confidence == pytest.approx(0.6)
        assert issue.code_references[1].confidence == pytest.approx(0.55)
        assert issue.confidence == pytest.approx(0.6)

    def test_modified_file_boost(self, localizer_for, site: Path, tmp_path: Path):
        mask = _write_mask(tmp_path / "diff.png", (1000, 1000), (40, 40, 20, 20))
        localizer = localizer_for(modified=[site / "index.html"])
        issue = localizer.localize([_result("about", 4.0, mask)]).issues[0]

        assert issue.primary_reference.file_path.name == "index.html"
        assert issue.primary_reference.confidence == pytest.approx(0.825)

    def test_false_positive_skipped(self, localizer_for, tmp_path: Path):
        mask = _write_mask(tmp_path / "diff.png", (1000, 1000), (40, 40, 20, 20))
        result = _result(
            "about", 4.0, mask, analysis=DifferenceAnalysis(is_false_positive=True)
        )
        surface = localizer_for().localize_result(result)

        assert surface.localized is False
        assert surface.reason == REASON_FALSE_POSITIVE
        assert surface.issues == []

    def test_missing_diff_image(self, localizer_for, tmp_path: Path):
        surface = localizer_for().localize_result(_result("about", 4.0, tmp_path / "gone.png"))

        assert surface.localized is False
        assert surface.reason == REASON_LOCALIZATION_FAILED

    def test_empty_mask(self, localizer_for, tmp_path: Path):
        mask = _write_mask(tmp_path / "diff.png", (1000, 1000))
        surface = localizer_for().localize_result(_result("about", 4.0, mask))

        assert surface.reason == REASON_NO_REGIONS

    def test_region_without_elements_still_reported(self, localizer_for, tmp_path: Path):
        mask = _write_mask(tmp_path / "diff.png", (1000, 1000), (500, 300, 10, 10))
        issue = localizer_for().localize([_result("about", 4.0, mask)]).issues[0]

        assert issue.affected_elements == []
        assert issue.code_references == []
        assert issue.confidence == 0.0

    def test_classifier_used_without_analysis(self, localizer_for, tmp_path: Path):
        mask = _write_mask(tmp_path / "diff.png", (1000, 1000), (40, 40, 20, 20))
        classifier = StubClassifier(DifferenceAnalysis(change_type=ChangeType.COLOR))
        issue = localizer_for(classifier=classifier).localize([_result("about", 4.0, mask)]).issues[0]

        assert classifier.calls == 1
        assert issue.classification == Classification.COLOR
        # Colour changes favour stylesheets even more.
        assert issue.code_references[0].confidence == pytest.approx(0.75)

    def test_supplied_analysis_wins(self, localizer_for, tmp_path: Path):
        mask = _write_mask(tmp_path / "diff.png", (1000, 1000), (40, 40, 20, 20))
        classifier = StubClassifier(DifferenceAnalysis(change_type=ChangeType.COLOR))
        result = _result(
            "about", 4.0, mask, analysis=DifferenceAnalysis(change_type=ChangeType.LAYOUT)
        )
        issue = localizer_for(classifier=classifier).localize([result]).issues[0]

        assert classifier.calls == 0
        assert issue.classification == Classification.LAYOUT

    def test_dimension_mismatch_full_page_issue(self, localizer_for):
        result = _result(
            "about",
            2.0,
            None,
            dimension_mismatch=True,
            baseline_size=(1000, 1000),
            current_size=(1000, 1200),
        )
        surface = localizer_for().localize_result(result)

        assert surface.diff_percentage == 100.0
        assert surface.issues[0].region.box == BoundingBox(0, 0, 1000, 1200)


def _issue(
    issue_id: str,
    classification: Classification,
    selectors: list[str],
    confidence: float,
    severity: Severity = Severity.UNKNOWN,
) -> LocalizedIssue:
    result = _result("home", 4.0, None)
    return LocalizedIssue(
        issue_id=issue_id,
        comparison=result,
        region=DiffRegion(BoundingBox(0, 0, 10, 10), classification),
        classification=classification,
        affected_elements=[AffectedElement(UIElement(selector=s), 1.0) for s in selectors],
        code_references=[CodeReference(Path(f"/src/{issue_id}.css"), 1, confidence=confidence)],
        analysis=DifferenceAnalysis(severity=severity),
    )


class TestDeduplicate:
    def test_similar_issues_collapse(self):
        """Of two near-identical issues the more confident one survives."""
        low = _issue("a", Classification.COLOR, ["#x", ".y"], 0.4)
        high = _issue("b", Classification.COLOR, ["#x", ".y"], 0.9)

        assert [i.issue_id for i in deduplicate_issues([low, high])] == ["b"]

    def test_different_types_kept(self):
        color = _issue("a", Classification.COLOR, ["#x"], 0.5)
        layout = _issue("b", Classification.LAYOUT, ["#x"], 0.5)

        assert len(deduplicate_issues([color, layout])) == 2

    def test_cap_per_type(self):
        issues = [_issue(str(n), Classification.TEXT, [f"#e{n}"], 0.1 * n) for n in range(1, 6)]
        kept = deduplicate_issues(issues, max_per_type=3)

        assert [i.issue_id for i in kept] == ["5", "4", "3"]

    def test_severity_breaks_ties(self):
        low = _issue("a", Classification.COLOR, ["#a"], 0.5, Severity.LOW)
        high = _issue("b", Classification.COLOR, ["#b"], 0.5, Severity.HIGH)

        assert [i.issue_id for i in deduplicate_issues([low, high])] == ["b", "a"]

    def test_idempotent(self):
        issues = [
            _issue("a", Classification.COLOR, ["#x", ".y"], 0.4),
            _issue("b", Classification.COLOR, ["#x", ".y"], 0.9),
            _issue("c", Classification.LAYOUT, [".z"], 0.3),
            _issue("d", Classification.COLOR, [".w"], 0.7),
            _issue("e", Classification.LAYOUT, [".q"], 0.8),
        ]
        once = deduplicate_issues(issues)
        twice = deduplicate_issues(once)

        assert [i.issue_id for i in twice] == [i.issue_id for i in once]
