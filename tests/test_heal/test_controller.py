"""Tests for the apply/verify/commit-or-revert loop."""

from __future__ import annotations

import time
from pathlib import Path

import pytest

from pixelmend.core.capabilities import DiffOutcome
from pixelmend.core.config import HealConfig
from pixelmend.core.errors import FatalAttemptError
from pixelmend.core.models import (
    AffectedElement,
    BoundingBox,
    Classification,
    CodeReference,
    ComparisonResult,
    DiffRegion,
    FixCandidate,
    FixOrigin,
    FixStatus,
    IssueStatus,
    LocalizedIssue,
    Outcome,
    UIElement,
)
from pixelmend.fix.applier import FixApplier
from pixelmend.fix.verifier import FixVerifier
from pixelmend.heal.controller import (
    REASON_ALREADY_CLEAN,
    REASON_CANCELLED,
    REASON_EXHAUSTED,
    REASON_NO_FIXES,
    SelfHealingController,
)
from pixelmend.knowledge.store import InMemoryKnowledgeStore, issue_signature

CSS = ".header {\n  color: #f00;\n  padding: 8px;\n}\n"


class StubFixGenerator:
    """Returns a fixed candidate list per issue."""

    def __init__(self, candidates: dict[str, list[FixCandidate]]):
        self.candidates = candidates

    def generate(self, issue):
        return list(self.candidates.get(issue.issue_id, []))

    def signature(self, issue, file_path):
        return issue_signature(issue.classification, issue.primary_selector, file_path)


class Renderer:
    def render(self, surface_id, output_dir):
        return output_dir / f"{surface_id}.png"


class ContentDiffer:
    """Reports a clean render once a file contains the expected text.

    The surface is recovered from the screenshot name the renderer chose.
    """

    def __init__(self, expectations: dict[str, tuple[Path, str]]):
        self.expectations = expectations

    def diff(self, path_a, path_b, threshold, output_dir):
        file, text = self.expectations[Path(path_b).stem]
        clean = text in file.read_text()
        return DiffOutcome(
            diff_image_path=None,
            diff_pixel_count=0 if clean else 400,
            total_pixels=10000,
            diff_percentage=0.0 if clean else 4.0,
        )


class BrokenRenderer:
    def render(self, surface_id, output_dir):
        raise RuntimeError("browser crashed")


class InterruptingRenderer:
    """Interrupts on one surface; every other render waits for cancellation."""

    def __init__(self, interrupt_on: str):
        self.interrupt_on = interrupt_on
        self.controller = None
        self.renders: list[str] = []

    def render(self, surface_id, output_dir):
        self.renders.append(surface_id)
        if surface_id == self.interrupt_on:
            raise KeyboardInterrupt
        deadline = time.monotonic() + 5
        while not self.controller.cancelled and time.monotonic() < deadline:
            time.sleep(0.01)
        return output_dir / f"{surface_id}.png"


class FailingKnowledgeStore(InMemoryKnowledgeStore):
    def append(self, entry):
        raise FatalAttemptError("knowledge_base_write_failed", "database is locked")


def _issue(surface: str, file: Path, n: int = 1) -> LocalizedIssue:
    result = ComparisonResult(
        name=surface,
        baseline_path=Path(f"{surface}-baseline.png"),
        current_path=Path(f"{surface}-current.png"),
        diff_path=None,
        width=100,
        height=100,
        diff_pixel_count=400,
        total_pixels=10000,
        diff_percentage=4.0,
        has_differences=True,
    )
    return LocalizedIssue(
        issue_id=f"{surface}#{n}",
        comparison=result,
        region=DiffRegion(BoundingBox(0, 0, 20, 20), Classification.COLOR),
        classification=Classification.COLOR,
        affected_elements=[AffectedElement(UIElement(selector=".header"), 1.0)],
        code_references=[CodeReference(file, 1, confidence=0.9)],
    )


def _candidate(file: Path, suggested: str, confidence: float, line: int = 2,
               current: str = "  color: #f00;") -> FixCandidate:
    return FixCandidate(
        file_path=file,
        line_number=line,
        current_content=current,
        suggested_content=suggested,
        confidence=confidence,
        description=f"Set {suggested.strip()}",
        origin=FixOrigin.HEURISTIC,
    )


@pytest.fixture
def project(tmp_path: Path) -> Path:
    (tmp_path / "site.css").write_text(CSS)
    return tmp_path


@pytest.fixture
def css(project: Path) -> Path:
    return project / "site.css"


def _controller(project, candidates, expectations, knowledge=None, config=None, renderer=None):
    knowledge = knowledge if knowledge is not None else InMemoryKnowledgeStore()
    controller = SelfHealingController(
        generator=StubFixGenerator(candidates),
        applier=FixApplier(project, "run-1"),
        verifier=FixVerifier(renderer or Renderer(), ContentDiffer(expectations)),
        knowledge=knowledge,
        run_dir=project / ".pixelmend" / "runs" / "run-1",
        config=config,
    )
    return controller, knowledge


class TestResolve:
    def test_failed_candidate_reverted_then_next_tried(self, project, css):
        """A rejected 0.85 fix is reverted and recorded before the next candidate runs."""
        issue = _issue("home", css)
        wrong = _candidate(css, "  color: #00f;", 0.85)
        right = _candidate(css, "  color: #333;", 0.75)
        controller, knowledge = _controller(
            project, {"home#1": [wrong, right]}, {"home": (css, "color: #333;")}
        )

        resolution = controller.resolve(issue)

        assert resolution.status == IssueStatus.FIXED
        assert [a.record.status for a in resolution.attempts] == [
            FixStatus.REVERTED,
            FixStatus.COMMITTED,
        ]
        assert [e.outcome for e in knowledge.entries()] == [Outcome.FAILURE, Outcome.SUCCESS]
        assert knowledge.entries()[0].issue_signature == "COLOR|.header|site.css"
        assert css.read_text() == CSS.replace("#f00", "#333")

    def test_all_candidates_fail(self, project, css):
        """When nothing works the file ends byte-identical to where it started."""
        issue = _issue("home", css)
        candidates = [
            _candidate(css, "  color: #00f;", 0.85),
            _candidate(css, "  color: #0f0;", 0.75),
        ]
        controller, knowledge = _controller(
            project, {"home#1": candidates}, {"home": (css, "color: #333;")}
        )
        before = css.read_bytes()

        resolution = controller.resolve(issue)

        assert resolution.status == IssueStatus.FAILED
        assert resolution.reason == REASON_EXHAUSTED
        assert resolution.label == "failed: all_fixes_exhausted"
        assert css.read_bytes() == before
        assert len(knowledge.entries()) == 2
        assert all(e.outcome == Outcome.FAILURE for e in knowledge.entries())

    def test_no_candidates(self, project, css):
        controller, knowledge = _controller(project, {}, {})
        resolution = controller.resolve(_issue("home", css))

        assert resolution.status == IssueStatus.FAILED
        assert resolution.reason == REASON_NO_FIXES
        assert resolution.attempts == []
        assert knowledge.entries() == []

    def test_stale_candidate_skipped_without_learning(self, project, css):
        issue = _issue("home", css)
        stale = _candidate(css, "  color: #444;", 0.9, current="  border: none;")
        good = _candidate(css, "  color: #333;", 0.8)
        controller, knowledge = _controller(
            project, {"home#1": [stale, good]}, {"home": (css, "color: #333;")}
        )

        resolution = controller.resolve(issue)

        assert resolution.status == IssueStatus.FIXED
        assert resolution.attempts[0].record.status == FixStatus.APPLY_FAILED
        assert resolution.attempts[0].verification is None
        assert [e.outcome for e in knowledge.entries()] == [Outcome.SUCCESS]

    def test_knowledge_write_failure_aborts_and_reverts(self, project, css):
        issue = _issue("home", css)
        controller, _ = _controller(
            project,
            {"home#1": [_candidate(css, "  color: #333;", 0.85)]},
            {"home": (css, "color: #333;")},
            knowledge=FailingKnowledgeStore(),
        )

        resolution = controller.resolve(issue)

        assert resolution.status == IssueStatus.ABORTED
        assert resolution.reason == "knowledge_base_write_failed"
        assert css.read_text() == CSS

    def test_lock_timeout_aborts(self, project, css):
        issue = _issue("home", css)
        controller, _ = _controller(
            project,
            {"home#1": [_candidate(css, "  color: #333;", 0.85)]},
            {"home": (css, "color: #333;")},
            config=HealConfig(lock_timeout=0.05),
        )

        with controller.file_locks.hold(css):
            resolution = controller.resolve(issue)

        assert resolution.status == IssueStatus.ABORTED
        assert resolution.reason == "lock_timeout"
        assert css.read_text() == CSS

    def test_cancelled_before_start(self, project, css):
        controller, _ = _controller(
            project,
            {"home#1": [_candidate(css, "  color: #333;", 0.85)]},
            {"home": (css, "color: #333;")},
        )
        controller.cancel()

        resolution = controller.resolve(_issue("home", css))

        assert resolution.status == IssueStatus.CANCELLED
        assert resolution.reason == REASON_CANCELLED
        assert css.read_text() == CSS

    def test_attempt_artifacts_written_per_issue(self, project, css):
        controller, _ = _controller(
            project,
            {"home#1": [_candidate(css, "  color: #333;", 0.85)]},
            {"home": (css, "color: #333;")},
        )
        controller.resolve(_issue("home", css))

        assert (project / ".pixelmend" / "runs" / "run-1" / "home_1" / "attempt-1").is_dir()


class TestRun:
    def test_results_in_input_order(self, project):
        """Parallel workers still return resolutions in issue order."""
        files = {}
        candidates = {}
        expectations = {}
        issues = []
        for name in ("home", "about", "pricing", "contact"):
            file = project / f"{name}.css"
            file.write_text(CSS)
            files[name] = file
            candidates[f"{name}#1"] = [_candidate(file, "  color: #333;", 0.85)]
            expectations[name] = (file, "color: #333;")
            issues.append(_issue(name, file))

        controller, knowledge = _controller(
            project, candidates, expectations, config=HealConfig(max_workers=3)
        )
        resolutions = controller.run(issues)

        assert [r.issue.issue_id for r in resolutions] == [i.issue_id for i in issues]
        assert all(r.status == IssueStatus.FIXED for r in resolutions)
        assert len(knowledge.entries()) == 4
        assert all("#333" in f.read_text() for f in files.values())

    def test_issue_on_cleaned_surface_is_skipped(self, project, css):
        """Once one fix cleans a surface, later issues there apply nothing."""
        other = project / "other.css"
        other.write_text(CSS)
        first = _issue("home", css, 1)
        second = _issue("home", other, 2)
        controller, knowledge = _controller(
            project,
            {
                "home#1": [_candidate(css, "  color: #333;", 0.85)],
                "home#2": [_candidate(other, "  color: #abcdef;", 0.85)],
            },
            {"home": (css, "color: #333;")},
        )

        resolutions = controller.run([first, second])

        assert resolutions[0].status == IssueStatus.FIXED
        assert resolutions[1].status == IssueStatus.SKIPPED
        assert resolutions[1].reason == REASON_ALREADY_CLEAN
        assert resolutions[1].attempts == []
        assert other.read_text() == CSS
        assert len(knowledge.entries()) == 1

    def test_interrupt_stops_queued_issues(self, project):
        """An interrupt mid-run cancels everything not yet started."""
        candidates = {}
        expectations = {}
        issues = []
        for i in range(8):
            name = f"page{i}"
            file = project / f"{name}.css"
            file.write_text(CSS)
            candidates[f"{name}#1"] = [_candidate(file, "  color: #333;", 0.85)]
            expectations[name] = (file, "color: #333;")
            issues.append(_issue(name, file))
        renderer = InterruptingRenderer("page0")
        controller, _ = _controller(
            project, candidates, expectations,
            config=HealConfig(max_workers=2), renderer=renderer,
        )
        renderer.controller = controller

        with pytest.raises(KeyboardInterrupt):
            controller.run(issues)

        assert controller.cancelled
        assert renderer.renders[0] in ("page0", "page1")
        assert set(renderer.renders) <= {"page0", "page1", "page2"}
        assert (project / "page0.css").read_text() == CSS
        for i in range(3, 8):
            assert (project / f"page{i}.css").read_text() == CSS

    def test_interrupt_in_sequential_run_cancels(self, project):
        file = project / "page0.css"
        file.write_text(CSS)
        renderer = InterruptingRenderer("page0")
        controller, knowledge = _controller(
            project,
            {"page0#1": [_candidate(file, "  color: #333;", 0.85)]},
            {"page0": (file, "color: #333;")},
            renderer=renderer,
        )
        renderer.controller = controller

        with pytest.raises(KeyboardInterrupt):
            controller.run([_issue("page0", file)])

        assert controller.cancelled
        assert file.read_text() == CSS
        assert knowledge.entries() == []


class TestTransientVerification:
    def test_render_failure_not_recorded(self, project, css):
        """A crashed render reverts the candidate but teaches the knowledge base nothing."""
        issue = _issue("home", css)
        controller, knowledge = _controller(
            project,
            {"home#1": [
                _candidate(css, "  color: #333;", 0.85),
                _candidate(css, "  color: #444;", 0.75),
            ]},
            {"home": (css, "color: #333;")},
            renderer=BrokenRenderer(),
        )

        resolution = controller.resolve(issue)

        assert resolution.status == IssueStatus.FAILED
        assert resolution.reason == REASON_EXHAUSTED
        assert [a.record.status for a in resolution.attempts] == [
            FixStatus.REVERTED,
            FixStatus.REVERTED,
        ]
        assert all(a.verification.transient for a in resolution.attempts)
        assert knowledge.entries() == []
        assert css.read_text() == CSS
