"""Tests for fix verification and the acceptance policy."""

from __future__ import annotations

import time
from pathlib import Path

import pytest

from pixelmend.core.capabilities import DiffOutcome
from pixelmend.core.config import VerifyConfig
from pixelmend.core.models import (
    BoundingBox,
    Classification,
    ComparisonResult,
    DiffRegion,
    FixApplicationRecord,
    FixCandidate,
    FixStatus,
    LocalizedIssue,
)
from pixelmend.fix.verifier import FixVerifier, is_accepted


class FakeRenderer:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls: list[str] = []

    def render(self, surface_id: str, output_dir: Path) -> Path:
        self.calls.append(surface_id)
        if self.error:
            raise self.error
        return output_dir / f"{surface_id}.png"


class FakeDiffer:
    def __init__(self, percentage: float):
        self.percentage = percentage
        self.compared: list[tuple[Path, Path]] = []

    def diff(self, path_a, path_b, threshold, output_dir):
        self.compared.append((path_a, path_b))
        return DiffOutcome(
            diff_image_path=output_dir / "diff.png",
            diff_pixel_count=int(self.percentage * 100),
            total_pixels=10000,
            diff_percentage=self.percentage,
        )


def _issue(diff: float = 4.0) -> LocalizedIssue:
    result = ComparisonResult(
        name="home",
        baseline_path=Path("/shots/home-baseline.png"),
        current_path=Path("/shots/home-current.png"),
        diff_path=None,
        width=100,
        height=100,
        diff_pixel_count=int(diff * 100),
        total_pixels=10000,
        diff_percentage=diff,
        has_differences=True,
    )
    return LocalizedIssue(
        issue_id="home#1",
        comparison=result,
        region=DiffRegion(BoundingBox(0, 0, 20, 20)),
        classification=Classification.UNKNOWN,
    )


def _record() -> FixApplicationRecord:
    candidate = FixCandidate(
        file_path=Path("site.css"),
        line_number=2,
        current_content="  color: #f00;",
        suggested_content="  color: #333;",
        confidence=0.85,
        description="Revert color",
    )
    return FixApplicationRecord(candidate=candidate, status=FixStatus.APPLIED)


class TestIsAccepted:
    def test_below_threshold(self):
        accepted, _ = is_accepted(4.0, 0.05, VerifyConfig())
        assert accepted is True

    def test_improved_but_not_enough(self):
        accepted, reason = is_accepted(4.0, 0.5, VerifyConfig())
        assert accepted is False
        assert "not below" in reason

    def test_worse(self):
        accepted, reason = is_accepted(0.05, 0.08, VerifyConfig())
        assert accepted is False
        assert "worse" in reason

    def test_partial_improvement_opt_in(self):
        config = VerifyConfig(accept_partial_improvement=True, min_improvement=1.0)
        assert is_accepted(4.0, 2.5, config)[0] is True
        assert is_accepted(4.0, 3.5, config)[0] is False


class TestFixVerifier:
    def test_accepts_clean_render(self, tmp_path: Path):
        renderer, differ = FakeRenderer(), FakeDiffer(0.0)
        record = _record()
        result = FixVerifier(renderer, differ).verify(_issue(), record, tmp_path / "attempt-1")

        assert result.accepted is True
        assert result.diff_percentage_before == 4.0
        assert result.diff_percentage_after == 0.0
        assert record.status == FixStatus.VERIFIED_SUCCESS
        assert renderer.calls == ["home"]
        assert differ.compared == [
            (Path("/shots/home-baseline.png"), tmp_path / "attempt-1" / "home.png")
        ]

    def test_rejects_remaining_diff(self, tmp_path: Path):
        record = _record()
        result = FixVerifier(FakeRenderer(), FakeDiffer(3.0)).verify(_issue(), record, tmp_path)

        assert result.accepted is False
        assert record.status == FixStatus.VERIFIED_FAILURE

    def test_before_override(self, tmp_path: Path):
        """A surface already improved by an earlier fix is judged from its new diff."""
        result = FixVerifier(FakeRenderer(), FakeDiffer(0.08)).verify(
            _issue(4.0), _record(), tmp_path, before=0.05
        )
        assert result.accepted is False
        assert result.transient is False

    def test_render_failure_is_rejection(self, tmp_path: Path):
        """Capability failures reject the fix instead of raising."""
        record = _record()
        renderer = FakeRenderer(error=RuntimeError("browser crashed"))
        result = FixVerifier(renderer, FakeDiffer(0.0)).verify(_issue(), record, tmp_path)

        assert result.accepted is False
        assert result.reason.startswith("verification_error")
        assert result.transient is True
        assert result.diff_percentage_after == result.diff_percentage_before
        assert record.status == FixStatus.VERIFIED_FAILURE

    def test_render_timeout_is_rejection(self, tmp_path: Path):
        class SlowRenderer:
            def render(self, surface_id, output_dir):
                time.sleep(1.0)
                return output_dir / "late.png"

        config = VerifyConfig(render_timeout=0.05)
        result = FixVerifier(SlowRenderer(), FakeDiffer(0.0), config).verify(
            _issue(), _record(), tmp_path
        )

        assert result.accepted is False
        assert "timed out" in result.reason

    def test_creates_output_dir(self, tmp_path: Path):
        out = tmp_path / "runs" / "r1" / "home_1" / "attempt-1"
        FixVerifier(FakeRenderer(), FakeDiffer(0.0)).verify(_issue(), _record(), out)
        assert out.is_dir()


@pytest.mark.parametrize("before,after,expected", [
    (4.0, 0.0, True),
    (4.0, 0.1, False),
    (0.0, 0.0, True),
])
def test_threshold_is_strict(before, after, expected):
    assert is_accepted(before, after, VerifyConfig(pass_threshold=0.1))[0] is expected
