"""Healing report assembly and report sinks."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from pixelmend.core.models import (
    AttemptRecord,
    HealingReport,
    IssueResolution,
    IssueStatus,
    SurfaceReport,
)
from pixelmend.core.output import print_healing_report
from pixelmend.fix.applier import atomic_write
from pixelmend.localize.localizer import LocalizationRun, SurfaceLocalization

logger = logging.getLogger(__name__)

# Worst status wins when a surface has several issues.
_PRECEDENCE = (
    IssueStatus.CANCELLED,
    IssueStatus.ABORTED,
    IssueStatus.FAILED,
    IssueStatus.FIXED,
    IssueStatus.SKIPPED,
)


def surface_outcome(resolutions: list[IssueResolution]) -> tuple[str, str]:
    """Collapse issue resolutions into one ``(outcome, reason)`` for a surface."""
    if not resolutions:
        return IssueStatus.SKIPPED.value, "no_issues"
    for status in _PRECEDENCE:
        matching = [r for r in resolutions if r.status == status]
        if not matching:
            continue
        if status == IssueStatus.FIXED:
            return status.value, ""
        fixed = sum(1 for r in resolutions if r.status == IssueStatus.FIXED)
        reason = matching[0].reason
        if fixed:
            reason = f"{reason} ({fixed} of {len(resolutions)} issue(s) fixed)"
        return status.value, reason
    return IssueStatus.SKIPPED.value, ""


def build_surface_report(
    surface: SurfaceLocalization, resolutions: list[IssueResolution]
) -> SurfaceReport:
    report = SurfaceReport(
        name=surface.name,
        diff_percentage=surface.diff_percentage,
        regression_detected=surface.regression_detected,
        localized=surface.localized,
        fix_attempted=any(r.attempts for r in resolutions),
        resolutions=resolutions,
    )
    if not surface.localized:
        report.outcome, report.reason = IssueStatus.SKIPPED.value, surface.reason
    else:
        report.outcome, report.reason = surface_outcome(resolutions)
    return report


def build_report(
    run_id: str,
    localization: LocalizationRun,
    resolutions: list[IssueResolution],
    started_at: datetime | None = None,
) -> HealingReport:
    by_surface: dict[str, list[IssueResolution]] = {}
    for resolution in resolutions:
        by_surface.setdefault(resolution.issue.surface, []).append(resolution)

    report = HealingReport(run_id=run_id, started_at=started_at or datetime.now())
    for surface in localization.surfaces:
        report.surfaces.append(build_surface_report(surface, by_surface.get(surface.name, [])))
    report.finished_at = datetime.now()
    return report


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def _path(p: Path | None) -> str | None:
    return str(p) if p is not None else None


def attempt_to_dict(attempt: AttemptRecord) -> dict[str, Any]:
    record = attempt.record
    data: dict[str, Any] = {
        "file": str(record.candidate.file_path),
        "line": record.applied_line or record.candidate.line_number,
        "origin": record.candidate.origin.value,
        "confidence": round(record.candidate.confidence, 4),
        "description": record.candidate.description,
        "currentContent": record.candidate.current_content,
        "suggestedContent": record.candidate.suggested_content,
        "status": record.status.value,
        "message": record.message,
    }
    if attempt.verification is not None:
        v = attempt.verification
        data["verification"] = {
            "diffPercentageBefore": v.diff_percentage_before,
            "diffPercentageAfter": v.diff_percentage_after,
            "accepted": v.accepted,
            "reason": v.reason,
            "transient": v.transient,
            "screenshotPath": _path(v.screenshot_path),
            "diffImagePath": _path(v.diff_image_path),
        }
    return data


def resolution_to_dict(resolution: IssueResolution) -> dict[str, Any]:
    issue = resolution.issue
    return {
        "issueId": issue.issue_id,
        "classification": issue.classification.value,
        "severity": issue.severity.value,
        "confidence": round(issue.confidence, 4),
        "description": issue.description,
        "region": issue.region.box.to_dict(),
        "selectors": issue.selectors,
        "codeReferences": [
            {"location": r.location, "confidence": round(r.confidence, 4)}
            for r in issue.code_references
        ],
        "status": resolution.status.value,
        "result": resolution.label,
        "attempts": [attempt_to_dict(a) for a in resolution.attempts],
    }


def report_to_dict(report: HealingReport) -> dict[str, Any]:
    return {
        "runId": report.run_id,
        "startedAt": report.started_at.isoformat(),
        "finishedAt": report.finished_at.isoformat() if report.finished_at else None,
        "fixed": report.fixed_count,
        "unresolved": report.failed_count,
        "surfaces": [
            {
                "name": s.name,
                "diffPercentage": s.diff_percentage,
                "regressionDetected": s.regression_detected,
                "localized": s.localized,
                "fixAttempted": s.fix_attempted,
                "outcome": s.outcome,
                "reason": s.reason,
                "issues": [resolution_to_dict(r) for r in s.resolutions],
            }
            for s in report.surfaces
        ],
    }


class JsonReportSink:
    """Writes the report as JSON."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def emit(self, report: HealingReport) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        atomic_write(self.path, json.dumps(report_to_dict(report), indent=2).encode("utf-8"))
        logger.info("Report written to %s", self.path)


class ConsoleReportSink:
    """Prints the report to the terminal."""

    def emit(self, report: HealingReport) -> None:
        print_healing_report(report)
