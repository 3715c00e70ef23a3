"""Re-render and re-diff a surface after a fix to decide whether it worked."""

from __future__ import annotations

import logging
from pathlib import Path

from pixelmend.core.capabilities import DiffCapability, RenderCapability, call_with_timeout
from pixelmend.core.config import VerifyConfig
from pixelmend.core.errors import CapabilityError
from pixelmend.core.models import (
    FixApplicationRecord,
    FixStatus,
    LocalizedIssue,
    VerificationResult,
)

logger = logging.getLogger(__name__)


def is_accepted(before: float, after: float, config: VerifyConfig) -> tuple[bool, str]:
    """Apply the acceptance policy; returns ``(accepted, reason)``."""
    if after < config.pass_threshold and after <= before:
        return True, f"diff {before:.2f}% -> {after:.2f}%, below {config.pass_threshold}%"
    if config.accept_partial_improvement and before - after >= config.min_improvement:
        return True, f"diff improved by {before - after:.2f} points ({before:.2f}% -> {after:.2f}%)"
    if after > before:
        return False, f"diff got worse ({before:.2f}% -> {after:.2f}%)"
    return False, f"diff {after:.2f}% is not below {config.pass_threshold}%"


class FixVerifier:
    """Checks an applied fix against the surface's baseline."""

    def __init__(
        self,
        renderer: RenderCapability,
        differ: DiffCapability,
        config: VerifyConfig | None = None,
    ):
        self.renderer = renderer
        self.differ = differ
        self.config = config or VerifyConfig()

    def verify(
        self,
        issue: LocalizedIssue,
        record: FixApplicationRecord,
        output_dir: Path,
        before: float | None = None,
    ) -> VerificationResult:
        """Verify *record* for *issue*, writing artifacts into *output_dir*.

        *before* defaults to the diff percentage the issue was localized
        from.  Capability failures are rejections, never exceptions.
        """
        if before is None:
            before = issue.comparison.effective_diff_percentage
        record.status = FixStatus.VERIFYING
        output_dir.mkdir(parents=True, exist_ok=True)

        try:
            screenshot = call_with_timeout(
                "render",
                self.config.render_timeout,
                self.renderer.render,
                issue.surface,
                output_dir,
            )
            outcome = call_with_timeout(
                "diff",
                self.config.diff_timeout,
                self.differ.diff,
                issue.comparison.baseline_path,
                Path(screenshot),
                self.config.pixel_threshold,
                output_dir,
            )
        except CapabilityError as e:
            logger.warning("Verification of %s failed: %s", issue.issue_id, e)
            record.status = FixStatus.VERIFIED_FAILURE
            return VerificationResult(
                diff_percentage_before=before,
                diff_percentage_after=before,
                accepted=False,
                reason=f"verification_error: {e}",
                transient=True,
            )

        after = outcome.effective_diff_percentage
        accepted, reason = is_accepted(before, after, self.config)
        record.status = FixStatus.VERIFIED_SUCCESS if accepted else FixStatus.VERIFIED_FAILURE
        logger.info(
            "%s: %s (%s)", issue.issue_id, "accepted" if accepted else "rejected", reason
        )
        return VerificationResult(
            diff_percentage_before=before,
            diff_percentage_after=after,
            accepted=accepted,
            reason=reason,
            screenshot_path=Path(screenshot),
            diff_image_path=outcome.diff_image_path,
        )
