"""Pixel comparison with Pillow and numpy."""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
from PIL import Image

from pixelmend.core.capabilities import DiffOutcome
from pixelmend.core.models import ComparisonResult

logger = logging.getLogger(__name__)

DIFF_IMAGE_NAME = "diff.png"


def _load_rgba(path: Path) -> np.ndarray:
    with Image.open(path) as img:
        return np.asarray(img.convert("RGBA"), dtype=np.int16)


class PixelDiff:
    """Compares two screenshots and writes a binary ``L`` diff mask.

    A pixel counts as changed when any channel differs by more than
    ``threshold`` (0..1) of the channel range.
    """

    def __init__(self, image_name: str = DIFF_IMAGE_NAME):
        self.image_name = image_name

    def diff(self, path_a: Path, path_b: Path, threshold: float, output_dir: Path) -> DiffOutcome:
        a = _load_rgba(Path(path_a))
        b = _load_rgba(Path(path_b))
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        out = output_dir / self.image_name

        if a.shape != b.shape:
            height = max(a.shape[0], b.shape[0])
            width = max(a.shape[1], b.shape[1])
            Image.new("L", (width, height), 255).save(out)
            logger.info(
                "Dimension mismatch: %dx%d vs %dx%d", a.shape[1], a.shape[0], b.shape[1], b.shape[0]
            )
            return DiffOutcome(
                diff_image_path=out,
                diff_pixel_count=width * height,
                total_pixels=width * height,
                diff_percentage=100.0,
                dimension_mismatch=True,
            )

        limit = max(0.0, min(1.0, threshold)) * 255
        mask = np.abs(a - b).max(axis=2) > limit
        Image.fromarray((mask * 255).astype(np.uint8)).save(out)

        total = int(mask.size)
        changed = int(mask.sum())
        return DiffOutcome(
            diff_image_path=out,
            diff_pixel_count=changed,
            total_pixels=total,
            diff_percentage=(changed / total * 100.0) if total else 0.0,
        )

    def compare(
        self, name: str, baseline: Path, current: Path, threshold: float, output_dir: Path
    ) -> ComparisonResult:
        """Build a :class:`ComparisonResult` for one surface."""
        outcome = self.diff(baseline, current, threshold, output_dir)
        with Image.open(baseline) as img_a, Image.open(current) as img_b:
            size_a, size_b = img_a.size, img_b.size
        return ComparisonResult(
            name=name,
            baseline_path=Path(baseline),
            current_path=Path(current),
            diff_path=outcome.diff_image_path,
            width=max(size_a[0], size_b[0]),
            height=max(size_a[1], size_b[1]),
            diff_pixel_count=outcome.diff_pixel_count,
            total_pixels=outcome.total_pixels,
            diff_percentage=outcome.diff_percentage,
            has_differences=outcome.diff_pixel_count > 0,
            dimension_mismatch=outcome.dimension_mismatch,
            baseline_size=size_a,
            current_size=size_b,
        )


def compare_directories(
    baseline_dir: Path,
    current_dir: Path,
    output_dir: Path,
    threshold: float = 0.1,
    differ: PixelDiff | None = None,
) -> list[ComparisonResult]:
    """Compare every ``*.png`` in *baseline_dir* with its namesake in *current_dir*."""
    differ = differ or PixelDiff()
    results = []
    for baseline in sorted(Path(baseline_dir).glob("*.png")):
        current = Path(current_dir) / baseline.name
        if not current.exists():
            logger.warning("No current screenshot for %s", baseline.stem)
            continue
        results.append(
            differ.compare(baseline.stem, baseline, current, threshold, Path(output_dir) / baseline.stem)
        )
    return results
