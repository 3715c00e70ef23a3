"""Region extraction from binary diff masks.

Changed pixels are grouped into 4-connected regions with an iterative flood
fill.  Each row is first split into horizontal runs with numpy; the fill then
walks runs rather than pixels, using an explicit queue and a visited bitmap so
multi-megapixel masks neither recurse nor loop per pixel in Python.
"""

from __future__ import annotations

import logging
from collections import deque
from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError

from pixelmend.core.errors import LocalizationError
from pixelmend.core.models import BoundingBox, ComparisonResult

logger = logging.getLogger(__name__)

# Colour diff images mark changes in red (pixelmatch convention); anti-aliased
# pixels are yellow and unchanged ones a faded grey, neither counts.
RED_MIN = 200
OTHER_MAX = 100


def load_diff_mask(path: Path | str | None) -> np.ndarray:
    """Read a diff image into a ``(height, width)`` boolean mask."""
    if path is None:
        raise LocalizationError("No diff image was produced for this comparison")
    path = Path(path)
    if not path.is_file():
        raise LocalizationError(f"Diff image not found: {path}")

    try:
        with Image.open(path) as img:
            img.load()
            if img.mode in ("1", "L", "I", "I;16", "F"):
                return np.asarray(img) != 0
            rgb = np.asarray(img.convert("RGB")).astype(np.int16)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise LocalizationError(f"Cannot parse diff image {path}: {e}") from e

    red, green, blue = rgb[..., 0], rgb[..., 1], rgb[..., 2]
    return (red >= RED_MIN) & (green <= OTHER_MAX) & (blue <= OTHER_MAX)


class RegionSegmenter:
    """Turns a diff mask into bounding boxes, largest first."""

    def __init__(self, min_region_pixels: int = 1):
        self.min_region_pixels = max(1, min_region_pixels)

    def segment(
        self,
        mask: np.ndarray,
        baseline_size: tuple[int, int] | None = None,
        current_size: tuple[int, int] | None = None,
    ) -> list[tuple[BoundingBox, int]]:
        """Return ``(box, pixel_count)`` pairs sorted by box area, descending.

        *baseline_size* and *current_size* are ``(width, height)``.  When they
        differ, region extraction is meaningless and the whole canvas is
        reported as one region.
        """
        if baseline_size and current_size and baseline_size != current_size:
            return [self.full_canvas(baseline_size, current_size)]

        mask = np.asarray(mask, dtype=bool)
        if mask.ndim != 2:
            raise ValueError(f"Diff mask must be two-dimensional, got shape {mask.shape}")

        changed = np.argwhere(mask)
        if changed.size == 0:
            return []

        regions: list[tuple[BoundingBox, int]] = []
        dropped: list[tuple[BoundingBox, int]] = []

        for box, count in _components(mask):
            if count >= self.min_region_pixels:
                regions.append((box, count))
            else:
                dropped.append((box, count))

        if not regions:
            # Every changed pixel must end up inside some reported region.
            ys, xs = changed[:, 0], changed[:, 1]
            box = BoundingBox(
                x=int(xs.min()),
                y=int(ys.min()),
                width=int(xs.max() - xs.min()) + 1,
                height=int(ys.max() - ys.min()) + 1,
            )
            logger.info("No region passed the size filter; using fallback region %s", box)
            regions.append((box, int(len(changed))))
        elif dropped:
            logger.debug("Dropped %d region(s) below %d pixels", len(dropped), self.min_region_pixels)

        regions.sort(key=lambda r: r[0].area, reverse=True)
        return regions

    def full_canvas(
        self, baseline_size: tuple[int, int], current_size: tuple[int, int]
    ) -> tuple[BoundingBox, int]:
        width = max(baseline_size[0], current_size[0])
        height = max(baseline_size[1], current_size[1])
        return BoundingBox(0, 0, max(1, width), max(1, height)), width * height

    def segment_comparison(self, result: ComparisonResult) -> list[tuple[BoundingBox, int]]:
        """Load the diff mask of *result* and segment it."""
        if result.dimension_mismatch:
            baseline = result.baseline_size or (result.width, result.height)
            current = result.current_size or (result.width, result.height)
            logger.info("%s: dimension mismatch, reporting the full canvas", result.name)
            return [self.full_canvas(baseline, current)]

        mask = load_diff_mask(result.diff_path)
        regions = self.segment(mask)
        logger.info(
            "%s: %d region(s) from %d changed pixel(s)",
            result.name,
            len(regions),
            int(mask.sum()),
        )
        return regions


def _row_runs(mask: np.ndarray) -> tuple[list[int], list[int], list[int]]:
    """Horizontal runs of changed pixels as ``(rows, starts, ends)``, row-major.

    Ends are exclusive.
    """
    height, width = mask.shape
    padded = np.zeros((height, width + 2), dtype=np.int8)
    padded[:, 1:-1] = mask
    edges = np.diff(padded, axis=1)
    rows, starts = np.nonzero(edges == 1)
    _, ends = np.nonzero(edges == -1)
    return rows.tolist(), starts.tolist(), ends.tolist()


def _components(mask: np.ndarray) -> list[tuple[BoundingBox, int]]:
    """Flood-fill 4-connected regions of *mask* run by run, top-left seed first.

    Two runs touch when they sit on adjacent rows and share a column.
    """
    rows, starts, ends = _row_runs(mask)
    n = len(rows)
    neighbours: list[list[int]] = [[] for _ in range(n)]

    # Run indices prev_lo..prev_hi-1 belong to the previous row.
    prev_lo = prev_hi = 0
    i = 0
    while i < n:
        y = rows[i]
        j = i
        while j < n and rows[j] == y:
            j += 1
        if prev_hi > prev_lo and rows[prev_lo] == y - 1:
            k = prev_lo
            for r in range(i, j):
                while k < prev_hi and ends[k] <= starts[r]:
                    k += 1
                m = k
                while m < prev_hi and starts[m] < ends[r]:
                    neighbours[r].append(m)
                    neighbours[m].append(r)
                    m += 1
        prev_lo, prev_hi = i, j
        i = j

    visited = bytearray(n)
    regions: list[tuple[BoundingBox, int]] = []
    for seed in range(n):
        if visited[seed]:
            continue
        visited[seed] = 1
        queue = deque([seed])
        min_x, max_x = starts[seed], ends[seed]
        min_y = max_y = rows[seed]
        count = 0
        while queue:
            r = queue.popleft()
            count += ends[r] - starts[r]
            if starts[r] < min_x:
                min_x = starts[r]
            if ends[r] > max_x:
                max_x = ends[r]
            if rows[r] > max_y:
                max_y = rows[r]
            for m in neighbours[r]:
                if not visited[m]:
                    visited[m] = 1
                    queue.append(m)
        regions.append((BoundingBox(min_x, min_y, max_x - min_x, max_y - min_y + 1), count))
    return regions
