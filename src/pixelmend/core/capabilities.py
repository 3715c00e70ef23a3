"""Contracts for the external collaborators pixelmend drives.

Rendering, pixel comparison and text/vision generation are injected as
plain objects satisfying these protocols.  Every call is wrapped in
:func:`call_with_timeout` so that a hung browser or model never blocks
the healing loop; a timeout is a definitive failure of that attempt.
"""

from __future__ import annotations

import concurrent.futures
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Protocol, TypeVar, runtime_checkable

from pixelmend.core.errors import CapabilityError, CapabilityTimeout

if TYPE_CHECKING:
    from pixelmend.core.models import HealingReport

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class DiffOutcome:
    """Result of one diff capability call."""

    diff_image_path: Path | None
    diff_pixel_count: int
    total_pixels: int
    diff_percentage: float
    dimension_mismatch: bool = False

    @property
    def effective_diff_percentage(self) -> float:
        return 100.0 if self.dimension_mismatch else self.diff_percentage


@runtime_checkable
class RenderCapability(Protocol):
    def render(self, surface_id: str, output_dir: Path) -> Path:
        """Render *surface_id* and return the screenshot path."""
        ...


@runtime_checkable
class DiffCapability(Protocol):
    def diff(self, path_a: Path, path_b: Path, threshold: float, output_dir: Path) -> DiffOutcome:
        """Compare two images and write a diff mask into *output_dir*."""
        ...


@runtime_checkable
class GenerationCapability(Protocol):
    def generate(self, prompt: str, context_images: list[Path] | None = None) -> str:
        """Return generated text for *prompt*."""
        ...


@runtime_checkable
class ReportSink(Protocol):
    def emit(self, report: HealingReport) -> None:
        ...


def call_with_timeout(
    capability: str,
    timeout: float,
    fn: Callable[..., T],
    *args,
    **kwargs,
) -> T:
    """Run *fn* with a hard timeout.

    Raises :class:`CapabilityTimeout` when the call does not finish in time
    and :class:`CapabilityError` for any other failure raised by *fn*.
    The worker thread is abandoned on timeout; the caller moves on.
    """
    executor = concurrent.futures.ThreadPoolExecutor(
        max_workers=1, thread_name_prefix=f"pixelmend-{capability}"
    )
    future = executor.submit(fn, *args, **kwargs)
    try:
        return future.result(timeout=timeout)
    except concurrent.futures.TimeoutError:
        logger.warning("%s call timed out after %.1fs", capability, timeout)
        raise CapabilityTimeout(capability, timeout) from None
    except CapabilityError:
        raise
    except Exception as e:
        raise CapabilityError(capability, str(e) or type(e).__name__) from e
    finally:
        executor.shutdown(wait=False)
