"""pixelmend: visual regression localization and self-healing fixes."""

from pixelmend._version import __version__
from pixelmend.core.models import ComparisonResult, HealingReport, LocalizedIssue
from pixelmend.heal.pipeline import HealingPipeline

__all__ = [
    "__version__",
    "ComparisonResult",
    "HealingPipeline",
    "HealingReport",
    "LocalizedIssue",
]
