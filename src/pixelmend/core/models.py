"""Shared data models used across pixelmend modules."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any


class Classification(enum.Enum):
    COLOR = "COLOR"
    LAYOUT = "LAYOUT"
    TEXT = "TEXT"
    MISSING_ELEMENT = "MISSING_ELEMENT"
    UNKNOWN = "UNKNOWN"


class ChangeType(enum.Enum):
    """Change type reported by an external difference analysis."""

    COLOR = "COLOR"
    LAYOUT = "LAYOUT"
    TEXT = "TEXT"
    MISSING_ELEMENT = "MISSING_ELEMENT"
    MIXED = "MIXED"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: str | None) -> ChangeType:
        if not value:
            return cls.UNKNOWN
        normalized = str(value).strip().upper().replace("-", "_").replace(" ", "_")
        if normalized in ("MISSING", "MISSING_ELEMENTS"):
            normalized = "MISSING_ELEMENT"
        try:
            return cls(normalized)
        except ValueError:
            return cls.UNKNOWN


class Severity(enum.Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    UNKNOWN = "UNKNOWN"

    @property
    def rank(self) -> int:
        return {"HIGH": 3, "MEDIUM": 2, "LOW": 1}.get(self.value, 0)

    @classmethod
    def parse(cls, value: str | None) -> Severity:
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            return cls.UNKNOWN


class FileType(enum.Enum):
    STYLESHEET = "stylesheet"
    MARKUP = "markup"
    SCRIPT = "script"
    OTHER = "other"

    @classmethod
    def from_path(cls, path: Path | str) -> FileType:
        suffix = Path(path).suffix.lower()
        if suffix in (".css", ".scss", ".sass", ".less"):
            return cls.STYLESHEET
        if suffix in (".html", ".htm", ".vue"):
            return cls.MARKUP
        if suffix in (".js", ".jsx", ".ts", ".tsx", ".mjs"):
            return cls.SCRIPT
        return cls.OTHER


class FixOrigin(enum.Enum):
    HEURISTIC = "heuristic"
    KNOWLEDGE_BASE = "knowledge-base"
    GENERATED = "generated"

    @property
    def rank(self) -> int:
        """Lower ranks win confidence ties."""
        return {"heuristic": 0, "knowledge-base": 1, "generated": 2}[self.value]


class FixStatus(enum.Enum):
    APPLIED = "applied"
    VERIFYING = "verifying"
    VERIFIED_SUCCESS = "verified_success"
    VERIFIED_FAILURE = "verified_failure"
    REVERTED = "reverted"
    COMMITTED = "committed"
    APPLY_FAILED = "apply_failed"


class Outcome(enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class IssueStatus(enum.Enum):
    FIXED = "fixed"
    FAILED = "failed"
    SKIPPED = "skipped"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BoundingBox:
    """Integer, axis-aligned rectangle in page pixels."""

    x: int
    y: int
    width: int
    height: int

    @property
    def area(self) -> int:
        return max(0, self.width) * max(0, self.height)

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def intersection_area(self, other: BoundingBox) -> int:
        dx = min(self.right, other.right) - max(self.x, other.x)
        dy = min(self.bottom, other.bottom) - max(self.y, other.y)
        if dx <= 0 or dy <= 0:
            return 0
        return dx * dy

    def contains_point(self, x: int, y: int) -> bool:
        return self.x <= x < self.right and self.y <= y < self.bottom

    def to_dict(self) -> dict[str, int]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BoundingBox:
        # Probes report fractional CSS pixels; snap outward to whole pixels.
        x = float(data.get("x", 0))
        y = float(data.get("y", 0))
        right = x + float(data.get("width", 0))
        bottom = y + float(data.get("height", 0))
        ix, iy = int(x // 1), int(y // 1)
        return cls(
            x=ix,
            y=iy,
            width=max(0, int(-(-right // 1)) - ix),
            height=max(0, int(-(-bottom // 1)) - iy),
        )


# ---------------------------------------------------------------------------
# Comparison input
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DifferenceAnalysis:
    """External classification of a visual difference."""

    change_type: ChangeType = ChangeType.UNKNOWN
    severity: Severity = Severity.UNKNOWN
    description: str = ""
    is_false_positive: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "changeType": self.change_type.value,
            "severity": self.severity.value,
            "description": self.description,
            "isFalsePositive": self.is_false_positive,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DifferenceAnalysis:
        return cls(
            change_type=ChangeType.parse(data.get("changeType") or data.get("change_type")),
            severity=Severity.parse(data.get("severity")),
            description=str(data.get("description") or ""),
            is_false_positive=bool(
                data.get("isFalsePositive", data.get("is_false_positive", False))
            ),
        )


def _pick(data: dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass(frozen=True)
class ComparisonResult:
    """Output of the external comparator for one named UI surface."""

    name: str
    baseline_path: Path
    current_path: Path
    diff_path: Path | None
    width: int
    height: int
    diff_pixel_count: int
    total_pixels: int
    diff_percentage: float
    has_differences: bool
    dimension_mismatch: bool = False
    baseline_size: tuple[int, int] | None = None
    current_size: tuple[int, int] | None = None
    analysis: DifferenceAnalysis | None = None

    @property
    def effective_diff_percentage(self) -> float:
        if self.dimension_mismatch:
            return 100.0
        return self.diff_percentage

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ComparisonResult:
        """Build from comparator output (camelCase or snake_case keys)."""
        diff_path = _pick(data, "diffImagePath", "diff_path", "diffPath")
        analysis = _pick(data, "aiAnalysis", "analysis")

        def _size(key_a: str, key_b: str) -> tuple[int, int] | None:
            raw = _pick(data, key_a, key_b)
            if isinstance(raw, dict):
                return int(raw.get("width", 0)), int(raw.get("height", 0))
            if isinstance(raw, (list, tuple)) and len(raw) == 2:
                return int(raw[0]), int(raw[1])
            return None

        width = int(_pick(data, "width", default=0))
        height = int(_pick(data, "height", default=0))
        diff_percentage = float(_pick(data, "diffPercentage", "diff_percentage", default=0.0))
        return cls(
            name=str(data["name"]),
            baseline_path=Path(_pick(data, "baselineImagePath", "baseline_path", default="")),
            current_path=Path(_pick(data, "currentImagePath", "current_path", default="")),
            diff_path=Path(diff_path) if diff_path else None,
            width=width,
            height=height,
            diff_pixel_count=int(_pick(data, "diffPixelCount", "diff_pixel_count", default=0)),
            total_pixels=int(_pick(data, "totalPixels", "total_pixels", default=width * height)),
            diff_percentage=diff_percentage,
            has_differences=bool(
                _pick(data, "hasDifferences", "has_differences", default=diff_percentage > 0)
            ),
            dimension_mismatch=bool(
                _pick(data, "dimensionMismatch", "dimension_mismatch", default=False)
            ),
            baseline_size=_size("baselineSize", "baseline_size"),
            current_size=_size("currentSize", "current_size"),
            analysis=DifferenceAnalysis.from_dict(analysis) if isinstance(analysis, dict) else None,
        )


@dataclass(frozen=True)
class DiffRegion:
    """A connected area of changed pixels, reduced to its bounding box."""

    box: BoundingBox
    classification: Classification = Classification.UNKNOWN
    description: str = ""
    pixel_count: int = 0

    def __post_init__(self) -> None:
        if self.box.area <= 0:
            raise ValueError(f"DiffRegion must have a positive area: {self.box}")

    @property
    def area(self) -> int:
        return self.box.area


# ---------------------------------------------------------------------------
# UI / source mapping
# ---------------------------------------------------------------------------


@dataclass
class CodeReference:
    """A source location believed to render or style a UI element."""

    file_path: Path
    line_number: int
    context_snippet: str = ""
    confidence: float = 0.5

    @property
    def location(self) -> str:
        return f"{self.file_path}:{self.line_number}"


@dataclass
class ElementAttributes:
    tag: str = ""
    id: str = ""
    classes: tuple[str, ...] = ()
    text: str = ""
    data_test: str = ""


@dataclass
class UIElement:
    """A rendered element with its bounding box and source references."""

    selector: str
    attributes: ElementAttributes = field(default_factory=ElementAttributes)
    bounding_box: BoundingBox | None = None
    code_references: list[CodeReference] = field(default_factory=list)

    def add_code_reference(self, ref: CodeReference) -> None:
        if any(r.location == ref.location for r in self.code_references):
            return
        self.code_references.append(ref)


@dataclass
class AffectedElement:
    element: UIElement
    overlap_percentage: float


@dataclass
class LocalizedIssue:
    """A diff region with its affected elements and ranked source locations."""

    issue_id: str
    comparison: ComparisonResult
    region: DiffRegion
    classification: Classification
    affected_elements: list[AffectedElement] = field(default_factory=list)
    code_references: list[CodeReference] = field(default_factory=list)
    description: str = ""
    analysis: DifferenceAnalysis | None = None

    @property
    def surface(self) -> str:
        return self.comparison.name

    @property
    def confidence(self) -> float:
        return max((r.confidence for r in self.code_references), default=0.0)

    @property
    def severity(self) -> Severity:
        return self.analysis.severity if self.analysis else Severity.UNKNOWN

    @property
    def selectors(self) -> list[str]:
        return [a.element.selector for a in self.affected_elements]

    @property
    def primary_selector(self) -> str:
        if not self.affected_elements:
            return ""
        best = max(self.affected_elements, key=lambda a: a.overlap_percentage)
        return best.element.selector

    @property
    def primary_reference(self) -> CodeReference | None:
        return self.code_references[0] if self.code_references else None


# ---------------------------------------------------------------------------
# Fixes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FixCandidate:
    """A proposed single-line source edit."""

    file_path: Path
    line_number: int
    current_content: str
    suggested_content: str
    confidence: float
    description: str
    origin: FixOrigin = FixOrigin.HEURISTIC

    @property
    def key(self) -> tuple[str, int, str]:
        return (str(self.file_path), self.line_number, self.suggested_content.strip())


@dataclass
class FixApplicationRecord:
    """Lifecycle of one candidate trial."""

    candidate: FixCandidate
    status: FixStatus
    backup_path: Path | None = None
    applied_line: int | None = None
    message: str = ""
    applied_at: datetime = field(default_factory=datetime.now)


@dataclass
class VerificationResult:
    diff_percentage_before: float
    diff_percentage_after: float
    accepted: bool
    reason: str = ""
    screenshot_path: Path | None = None
    diff_image_path: Path | None = None
    # Render or diff failed; says nothing about the fix itself.
    transient: bool = False


@dataclass(frozen=True)
class KnowledgeBaseEntry:
    """An append-only record of one verified fix attempt."""

    issue_signature: str
    fix_description: str
    outcome: Outcome
    diff_percentage_after: float
    timestamp: datetime = field(default_factory=datetime.now)
    file_path: str = ""
    line_number: int = 0
    original_content: str = ""
    suggested_content: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "issueSignature": self.issue_signature,
            "fixDescription": self.fix_description,
            "outcome": self.outcome.value,
            "diffPercentageAfter": self.diff_percentage_after,
            "timestamp": self.timestamp.isoformat(),
            "filePath": self.file_path,
            "lineNumber": self.line_number,
            "originalContent": self.original_content,
            "suggestedContent": self.suggested_content,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> KnowledgeBaseEntry:
        return cls(
            issue_signature=data["issueSignature"],
            fix_description=data.get("fixDescription", ""),
            outcome=Outcome(data["outcome"]),
            diff_percentage_after=float(data.get("diffPercentageAfter", 0.0)),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            file_path=data.get("filePath", ""),
            line_number=int(data.get("lineNumber", 0)),
            original_content=data.get("originalContent", ""),
            suggested_content=data.get("suggestedContent", ""),
        )


# ---------------------------------------------------------------------------
# Resolution / report
# ---------------------------------------------------------------------------


@dataclass
class AttemptRecord:
    record: FixApplicationRecord
    verification: VerificationResult | None = None


@dataclass
class IssueResolution:
    issue: LocalizedIssue
    status: IssueStatus
    reason: str = ""
    attempts: list[AttemptRecord] = field(default_factory=list)

    @property
    def committed(self) -> list[AttemptRecord]:
        return [a for a in self.attempts if a.record.status == FixStatus.COMMITTED]

    @property
    def label(self) -> str:
        if self.reason and self.status != IssueStatus.FIXED:
            return f"{self.status.value}: {self.reason}"
        return self.status.value


@dataclass
class SurfaceReport:
    """Per-surface summary handed to the report sink."""

    name: str
    diff_percentage: float
    regression_detected: bool
    localized: bool = False
    fix_attempted: bool = False
    outcome: str = "skipped"
    reason: str = ""
    resolutions: list[IssueResolution] = field(default_factory=list)


@dataclass
class HealingReport:
    run_id: str
    surfaces: list[SurfaceReport] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: datetime | None = None

    @property
    def resolutions(self) -> list[IssueResolution]:
        return [r for s in self.surfaces for r in s.resolutions]

    @property
    def fixed_count(self) -> int:
        return sum(1 for r in self.resolutions if r.status == IssueStatus.FIXED)

    @property
    def failed_count(self) -> int:
        return sum(
            1 for r in self.resolutions
            if r.status not in (IssueStatus.FIXED, IssueStatus.SKIPPED)
        )
