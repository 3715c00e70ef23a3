"""Wiring: comparison results in, healing report out."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any

from pixelmend.adapters.generation import NullGenerator, build_generator
from pixelmend.adapters.imaging import PixelDiff
from pixelmend.adapters.render import CommandRenderer
from pixelmend.core.capabilities import (
    DiffCapability,
    GenerationCapability,
    RenderCapability,
    ReportSink,
)
from pixelmend.core.config import PixelmendConfig, get_pixelmend_dir, load_config
from pixelmend.core.models import ComparisonResult, HealingReport
from pixelmend.fix.ai_fixer import GeneratedFixer
from pixelmend.fix.applier import FixApplier
from pixelmend.fix.generator import FixGenerator
from pixelmend.fix.heuristics import HeuristicFixer
from pixelmend.fix.verifier import FixVerifier
from pixelmend.heal.controller import SelfHealingController
from pixelmend.heal.report import build_report
from pixelmend.index.changes import ChangeDetector, GitChangeDetector, StaticChangeDetector
from pixelmend.index.mapper import UICodeMapper
from pixelmend.index.source_index import SourceIndex, SourceIndexer
from pixelmend.knowledge.store import KnowledgeStore, SqliteKnowledgeStore
from pixelmend.localize.localizer import IssueLocalizer, LocalizationRun
from pixelmend.segment.classify import DifferenceClassifier
from pixelmend.segment.segmenter import RegionSegmenter

logger = logging.getLogger(__name__)


def new_run_id() -> str:
    return f"{datetime.now().strftime('%Y%m%dT%H%M%S')}-{uuid.uuid4().hex[:6]}"


def load_results(path: Path) -> list[ComparisonResult]:
    """Read comparator output: a list of results or ``{"results": [...]}``."""
    data = json.loads(Path(path).read_text())
    if isinstance(data, dict):
        data = data.get("results", [])
    base = Path(path).parent
    results = []
    for item in data:
        result = ComparisonResult.from_dict(item)
        results.append(_rebase(result, base))
    return results


def _rebase(result: ComparisonResult, base: Path) -> ComparisonResult:
    """Resolve relative image paths against the results file's directory."""
    def fix(p: Path | None) -> Path | None:
        if p is None or p.is_absolute() or str(p) in ("", "."):
            return p
        return base / p

    return replace(
        result,
        baseline_path=fix(result.baseline_path),
        current_path=fix(result.current_path),
        diff_path=fix(result.diff_path),
    )


class HealingPipeline:
    """Builds every component from configuration and runs a healing pass."""

    def __init__(
        self,
        project_path: Path,
        config: PixelmendConfig | None = None,
        renderer: RenderCapability | None = None,
        differ: DiffCapability | None = None,
        generator: GenerationCapability | None = None,
        knowledge: KnowledgeStore | None = None,
        change_detector: ChangeDetector | None = None,
        sinks: list[ReportSink] | None = None,
        run_id: str | None = None,
    ):
        self.project_path = Path(project_path).resolve()
        self.config = config or load_config(self.project_path)
        self.run_id = run_id or new_run_id()
        self.pixelmend_dir = get_pixelmend_dir(self.project_path)
        self.run_dir = self.pixelmend_dir / "runs" / self.run_id

        self.renderer = renderer
        self.differ = differ or PixelDiff()
        self.generator = generator if generator is not None else build_generator(self.config.generation)
        self._knowledge = knowledge
        if change_detector is None:
            change_detector = GitChangeDetector() if self.config.source.use_git else StaticChangeDetector()
        self.change_detector = change_detector
        self.sinks = sinks or []

    @property
    def knowledge(self) -> KnowledgeStore:
        if self._knowledge is None:
            self._knowledge = SqliteKnowledgeStore(self.project_path / self.config.knowledge.path)
        return self._knowledge

    @property
    def source_root(self) -> Path:
        return self.project_path / self.config.source.root

    def build_index(self) -> SourceIndex:
        index = SourceIndexer(
            self.source_root,
            exclude=self.config.exclude,
            extensions=self.config.source.extensions,
        ).build()
        marked = index.mark_modified(self.change_detector.modified_files(self.source_root))
        if marked:
            logger.info("%d indexed file(s) modified since the last commit", marked)
        return index

    def localize(
        self,
        results: list[ComparisonResult],
        element_records: dict[str, list[dict[str, Any]]],
        index: SourceIndex | None = None,
    ) -> LocalizationRun:
        if index is None:
            index = self.build_index()
        mapper = UICodeMapper(index)
        elements = {name: mapper.map_elements(raw) for name, raw in element_records.items()}

        classifier = None
        if self.config.generation.classify_differences and not isinstance(self.generator, NullGenerator):
            classifier = DifferenceClassifier(self.generator, timeout=self.config.generation.timeout)

        localizer = IssueLocalizer(
            index,
            elements,
            segmenter=RegionSegmenter(self.config.segment.min_region_pixels),
            config=self.config.localize,
            classifier=classifier,
        )
        return localizer.localize(results)

    def build_controller(self) -> SelfHealingController:
        renderer = self.renderer
        if renderer is None:
            renderer = CommandRenderer(
                self.config.verify.render_command,
                cwd=self.project_path,
                timeout=self.config.verify.render_timeout,
            )

        generated = None
        if not isinstance(self.generator, NullGenerator):
            generated = GeneratedFixer(
                self.generator,
                project_path=self.project_path,
                context_lines=self.config.fix.context_lines,
                timeout=self.config.generation.timeout,
            )

        fix_generator = FixGenerator(
            heuristic=HeuristicFixer(self.change_detector),
            knowledge=self.knowledge,
            generated=generated,
            config=self.config.fix,
        )
        return SelfHealingController(
            generator=fix_generator,
            applier=FixApplier(self.project_path, self.run_id, self.config.fix),
            verifier=FixVerifier(renderer, self.differ, self.config.verify),
            knowledge=self.knowledge,
            run_dir=self.run_dir,
            config=self.config.heal,
        )

    def heal(
        self,
        results: list[ComparisonResult],
        element_records: dict[str, list[dict[str, Any]]],
        controller: SelfHealingController | None = None,
    ) -> HealingReport:
        """Localize, attempt fixes, and emit the report to every sink."""
        started = datetime.now()
        localization = self.localize(results, element_records)
        controller = controller or self.build_controller()
        resolutions = controller.run(localization.issues)

        report = build_report(self.run_id, localization, resolutions, started_at=started)
        for sink in self.sinks:
            sink.emit(report)
        logger.info(
            "Run %s: %d fixed, %d unresolved", self.run_id, report.fixed_count, report.failed_count
        )
        return report
