"""pixelmend heal command."""

from __future__ import annotations

import logging
import signal
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import click

from pixelmend.adapters.generation import NullGenerator
from pixelmend.adapters.imaging import compare_directories
from pixelmend.core.config import ensure_gitignore, get_pixelmend_dir, load_config
from pixelmend.core.errors import ConfigError
from pixelmend.core.models import ComparisonResult
from pixelmend.core.output import console, get_progress
from pixelmend.heal.controller import SelfHealingController
from pixelmend.heal.pipeline import HealingPipeline, load_results
from pixelmend.heal.report import ConsoleReportSink, JsonReportSink
from pixelmend.index.changes import GitChangeDetector, StaticChangeDetector
from pixelmend.index.mapper import load_element_dir, load_elements

logger = logging.getLogger(__name__)


def load_inputs(
    project_path: Path,
    config,
    results_file: str | None,
    baseline_dir: str | None,
    current_dir: str | None,
    elements: str | None,
) -> tuple[list[ComparisonResult], dict[str, list[dict[str, Any]]]]:
    """Read comparison results and element probe records from CLI options."""
    if results_file:
        results = load_results(Path(results_file))
    elif baseline_dir and current_dir:
        results = compare_directories(
            Path(baseline_dir),
            Path(current_dir),
            get_pixelmend_dir(project_path) / "compare",
            threshold=config.verify.pixel_threshold,
        )
    else:
        raise click.UsageError("Pass --results, or both --baseline-dir and --current-dir.")

    records: dict[str, list[dict[str, Any]]] = {}
    if elements:
        path = Path(elements)
        records = load_element_dir(path) if path.is_dir() else load_elements(path)
    return results, records


def input_options(fn):
    """Options shared by commands that consume comparison results."""
    options = [
        click.option("--results", "results_file", type=click.Path(exists=True, dir_okay=False),
                     help="Comparator output (JSON list of comparison results)"),
        click.option("--baseline-dir", type=click.Path(exists=True, file_okay=False),
                     help="Directory of baseline screenshots (<surface>.png)"),
        click.option("--current-dir", type=click.Path(exists=True, file_okay=False),
                     help="Directory of current screenshots (<surface>.png)"),
        click.option("--elements", type=click.Path(exists=True),
                     help="Element probe JSON file, or a directory with one file per surface"),
        click.option("--modified", type=click.Path(exists=True, dir_okay=False),
                     help="File listing modified source files, instead of asking git"),
        click.option("--target", "-t", "target", default=".",
                     help="Project directory (default: current dir)"),
    ]
    for option in reversed(options):
        fn = option(fn)
    return fn


def resolve_project(target: str) -> Path:
    target_path = Path(target).resolve()
    return target_path if target_path.is_dir() else Path.cwd()


def change_detector_for(modified: str | None):
    """Explicit modified-file list, with git still supplying baseline content."""
    if not modified:
        return None
    return StaticChangeDetector.from_list_file(Path(modified), fallback=GitChangeDetector())


@contextmanager
def cancel_on_signals(controller: SelfHealingController) -> Iterator[None]:
    """Turn SIGINT and SIGTERM into a controlled cancel of *controller*.

    In-flight attempts still finish verify-or-revert; no new attempt starts.
    A second SIGINT falls through to the default KeyboardInterrupt.
    """
    previous = {}

    def handler(signum, frame):
        logger.warning("Received signal %d, cancelling remaining fix attempts", signum)
        controller.cancel()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, handler)
    try:
        yield
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)


@click.command()
@input_options
@click.option("--report", "report_path", type=click.Path(dir_okay=False),
              help="Write the JSON report here (default: .pixelmend/runs/<run>/report.json)")
@click.option("--workers", type=int, help="Resolve issues in parallel (default: [heal] max_workers)")
@click.option("--no-generation", is_flag=True, help="Only try heuristic and known fixes")
def heal(
    results_file: str | None,
    baseline_dir: str | None,
    current_dir: str | None,
    elements: str | None,
    modified: str | None,
    target: str,
    report_path: str | None,
    workers: int | None,
    no_generation: bool,
):
    """Localize visual regressions and try fixes until the screenshots match.

    Every applied fix is verified by re-rendering the surface. Fixes that do
    not bring the diff under the pass threshold are reverted.
    """
    project_path = resolve_project(target)
    try:
        config = load_config(project_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    if workers:
        config.heal.max_workers = workers
    if not config.verify.render_command:
        raise click.UsageError("Set [verify] render_command in pixelmend.toml to re-render surfaces.")

    ensure_gitignore(project_path)
    results, records = load_inputs(
        project_path, config, results_file, baseline_dir, current_dir, elements
    )

    pipeline = HealingPipeline(
        project_path,
        config,
        generator=NullGenerator() if no_generation else None,
        change_detector=change_detector_for(modified),
    )
    report_file = Path(report_path) if report_path else pipeline.run_dir / "report.json"
    pipeline.sinks = [JsonReportSink(report_file), ConsoleReportSink()]

    console.print(f"\n  [bold]pixelmend[/bold]  run {pipeline.run_id}")
    console.print(f"  {len(results)} surface(s) to check\n")

    with get_progress() as progress:
        progress.add_task("Healing...", total=None)
        controller = pipeline.build_controller()
        with cancel_on_signals(controller):
            report = pipeline.heal(results, records, controller=controller)

    console.print(f"  Report: {report_file}\n")
    if report.failed_count:
        raise SystemExit(1)
