"""pixelmend localize command."""

from __future__ import annotations

import json

import click

from pixelmend.adapters.generation import NullGenerator
from pixelmend.cli.heal_cmd import (
    change_detector_for,
    input_options,
    load_inputs,
    resolve_project,
)
from pixelmend.core.config import load_config
from pixelmend.core.errors import ConfigError
from pixelmend.core.output import console, print_issues
from pixelmend.heal.pipeline import HealingPipeline


@click.command()
@input_options
@click.option("--json", "as_json", is_flag=True, help="Print issues as JSON")
def localize(
    results_file: str | None,
    baseline_dir: str | None,
    current_dir: str | None,
    elements: str | None,
    modified: str | None,
    target: str,
    as_json: bool,
):
    """Show which source lines most likely caused each visual difference.

    Nothing is modified.
    """
    project_path = resolve_project(target)
    try:
        config = load_config(project_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e
    results, records = load_inputs(
        project_path, config, results_file, baseline_dir, current_dir, elements
    )

    pipeline = HealingPipeline(
        project_path,
        config,
        generator=None if config.generation.classify_differences else NullGenerator(),
        change_detector=change_detector_for(modified),
    )
    run = pipeline.localize(results, records)

    if as_json:
        click.echo(json.dumps(
            [
                {
                    "issueId": i.issue_id,
                    "classification": i.classification.value,
                    "confidence": round(i.confidence, 4),
                    "region": i.region.box.to_dict(),
                    "selectors": i.selectors,
                    "codeReferences": [
                        {"location": r.location, "confidence": round(r.confidence, 4)}
                        for r in i.code_references
                    ],
                }
                for i in run.issues
            ],
            indent=2,
        ))
        return

    for surface in run.surfaces:
        if not surface.localized:
            console.print(f"  [dim]{surface.name}: skipped ({surface.reason})[/dim]")
    print_issues(run.issues)
