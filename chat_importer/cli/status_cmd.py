"""CLI command handler for inspecting import progress."""

from __future__ import annotations

import json
from pathlib import Path

import click

from chat_importer.cli.common import (
    cli,
    common_options,
    config_option,
    fail,
    load_cli_config,
    load_plan_dir,
)
from chat_importer.cli.report import build_report, print_status, write_report
from chat_importer.core.context import ledger_file_names
from chat_importer.core.ledger import ProgressLedger
from chat_importer.utils.logging import setup_logger


@cli.command()
@common_options
@config_option
@click.option(
    "--dry_run",
    is_flag=True,
    default=False,
    help="Show the progress of dry runs instead of real runs",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["human", "json"]),
    default="human",
    show_default=True,
    help="Output format",
)
@click.option(
    "--report",
    "report_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write a YAML progress report with recommendations to this file",
)
def status(
    plan_dir: Path,
    config: str,
    verbose: bool,
    dry_run: bool,
    output_format: str,
    report_file: Path | None,
) -> None:
    """Show the progress recorded for the plan in PLAN_DIR.

    Read-only: safe to run while an import is in progress.

    Args:
        plan_dir: Directory holding import-plan.json.
        config: Path to config YAML (for the retry limit).
        verbose: Enable verbose console logging.
        dry_run: Inspect the dry-run ledger.
        output_format: "human" or "json".
        report_file: Optional YAML report destination.
    """
    setup_logger(verbose)

    try:
        cfg = load_cli_config(config)
        plan = load_plan_dir(plan_dir)
        summary_name, log_name = ledger_file_names(dry_run)
        ledger = ProgressLedger.open(
            plan_dir,
            plan_ref=str(plan.path),
            total_jobs=len(plan),
            summary_name=summary_name,
            log_name=log_name,
            read_only=True,
            job_sources=plan.job_sources,
        )
        report = build_report(ledger, cfg.max_attempts)
        if report_file is not None:
            write_report(report, report_file)
    except Exception as e:
        fail(e)

    if output_format == "json":
        click.echo(json.dumps(report, indent=2))
    else:
        print_status(report, dry_run=dry_run)
