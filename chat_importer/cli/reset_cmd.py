"""CLI command handlers for ledger maintenance and config scaffolding."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import click

from chat_importer.cli.common import cli, common_options, fail, load_plan_dir
from chat_importer.core.config import create_default_config
from chat_importer.core.context import ledger_file_names
from chat_importer.core.ledger import ProgressLedger
from chat_importer.utils.logging import log_with_context, setup_logger

# ---------------------------------------------------------------------------
# reset subcommand
# ---------------------------------------------------------------------------


@cli.command()
@common_options
@click.option(
    "--failed_only",
    is_flag=True,
    default=False,
    help="Only reopen failed messages; delivered messages stay delivered",
)
@click.option(
    "--dry_run",
    is_flag=True,
    default=False,
    help="Reset the dry-run progress instead of the real one",
)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt.")
def reset(
    plan_dir: Path,
    verbose: bool,
    failed_only: bool,
    dry_run: bool,
    yes: bool,
) -> None:
    """Back up and reset the progress recorded for the plan in PLAN_DIR.

    A full reset makes every message eligible to be sent again, including
    ones already delivered.

    Args:
        plan_dir: Directory holding import-plan.json.
        verbose: Enable verbose console logging.
        failed_only: Only drop failed attempts.
        dry_run: Reset the dry-run ledger.
        yes: Skip confirmation prompt.
    """
    setup_logger(verbose)

    if not yes:
        prompt = (
            "This will reopen every failed message. Continue?"
            if failed_only
            else "This will discard ALL progress; delivered messages will be sent"
            " again on the next run. Continue?"
        )
        if not click.confirm(prompt):
            click.echo("Reset cancelled.")
            sys.exit(0)

    try:
        plan = load_plan_dir(plan_dir)
        summary_name, log_name = ledger_file_names(dry_run)
        ledger = ProgressLedger.open(
            plan_dir,
            plan_ref=str(plan.path),
            total_jobs=len(plan),
            summary_name=summary_name,
            log_name=log_name,
            job_sources=plan.job_sources if failed_only else None,
        )
        ledger.create_backup()
        if failed_only:
            count = ledger.reset_failed()
            log_with_context(logging.INFO, f"Reopened {count} failed messages")
        else:
            ledger.reset()
            log_with_context(logging.INFO, "All progress discarded")
    except Exception as e:
        fail(e)


# ---------------------------------------------------------------------------
# init-config subcommand
# ---------------------------------------------------------------------------


@cli.command("init-config")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
def init_config(path: Path) -> None:
    """Write a default configuration file to PATH.

    Args:
        path: Where to write the config file; never overwritten.
    """
    setup_logger()
    if not create_default_config(path):
        sys.exit(1)
