"""CLI command handler for executing an import plan."""

from __future__ import annotations

import logging
import re
import signal
import sys
import time
from pathlib import Path

import click
from tqdm import tqdm

from chat_importer.cli.common import (
    EXIT_INTERRUPTED,
    cli,
    common_options,
    config_option,
    fail,
    load_cli_config,
    load_plan_dir,
)
from chat_importer.constants import DESTINATION_PATTERN, MAX_ALLOWED_ATTEMPTS
from chat_importer.core.config import ImporterConfig, parse_sleep_range
from chat_importer.core.context import RunContext
from chat_importer.core.executor import DeliveryExecutor
from chat_importer.core.run_logging import log_run_failure, log_run_success
from chat_importer.exceptions import ConfigError
from chat_importer.services.http_channel import HttpChannelAdapter
from chat_importer.types import RunResult, RunStatus
from chat_importer.utils.logging import log_with_context, setup_logger


def validate_destination(destination: str) -> str:
    """Check a ``--target_chat`` value (``number@c.us`` or ``groupid@g.us``)."""
    if not re.match(DESTINATION_PATTERN, destination):
        raise ConfigError(
            f"Invalid target chat id {destination!r}: use number@c.us for a contact"
            " or groupid@g.us for a group"
        )
    return destination


def build_run_config(
    config: str,
    sleep_range: str | None,
    max_attempts: int | None,
    daily_ceiling: int | None,
    channel_url: str | None,
) -> ImporterConfig:
    """Load the YAML config and apply command line overrides."""
    cfg = load_cli_config(config)
    min_delay = max_delay = None
    if sleep_range is not None:
        min_delay, max_delay = parse_sleep_range(sleep_range)
    return cfg.with_overrides(
        min_delay=min_delay,
        max_delay=max_delay,
        max_attempts=max_attempts,
        daily_ceiling=daily_ceiling,
        channel_base_url=channel_url,
    )


def print_run_summary(result: RunResult, dry_run: bool = False) -> None:
    """Print the final tally of a run to the console."""
    click.echo("\n" + "=" * 60)
    click.echo("DRY RUN SUMMARY" if dry_run else "IMPORT SUMMARY")
    click.echo("=" * 60)
    rows = [("Status", result.status.value)]
    if result.reason:
        rows.append(("Reason", result.reason))
    rows += [
        ("Selected this run", result.selected),
        ("Would be sent" if dry_run else "Sent", result.sent),
        ("Failed", result.failed),
        ("Already delivered", result.skipped_delivered),
        ("Out of attempts", result.skipped_exhausted),
    ]
    for label, value in rows:
        click.echo(f"{label + ':':<24}{value}")
    click.echo("=" * 60)


def run_executor(executor: DeliveryExecutor) -> RunResult:
    """Drain the executor with a progress bar.

    The first Ctrl+C asks the executor to pause after the message in flight;
    a second one interrupts immediately.
    """
    start_time = time.time()
    previous_handler = signal.getsignal(signal.SIGINT)

    def request_pause(signum, frame):
        click.echo(
            "\nPausing after the current message (press Ctrl+C again to stop now)...",
            err=True,
        )
        executor.pause()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    signal.signal(signal.SIGINT, request_pause)
    desc = f"{executor.context.log_prefix}Importing messages"
    try:
        with tqdm(desc=desc, unit="msg") as pbar:
            for event in executor.run():
                if pbar.total != event.selected:
                    pbar.total = event.selected
                    pbar.refresh()
                pbar.update(1)
                pbar.set_postfix(sent=event.successful, failed=event.failed)
    except (Exception, KeyboardInterrupt) as e:
        if isinstance(e, KeyboardInterrupt):
            executor.interrupt()
        log_run_failure(executor, e, time.time() - start_time)
        fail(e)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    log_run_success(executor, time.time() - start_time)
    return executor.result


@cli.command()
@common_options
@config_option
@click.option(
    "--target_chat",
    default=None,
    help="Send every message to this chat instead of the plan's destination"
    " (number@c.us or groupid@g.us)",
)
@click.option(
    "--dry_run",
    is_flag=True,
    default=False,
    help="Rehearse the run without contacting the channel (tracked separately)",
)
@click.option(
    "--sleep",
    "sleep_range",
    default=None,
    help='Delay between messages in seconds, e.g. "5" or "3-10"',
)
@click.option(
    "--max_attempts",
    type=click.IntRange(1, MAX_ALLOWED_ATTEMPTS),
    default=None,
    help="Failed attempts allowed per message before giving up on it",
)
@click.option(
    "--daily_ceiling",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum attempts in any rolling 24 hour window",
)
@click.option(
    "--channel_url",
    default=None,
    help="Base URL of the messaging gateway (overrides channel.base_url)",
)
@click.option(
    "--json_logs",
    is_flag=True,
    default=False,
    help="Write the run log file in the plan directory as JSON lines",
)
def execute(
    plan_dir: Path,
    config: str,
    verbose: bool,
    target_chat: str | None,
    dry_run: bool,
    sleep_range: str | None,
    max_attempts: int | None,
    daily_ceiling: int | None,
    channel_url: str | None,
    json_logs: bool,
) -> None:
    """Execute the import plan in PLAN_DIR, resuming any earlier progress.

    Args:
        plan_dir: Directory holding import-plan.json.
        config: Path to config YAML.
        verbose: Enable verbose console logging.
        target_chat: Destination override for every job.
        dry_run: Rehearse without contacting the channel.
        sleep_range: Delay override ("5" or "3-10").
        max_attempts: Retry limit override.
        daily_ceiling: Rolling daily ceiling override.
        channel_url: Gateway base URL override.
        json_logs: Write the run log as JSON lines.
    """
    setup_logger(verbose, str(plan_dir) if plan_dir.is_dir() else None, json_logs)

    try:
        cfg = build_run_config(
            config, sleep_range, max_attempts, daily_ceiling, channel_url
        )
        plan = load_plan_dir(plan_dir)
        if target_chat:
            plan.with_destination(validate_destination(target_chat))
            log_with_context(logging.INFO, f"Sending all messages to {target_chat}")

        adapter = None
        if not dry_run:
            if not cfg.channel.base_url:
                raise ConfigError(
                    "No messaging gateway configured: set channel.base_url in the"
                    " config file or pass --channel_url"
                )
            adapter = HttpChannelAdapter.from_config(cfg.channel)
            adapter.check_connection()

        context = RunContext.build(plan, plan_dir, cfg, dry_run=dry_run)
    except Exception as e:
        fail(e)

    log_with_context(
        logging.INFO,
        f"{context.log_prefix}Pacing: {cfg.min_delay}-{cfg.max_delay}s between messages,"
        f" {context.pacing.remaining_today()} of {cfg.daily_ceiling} attempts left today",
    )

    executor = DeliveryExecutor(plan, context, adapter)
    result = run_executor(executor)
    print_run_summary(result, dry_run=dry_run)

    if result.status is RunStatus.PAUSED:
        sys.exit(EXIT_INTERRUPTED)
