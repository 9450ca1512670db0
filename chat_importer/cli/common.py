"""Shared CLI infrastructure: option decorators, error handlers, and the CLI group."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Callable, NoReturn

import click

import chat_importer
from chat_importer.constants import DEFAULT_CONFIG_FILE, PLAN_FILE_NAME
from chat_importer.core.config import ImporterConfig, load_config
from chat_importer.core.plan import TransferPlan, load_plan
from chat_importer.exceptions import (
    ChannelConnectionError,
    ConfigError,
    ImporterError,
    LedgerError,
    PlanError,
    PlanNotFoundError,
    RateCeilingReached,
)
from chat_importer.utils.logging import log_with_context


# Exit code for a user interrupt (128 + SIGINT)
EXIT_INTERRUPTED = 130


# ---------------------------------------------------------------------------
# Shared option decorator
# ---------------------------------------------------------------------------


def common_options(f: Callable[..., None]) -> Callable[..., None]:
    """Decorator that adds options shared across subcommands.

    Args:
        f: The Click command function to decorate.

    Returns:
        The decorated function with common options attached.
    """
    f = click.argument(
        "plan_dir",
        type=click.Path(file_okay=False, path_type=Path),
    )(f)
    f = click.option(
        "--verbose",
        "-v",
        is_flag=True,
        default=False,
        help="Enable verbose console logging (shows DEBUG level messages)",
    )(f)
    return f


def config_option(f: Callable[..., None]) -> Callable[..., None]:
    """Decorator that adds the --config option."""
    return click.option(
        "--config",
        default=DEFAULT_CONFIG_FILE,
        show_default=True,
        help="Path to config YAML",
    )(f)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group(
    invoke_without_command=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
@click.version_option(version=chat_importer.__version__, prog_name="chat-importer")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Execute chat import plans against a messaging channel.

    Args:
        ctx: The Click context (injected by ``@click.pass_context``).
    """
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# ---------------------------------------------------------------------------
# Loading helpers
# ---------------------------------------------------------------------------


def load_plan_dir(plan_dir: Path) -> TransferPlan:
    """Load ``import-plan.json`` from a plan directory."""
    if not plan_dir.is_dir():
        raise PlanNotFoundError(f"Plan directory not found: {plan_dir}")
    return load_plan(plan_dir / PLAN_FILE_NAME)


def load_cli_config(config: str) -> ImporterConfig:
    return load_config(Path(config))


# ---------------------------------------------------------------------------
# Error handlers
# ---------------------------------------------------------------------------


def handle_exception(e: BaseException) -> None:
    """Log an error with guidance matching its category.

    Args:
        e: The exception to handle.
    """
    if isinstance(e, ConfigError):
        log_with_context(logging.ERROR, f"Configuration error: {e}")
        log_with_context(
            logging.INFO,
            "Fix the config file or command line options and try again.",
        )
    elif isinstance(e, PlanError):
        log_with_context(logging.ERROR, f"Invalid import plan: {e}")
        log_with_context(
            logging.INFO,
            "Regenerate the plan or check that PLAN_DIR points at the right directory.",
        )
    elif isinstance(e, LedgerError):
        log_with_context(logging.ERROR, f"Progress ledger error: {e}")
        log_with_context(
            logging.INFO,
            "Inspect progress.json / progress.jsonl, or restore a backup, before"
            " running again.",
        )
    elif isinstance(e, RateCeilingReached):
        log_with_context(logging.ERROR, str(e))
        log_with_context(
            logging.INFO,
            "Try again once the rolling 24 hour window frees up. Progress is saved.",
        )
    elif isinstance(e, ChannelConnectionError):
        log_with_context(logging.ERROR, f"Channel connection lost: {e}")
        log_with_context(
            logging.INFO,
            "Check the gateway, then run the same command to resume.",
        )
    elif isinstance(e, ImporterError):
        log_with_context(logging.ERROR, str(e))
    elif isinstance(e, KeyboardInterrupt):
        log_with_context(logging.WARNING, "Import interrupted by user.")
        log_with_context(
            logging.INFO, "All progress has been saved. Run the same command to resume."
        )
    else:
        log_with_context(logging.ERROR, f"Import failed: {e}", exc_info=True)


def exit_code_for(e: BaseException) -> int:
    """Process exit code for an exception."""
    if isinstance(e, KeyboardInterrupt):
        return EXIT_INTERRUPTED
    if isinstance(e, ImporterError):
        return e.exit_code
    return 1


def fail(e: BaseException) -> NoReturn:
    """Handle ``e`` and exit with its category's exit code."""
    handle_exception(e)
    sys.exit(exit_code_for(e))
