"""
Run success/failure logging for the chat import executor.

Kept out of ``executor.py`` so the executor stays focused on control flow.
Each function takes the executor as its first argument and reads the run's
tally and the ledger summary from it.
"""

from __future__ import annotations

import logging
import traceback
from typing import TYPE_CHECKING, Any

from chat_importer.exceptions import (
    ChannelConnectionError,
    LedgerError,
    RateCeilingReached,
)
from chat_importer.types import RunStatus
from chat_importer.utils.logging import log_with_context

if TYPE_CHECKING:
    from chat_importer.core.executor import DeliveryExecutor


def _collect_statistics(executor: DeliveryExecutor) -> dict[str, Any]:
    """Gather run and ledger figures into a flat dict.

    Used both as structured log kwargs and for the human-readable lines.
    """
    result = executor.result
    summary = executor.context.ledger.summary
    return {
        "selected": result.selected,
        "attempted": result.attempted,
        "sent": result.sent,
        "failed": result.failed,
        "skipped_delivered": result.skipped_delivered,
        "skipped_exhausted": result.skipped_exhausted,
        "total_jobs": summary.total_jobs,
        "successful_jobs": summary.successful_jobs,
        "failed_jobs": summary.failed_jobs,
    }


def log_run_success(executor: DeliveryExecutor, duration: float) -> None:
    """Log the outcome of a run that completed or was paused.

    Args:
        executor: The executor whose run just ended
        duration: Run duration in seconds
    """
    stats = _collect_statistics(executor)
    is_dry_run = executor.context.dry_run
    paused = executor.result.status is RunStatus.PAUSED

    if paused:
        log_with_context(logging.WARNING, "IMPORT PAUSED", outcome="paused")
    elif is_dry_run:
        log_with_context(
            logging.INFO, "DRY RUN COMPLETED SUCCESSFULLY", outcome="dry_run_complete"
        )
    elif stats["selected"] == 0:
        log_with_context(
            logging.INFO,
            "NOTHING TO DO - EVERY JOB IS ALREADY DELIVERED OR OUT OF ATTEMPTS",
            outcome="no_work",
        )
    else:
        log_with_context(logging.INFO, "IMPORT COMPLETED", outcome="success")

    log_with_context(
        logging.INFO,
        f"Duration: {duration / 60:.1f} minutes ({duration:.1f} seconds)",
        duration_seconds=duration,
    )
    log_with_context(
        logging.INFO,
        f"Messages sent this run: {stats['sent']} of {stats['selected']} selected",
        stat="sent",
        count=stats["sent"],
    )
    log_with_context(
        logging.INFO,
        f"Delivered overall: {stats['successful_jobs']}/{stats['total_jobs']}",
        stat="successful_jobs",
        count=stats["successful_jobs"],
    )

    if stats["failed_jobs"] > 0:
        log_with_context(
            logging.WARNING,
            f"Failed messages: {stats['failed_jobs']}"
            f" ({stats['skipped_exhausted']} were out of attempts before this run)",
            stat="failed_jobs",
            count=stats["failed_jobs"],
        )
        log_with_context(
            logging.INFO,
            "Run again to retry failed messages, or use 'reset --failed_only'"
            " to give them a fresh set of attempts.",
        )
    elif paused:
        log_with_context(
            logging.INFO, "Run the same command again to continue where it stopped."
        )
    elif is_dry_run:
        log_with_context(
            logging.INFO,
            "Rehearsal complete. Run without --dry_run to send the messages.",
        )
    else:
        log_with_context(logging.INFO, "No issues detected")


def log_run_failure(
    executor: DeliveryExecutor, exception: BaseException, duration: float
) -> None:
    """Log the outcome of a run that stopped on an error or interrupt.

    Args:
        executor: The executor whose run just ended
        exception: The exception that stopped it
        duration: Run duration in seconds before the failure
    """
    is_interrupt = isinstance(exception, KeyboardInterrupt)
    stats = _collect_statistics(executor)
    prefix = "DRY RUN " if executor.context.dry_run else "IMPORT "

    if is_interrupt:
        log_with_context(
            logging.WARNING,
            prefix + "INTERRUPTED BY USER",
            outcome="interrupted",
            exception_type="KeyboardInterrupt",
        )
    else:
        log_with_context(
            logging.ERROR,
            prefix + "FAILED",
            outcome="failed",
            exception_type=type(exception).__name__,
            exception_message=str(exception),
            reason_code=(
                executor.result.reason_code.value
                if executor.result.reason_code
                else None
            ),
        )
        log_with_context(
            logging.ERROR,
            f"Exception: {type(exception).__name__}: {exception!s}",
        )

    level = logging.WARNING if is_interrupt else logging.ERROR
    log_with_context(
        level,
        f"Duration before stopping: {duration / 60:.1f} minutes ({duration:.1f} seconds)",
        duration_seconds=duration,
    )
    log_with_context(
        level,
        f"Progress: {stats['successful_jobs']}/{stats['total_jobs']} delivered,"
        f" {stats['failed_jobs']} failed, {stats['sent']} sent this run",
        stat="successful_jobs",
        count=stats["successful_jobs"],
    )

    known = (ChannelConnectionError, RateCeilingReached, LedgerError)
    if not is_interrupt and not isinstance(exception, known):
        tb = traceback.format_exc()
        if tb and tb.strip() != "NoneType: None":
            log_with_context(logging.ERROR, f"Traceback:\n{tb}")

    if is_interrupt:
        log_with_context(
            logging.WARNING,
            "Progress is saved. Run the same command again to resume.",
        )
    elif isinstance(exception, RateCeilingReached):
        log_with_context(
            logging.ERROR,
            "Daily ceiling reached. Try again once the 24 hour window frees up.",
        )
    elif isinstance(exception, ChannelConnectionError):
        log_with_context(
            logging.ERROR,
            "Connection to the channel was lost. Check the gateway and run again"
            " to resume.",
        )
    elif isinstance(exception, LedgerError):
        log_with_context(
            logging.ERROR,
            "Progress files could not be used. Inspect them (or restore a backup)"
            " before running again.",
        )
    else:
        log_with_context(
            logging.ERROR,
            "Unexpected internal error. Check the traceback above and report it.",
        )
