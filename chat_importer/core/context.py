"""Immutable run context.

RunContext is a frozen dataclass that holds the configuration and the
stateful collaborators (ledger, pacing) for one execution of a plan.  It is
created once by the caller and handed to the executor explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from chat_importer.constants import (
    DRY_RUN_LOG_FILE,
    DRY_RUN_SUMMARY_FILE,
    PROGRESS_LOG_FILE,
    PROGRESS_SUMMARY_FILE,
)
from chat_importer.core.config import ImporterConfig
from chat_importer.core.ledger import ProgressLedger
from chat_importer.core.pacing import PacingController
from chat_importer.core.plan import TransferPlan


def ledger_file_names(dry_run: bool) -> tuple[str, str]:
    """(summary, log) file names for a real or rehearsal run."""
    if dry_run:
        return DRY_RUN_SUMMARY_FILE, DRY_RUN_LOG_FILE
    return PROGRESS_SUMMARY_FILE, PROGRESS_LOG_FILE


@dataclass(frozen=True)
class RunContext:
    """Immutable context for a run. Created once, shared with the executor."""

    config: ImporterConfig
    ledger: ProgressLedger
    pacing: PacingController
    dry_run: bool = False

    @property
    def max_attempts(self) -> int:
        return self.config.max_attempts

    @property
    def log_prefix(self) -> str:
        """``"[DRY RUN] "`` for rehearsals, empty otherwise."""
        return "[DRY RUN] " if self.dry_run else ""

    @classmethod
    def build(
        cls,
        plan: TransferPlan,
        plan_dir: Path,
        config: ImporterConfig,
        dry_run: bool = False,
    ) -> RunContext:
        """Open the ledger for ``plan`` and seed pacing from its history.

        Raises:
            LedgerError: If existing progress files cannot be used
        """
        summary_name, log_name = ledger_file_names(dry_run)
        ledger = ProgressLedger.open(
            plan_dir,
            plan_ref=str(plan.path or plan_dir),
            total_jobs=len(plan),
            summary_name=summary_name,
            log_name=log_name,
            job_sources=plan.job_sources,
        )
        pacing = PacingController(
            min_delay=config.min_delay,
            max_delay=config.max_delay,
            daily_ceiling=config.daily_ceiling,
        )
        if not dry_run:
            pacing.seed(ledger.attempt_timestamps())
        return cls(config=config, ledger=ledger, pacing=pacing, dry_run=dry_run)
