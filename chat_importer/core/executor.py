"""Delivery executor: drives a transfer plan through a channel adapter.

The executor walks the plan in order and, for every job the ledger says still
needs work, waits for the pacing controller, hands the job to the adapter and
records the outcome in the ledger before moving on. ``run()`` is a generator:
the caller drains it and receives a ``ProgressEvent`` after each attempt.

Pause and cancel are cooperative and only take effect between jobs.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

from chat_importer.core.context import RunContext
from chat_importer.core.job import TransferJob
from chat_importer.core.ledger import LedgerEntry
from chat_importer.core.plan import TransferPlan
from chat_importer.exceptions import (
    ChannelConnectionError,
    InvalidTransitionError,
    JobDeliveryError,
    LedgerError,
    RateCeilingReached,
)
from chat_importer.services.channel_adapter import ChannelAdapter, deliver
from chat_importer.types import (
    ProgressEvent,
    ReasonCode,
    ResumeAction,
    RunResult,
    RunState,
    RunStatus,
)
from chat_importer.utils.logging import log_with_context

RUN_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.IDLE: frozenset({RunState.RUNNING}),
    RunState.RUNNING: frozenset(
        {RunState.PAUSED, RunState.COMPLETED, RunState.FAILED}
    ),
    RunState.PAUSED: frozenset({RunState.RUNNING, RunState.FAILED}),
    RunState.COMPLETED: frozenset(),
    RunState.FAILED: frozenset(),
}


class DeliveryExecutor:
    """Runs one plan against one channel.

    Args:
        plan: The validated transfer plan
        context: Ledger, pacing and configuration for this run
        adapter: The channel to deliver through; may be None for dry runs
        media_dir: Directory relative media paths are resolved against,
            defaults to the plan's directory
    """

    def __init__(
        self,
        plan: TransferPlan,
        context: RunContext,
        adapter: ChannelAdapter | None = None,
        media_dir: Path | None = None,
    ) -> None:
        if adapter is None and not context.dry_run:
            raise ValueError("A channel adapter is required unless running dry")
        self.plan = plan
        self.context = context
        self.adapter = adapter
        if media_dir is None and plan.path is not None:
            media_dir = plan.path.parent
        self.media_dir = media_dir

        self.state = RunState.IDLE
        self.result = RunResult(status=RunStatus.RUNNING)
        self._queue: list[tuple[int, TransferJob]] = []
        self._cursor = 0
        self._pause_requested = False

    # -- Run-level state ------------------------------------------------------

    def _set_state(self, target: RunState) -> None:
        if target not in RUN_TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state, target, subject="run")
        self.state = target

    def pause(self) -> None:
        """Ask the run to stop before the next job."""
        if self.state in (RunState.IDLE, RunState.RUNNING):
            self._pause_requested = True

    def resume(self) -> Iterator[ProgressEvent]:
        """Continue a paused run; returns a fresh event stream."""
        self._set_state(RunState.RUNNING)
        self._pause_requested = False
        self.context.ledger.set_status(RunStatus.RUNNING)
        self.result.status = RunStatus.RUNNING
        self.result.reason_code = None
        self.result.reason = None
        log_with_context(
            logging.INFO,
            f"{self.context.log_prefix}Resuming run at job "
            f"{self._cursor + 1} of {len(self._queue)} selected",
        )
        return self._loop()

    def cancel(self, reason: str = "Run cancelled by operator") -> None:
        """Abandon a paused run."""
        self._set_state(RunState.FAILED)
        self._record_stop(RunStatus.FAILED, ReasonCode.CANCELLED, reason)

    def interrupt(self) -> None:
        """Record a user interrupt that arrived while the caller held an event.

        Interrupts raised inside the loop are recorded there; this covers the
        gap between two attempts, where no job is in flight.
        """
        if self.state is not RunState.RUNNING:
            return
        self._set_state(RunState.PAUSED)
        self._record_stop(RunStatus.PAUSED, ReasonCode.PAUSED, "Interrupted by user")

    @property
    def remaining(self) -> int:
        return len(self._queue) - self._cursor

    # -- Main loop ------------------------------------------------------------

    def run(self) -> Iterator[ProgressEvent]:
        """Execute the plan, yielding a progress event after every attempt.

        Raises:
            RateCeilingReached: The rolling daily ceiling is full
            ChannelConnectionError: The channel went away mid-run
            InvalidTransitionError: A job or run moved through a forbidden
                transition
            LedgerError: Progress could not be persisted
        """
        self._set_state(RunState.RUNNING)
        self._prepare()
        yield from self._loop()

    def _prepare(self) -> None:
        """Rebuild job statuses from the ledger and select what to attempt."""
        ledger = self.context.ledger
        max_attempts = self.context.max_attempts
        self._queue = []
        self._cursor = 0

        for position, job in enumerate(self.plan.jobs, start=1):
            job.restore(ledger.latest(job.id))
            action = ledger.classify(job.id, max_attempts)
            if action is ResumeAction.SKIP:
                self.result.skipped_delivered += 1
            elif action is ResumeAction.EXHAUSTED:
                self.result.skipped_exhausted += 1
                log_with_context(
                    logging.DEBUG,
                    f"Job {job.id} has used all {max_attempts} attempts, not retrying",
                    job_id=job.id,
                )
            else:
                self._queue.append((position, job))

        self.result.selected = len(self._queue)
        ledger.set_status(RunStatus.RUNNING)

        log_with_context(
            logging.INFO,
            f"{self.context.log_prefix}Starting run: {len(self._queue)} of "
            f"{len(self.plan)} jobs selected ({self.result.skipped_delivered} already "
            f"delivered, {self.result.skipped_exhausted} out of attempts)",
            selected=len(self._queue),
        )

    def _loop(self) -> Iterator[ProgressEvent]:
        while self._cursor < len(self._queue):
            if self._pause_requested:
                self._pause()
                return

            position, job = self._queue[self._cursor]
            try:
                self.context.pacing.wait()
                event = self._attempt(position, job)
            except RateCeilingReached as e:
                self._fail(ReasonCode.RATE_CEILING, str(e))
                raise
            except ChannelConnectionError as e:
                job.restore(self.context.ledger.latest(job.id))
                self._fail(ReasonCode.CONNECTION_LOST, str(e), job_id=job.id)
                raise
            except LedgerError:
                # Progress files can no longer be trusted, leave them as they are
                self._set_state(RunState.FAILED)
                self.result.status = RunStatus.FAILED
                raise
            except KeyboardInterrupt:
                job.restore(self.context.ledger.latest(job.id))
                self._set_state(RunState.PAUSED)
                self._record_stop(
                    RunStatus.PAUSED, ReasonCode.PAUSED, "Interrupted by user"
                )
                raise
            except Exception as e:
                job.restore(self.context.ledger.latest(job.id))
                log_with_context(
                    logging.CRITICAL,
                    f"Internal error while processing job {job.id}: "
                    f"{type(e).__name__}: {e}",
                    job_id=job.id,
                    exc_info=True,
                )
                self._fail(
                    ReasonCode.INTERNAL_ERROR, f"{type(e).__name__}: {e}", job_id=job.id
                )
                raise

            self._cursor += 1
            yield event

        self._complete()

    def _attempt(self, position: int, job: TransferJob) -> ProgressEvent:
        ledger = self.context.ledger
        pacing = self.context.pacing

        job.mark_processing()
        self.result.attempted += 1
        try:
            if self.context.dry_run:
                external_id = None
            else:
                external_id = deliver(self.adapter, job, self.media_dir)
        except JobDeliveryError as e:
            pacing.record_attempt(success=False)
            job.mark_failed(str(e) or type(e).__name__)
            ledger.record_attempt(
                LedgerEntry.failed(
                    job.id,
                    job.source_id,
                    job.last_error,
                    retry_count=job.failed_attempts,
                ),
                position=position,
            )
            self.result.failed += 1
            log_with_context(
                logging.WARNING,
                f"Failed to deliver job {job.id} (attempt {job.attempt_count}): {e}",
                job_id=job.id,
                position=position,
                outcome="failed",
            )
        except ChannelConnectionError:
            pacing.record_attempt(success=False)
            raise
        else:
            pacing.record_attempt(success=True)
            job.mark_sent(external_id)
            ledger.record_attempt(
                LedgerEntry.sent(
                    job.id,
                    job.source_id,
                    retry_count=job.failed_attempts,
                    external_message_id=external_id,
                ),
                position=position,
            )
            self.result.sent += 1
            log_with_context(
                logging.DEBUG,
                f"{self.context.log_prefix}Delivered job {job.id} "
                f"({position}/{len(self.plan)})",
                job_id=job.id,
                position=position,
                outcome="sent",
            )

        summary = ledger.summary
        return ProgressEvent(
            position=position,
            total=len(self.plan),
            job_id=job.id,
            outcome=job.status,
            attempted=self.result.attempted,
            selected=self.result.selected,
            successful=summary.successful_jobs,
            failed=summary.failed_jobs,
            error=job.last_error,
        )

    # -- Stopping -------------------------------------------------------------

    def _complete(self) -> None:
        self.context.ledger.set_status(RunStatus.COMPLETED)
        self._set_state(RunState.COMPLETED)
        self.result.status = RunStatus.COMPLETED
        log_with_context(
            logging.INFO,
            f"{self.context.log_prefix}Run completed: {self.result.sent} sent, "
            f"{self.result.failed} failed in this run",
        )

    def _pause(self) -> None:
        self._set_state(RunState.PAUSED)
        self._record_stop(RunStatus.PAUSED, ReasonCode.PAUSED, "Paused by operator")
        log_with_context(
            logging.INFO,
            f"{self.context.log_prefix}Run paused with {self.remaining} jobs left",
        )

    def _fail(self, reason_code: ReasonCode, reason: str, job_id: str | None = None) -> None:
        self._set_state(RunState.FAILED)
        self._record_stop(RunStatus.FAILED, reason_code, reason)
        log_with_context(
            logging.ERROR,
            f"{self.context.log_prefix}Run stopped: {reason}",
            reason_code=reason_code.value,
            job_id=job_id,
        )

    def _record_stop(
        self, status: RunStatus, reason_code: ReasonCode, reason: str
    ) -> None:
        self.context.ledger.set_status(status, reason_code, reason)
        self.result.status = status
        self.result.reason_code = reason_code
        self.result.reason = reason
