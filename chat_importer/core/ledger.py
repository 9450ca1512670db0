"""Durable progress ledger for resumable imports.

Two files live next to the plan:

* ``progress.jsonl`` - append-only log, one complete JSON record per delivery
  attempt, written with a single append per entry.
* ``progress.json`` - compacted summary, replaced wholesale (write .tmp +
  rename) on every update.

The log is the resume index: replaying it yields the latest entry per job,
which decides whether a job is skipped, retried or attempted for the first
time. Summary counters are always reconciled against that index.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from collections import Counter
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Mapping

from chat_importer.constants import (
    PROGRESS_LOG_FILE,
    PROGRESS_SUMMARY_FILE,
    SUMMARY_SCHEMA_VERSION,
    TOP_ERRORS_LIMIT,
)
from chat_importer.exceptions import LedgerError
from chat_importer.types import (
    EntryStatus,
    ErrorCount,
    LedgerEntryRecord,
    LedgerStatistics,
    ReasonCode,
    ResumeAction,
    RunStatus,
)
from chat_importer.utils.logging import log_with_context


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Ledger entry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerEntry:
    """One delivery attempt. Immutable once written."""

    job_id: str
    source_id: str
    status: EntryStatus
    timestamp: str
    retry_count: int = 0
    error_message: str | None = None
    external_message_id: str | None = None

    def __post_init__(self) -> None:
        if not self.job_id:
            raise LedgerError("Ledger entry requires a job_id")
        if not isinstance(self.status, EntryStatus):
            raise LedgerError(f"Invalid ledger entry status: {self.status!r}")
        if isinstance(self.retry_count, bool) or not isinstance(self.retry_count, int):
            raise LedgerError("Ledger entry retry_count must be an integer")
        if self.retry_count < 0:
            raise LedgerError("Retry count cannot be negative")
        if self.status is EntryStatus.FAILED and not self.error_message:
            raise LedgerError("Failed status requires an error message")
        if self.status is EntryStatus.SENT and self.error_message:
            raise LedgerError("Sent status should not have an error message")
        if self.status is EntryStatus.FAILED and self.external_message_id:
            raise LedgerError("Failed status cannot carry an external message id")
        try:
            parse_timestamp(self.timestamp)
        except (TypeError, ValueError, AttributeError):
            raise LedgerError(
                f"Ledger entry timestamp is not ISO-8601: {self.timestamp!r}"
            ) from None

    @classmethod
    def sent(
        cls,
        job_id: str,
        source_id: str,
        retry_count: int = 0,
        external_message_id: str | None = None,
    ) -> LedgerEntry:
        return cls(
            job_id=job_id,
            source_id=source_id,
            status=EntryStatus.SENT,
            timestamp=_now_iso(),
            retry_count=retry_count,
            external_message_id=external_message_id,
        )

    @classmethod
    def failed(
        cls, job_id: str, source_id: str, error_message: str, retry_count: int = 1
    ) -> LedgerEntry:
        return cls(
            job_id=job_id,
            source_id=source_id,
            status=EntryStatus.FAILED,
            timestamp=_now_iso(),
            retry_count=retry_count,
            error_message=error_message,
        )

    @classmethod
    def from_dict(cls, data: Any) -> LedgerEntry:
        if not isinstance(data, dict):
            raise LedgerError("Ledger entry must be a JSON object")
        try:
            status = EntryStatus(data.get("status"))
        except ValueError:
            raise LedgerError(
                f"Invalid ledger entry status: {data.get('status')!r}"
            ) from None
        return cls(
            job_id=data.get("job_id", ""),
            source_id=str(data.get("source_id", "")),
            status=status,
            timestamp=data.get("timestamp", ""),
            retry_count=data.get("retry_count", 0),
            error_message=data.get("error_message"),
            external_message_id=data.get("external_message_id"),
        )

    def to_dict(self) -> LedgerEntryRecord:
        record = LedgerEntryRecord(
            job_id=self.job_id,
            source_id=self.source_id,
            status=self.status.value,
            timestamp=self.timestamp,
            retry_count=self.retry_count,
        )
        if self.error_message is not None:
            record["error_message"] = self.error_message
        if self.external_message_id is not None:
            record["external_message_id"] = self.external_message_id
        return record

    def to_line(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @property
    def attempted_at(self) -> datetime:
        return parse_timestamp(self.timestamp)


# ---------------------------------------------------------------------------
# Progress summary
# ---------------------------------------------------------------------------


@dataclass
class ProgressSummary:
    """Serializable snapshot of run progress."""

    plan_ref: str
    total_jobs: int
    started_at: str
    last_updated: str
    processed_jobs: int = 0
    successful_jobs: int = 0
    failed_jobs: int = 0
    current_position: int = 0
    status: RunStatus = RunStatus.RUNNING
    reason_code: ReasonCode | None = None
    reason: str | None = None
    schema_version: int = SUMMARY_SCHEMA_VERSION

    @classmethod
    def create(cls, plan_ref: str, total_jobs: int) -> ProgressSummary:
        now = _now_iso()
        return cls(
            plan_ref=plan_ref,
            total_jobs=total_jobs,
            started_at=now,
            last_updated=now,
        )

    @classmethod
    def from_dict(cls, data: Any) -> ProgressSummary:
        """Build a summary from its JSON form, enforcing every invariant."""
        if not isinstance(data, dict):
            raise LedgerError("Progress summary has invalid format")
        version = data.get("schema_version", 0)
        if version != SUMMARY_SCHEMA_VERSION:
            raise LedgerError(
                f"Progress summary schema version {version} != {SUMMARY_SCHEMA_VERSION}"
            )
        counters = (
            "total_jobs",
            "processed_jobs",
            "successful_jobs",
            "failed_jobs",
            "current_position",
        )
        for key in counters:
            value = data.get(key)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise LedgerError(f"Progress summary {key} must be a non-negative integer")
        for key in ("plan_ref", "started_at", "last_updated"):
            if not isinstance(data.get(key), str):
                raise LedgerError(f"Progress summary {key} must be a string")
        try:
            status = RunStatus(data.get("status"))
            reason_code = (
                ReasonCode(data["reason_code"]) if data.get("reason_code") else None
            )
        except ValueError as e:
            raise LedgerError(f"Progress summary has invalid status: {e}") from None

        summary = cls(
            plan_ref=data["plan_ref"],
            total_jobs=data["total_jobs"],
            started_at=data["started_at"],
            last_updated=data["last_updated"],
            processed_jobs=data["processed_jobs"],
            successful_jobs=data["successful_jobs"],
            failed_jobs=data["failed_jobs"],
            current_position=data["current_position"],
            status=status,
            reason_code=reason_code,
            reason=data.get("reason"),
            schema_version=version,
        )
        summary.check_invariants()
        return summary

    def check_invariants(self) -> None:
        if self.processed_jobs != self.successful_jobs + self.failed_jobs:
            raise LedgerError(
                "Progress summary processed_jobs != successful_jobs + failed_jobs"
            )
        if self.processed_jobs > self.total_jobs:
            raise LedgerError("Progress summary processed_jobs exceeds total_jobs")
        if not 0 <= self.current_position <= self.total_jobs:
            raise LedgerError("Progress summary current_position out of range")
        if self.status is RunStatus.COMPLETED and self.processed_jobs != self.total_jobs:
            raise LedgerError("Progress summary is completed with unprocessed jobs")

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["reason_code"] = self.reason_code.value if self.reason_code else None
        return data

    @property
    def remaining_jobs(self) -> int:
        return self.total_jobs - self.processed_jobs

    @property
    def completion_percentage(self) -> float:
        if self.total_jobs == 0:
            return 100.0
        return round(self.processed_jobs / self.total_jobs * 100, 1)

    @property
    def success_rate(self) -> float:
        """Percentage of processed jobs that were delivered (100.0 if none processed)."""
        if self.processed_jobs == 0:
            return 100.0
        return round(self.successful_jobs / self.processed_jobs * 100, 1)


def load_summary(path: Path) -> ProgressSummary | None:
    """Load a summary from disk, returning None only when the file is absent.

    Unlike a missing file, an unreadable or invalid summary is fatal: the run
    cannot safely start without knowing prior state.
    """
    if not path.exists():
        return None
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as e:
        raise LedgerError(f"Failed to read progress summary {path}: {e}") from e
    return ProgressSummary.from_dict(raw)


def read_log(path: Path) -> list[LedgerEntry]:
    """Read every entry of a progress log in append order.

    A final line without a trailing newline is the remnant of an interrupted
    append and is dropped; any other malformed line raises LedgerError.
    """
    if not path.exists():
        return []
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise LedgerError(f"Failed to read progress log {path}: {e}") from e

    lines = content.split("\n")
    torn_tail = lines[-1]
    entries: list[LedgerEntry] = []
    for number, line in enumerate(lines[:-1], start=1):
        if not line.strip():
            continue
        try:
            entries.append(LedgerEntry.from_dict(json.loads(line)))
        except (json.JSONDecodeError, LedgerError) as e:
            raise LedgerError(f"Invalid entry at {path}:{number}: {e}") from e

    if torn_tail.strip():
        log_with_context(
            logging.WARNING,
            f"Ignoring incomplete final line in {path}; that attempt will be replayed",
        )
    return entries


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class ProgressLedger:
    """Owns the progress log and summary for one plan directory."""

    def __init__(
        self,
        output_dir: Path,
        plan_ref: str,
        summary_name: str = PROGRESS_SUMMARY_FILE,
        log_name: str = PROGRESS_LOG_FILE,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.plan_ref = plan_ref
        self.summary_path = self.output_dir / summary_name
        self.log_path = self.output_dir / log_name
        self._summary: ProgressSummary | None = None
        self._index: dict[str, LedgerEntry] = {}
        self._log_length = 0

    # -- Startup ---------------------------------------------------------------

    @classmethod
    def open(
        cls,
        output_dir: Path,
        plan_ref: str,
        total_jobs: int,
        summary_name: str = PROGRESS_SUMMARY_FILE,
        log_name: str = PROGRESS_LOG_FILE,
        read_only: bool = False,
        job_sources: Mapping[str, str] | None = None,
    ) -> ProgressLedger:
        """Create a ledger and run the startup/recovery sequence."""
        ledger = cls(output_dir, plan_ref, summary_name, log_name)
        ledger.initialize(total_jobs, read_only=read_only, job_sources=job_sources)
        return ledger

    def initialize(
        self,
        total_jobs: int,
        read_only: bool = False,
        job_sources: Mapping[str, str] | None = None,
    ) -> ProgressSummary:
        """Load or create the summary and replay the log into the index.

        With ``read_only`` nothing is written, which lets status queries run
        alongside an active import.

        Args:
            total_jobs: Number of jobs in the plan
            read_only: Skip every write (directory creation, repair, summary)
            job_sources: Plan job id -> source_id. When given, every job in
                the log must belong to the plan with the same source record.

        Raises:
            LedgerError: If the summary is unreadable, invalid, describes a
                plan of a different size, or the log belongs to another plan.
        """
        if not read_only:
            self.output_dir.mkdir(parents=True, exist_ok=True)

        summary = load_summary(self.summary_path)
        if summary is None:
            summary = ProgressSummary.create(self.plan_ref, total_jobs)
            log_with_context(
                logging.INFO,
                f"Starting new progress ledger for {total_jobs} jobs at {self.summary_path}",
            )
        elif summary.total_jobs != total_jobs:
            raise LedgerError(
                f"Progress summary {self.summary_path} tracks {summary.total_jobs} jobs "
                f"but the plan has {total_jobs}; is this the right plan directory?"
            )
        else:
            log_with_context(
                logging.INFO,
                f"Loaded progress summary: {summary.successful_jobs}/{summary.total_jobs} "
                f"delivered, status {summary.status.value}",
            )
            if summary.plan_ref != self.plan_ref:
                log_with_context(
                    logging.WARNING,
                    f"Progress summary was written for {summary.plan_ref}, "
                    f"now running {self.plan_ref}",
                )
        self._summary = summary

        self._index = {}
        entries = read_log(self.log_path)
        for entry in entries:
            self._index[entry.job_id] = entry
        self._log_length = len(entries)
        if not read_only:
            self._drop_torn_tail()

        if job_sources is not None:
            self._check_against_plan(job_sources)
        if len(self._index) > total_jobs:
            raise LedgerError(
                f"Progress log {self.log_path} references {len(self._index)} jobs "
                f"but the plan has {total_jobs}"
            )

        self._reconcile_counters()
        if not read_only:
            self._save_summary()
        return summary

    def _check_against_plan(self, job_sources: Mapping[str, str]) -> None:
        unknown = sorted(job_id for job_id in self._index if job_id not in job_sources)
        if unknown:
            shown = ", ".join(unknown[:5])
            raise LedgerError(
                f"Progress log {self.log_path} references {len(unknown)} jobs that are "
                f"not in the plan ({shown}); the plan was regenerated or belongs to "
                f"another directory. Run 'reset' to start over."
            )
        for job_id, entry in self._index.items():
            if entry.source_id and entry.source_id != job_sources[job_id]:
                raise LedgerError(
                    f"Progress log {self.log_path} records job {job_id} for source "
                    f"{entry.source_id} but the plan maps it to {job_sources[job_id]}"
                )

    def _reconcile_counters(self) -> None:
        summary = self.summary
        successful = sum(
            1 for entry in self._index.values() if entry.status is EntryStatus.SENT
        )
        failed = len(self._index) - successful
        if (summary.successful_jobs, summary.failed_jobs) != (successful, failed):
            log_with_context(
                logging.WARNING,
                f"Progress summary counters ({summary.successful_jobs} sent, "
                f"{summary.failed_jobs} failed) disagree with the log ({successful} sent, "
                f"{failed} failed); using the log",
            )
        summary.successful_jobs = successful
        summary.failed_jobs = failed
        summary.processed_jobs = successful + failed
        summary.current_position = min(summary.current_position, summary.total_jobs)
        if (
            summary.status is RunStatus.COMPLETED
            and summary.processed_jobs != summary.total_jobs
        ):
            summary.status = RunStatus.RUNNING

    # -- Queries ---------------------------------------------------------------

    @property
    def summary(self) -> ProgressSummary:
        if self._summary is None:
            raise LedgerError("Progress ledger not initialized")
        return self._summary

    @property
    def log_length(self) -> int:
        """Number of attempts in the log (not the number of distinct jobs)."""
        return self._log_length

    def latest(self, job_id: str) -> LedgerEntry | None:
        return self._index.get(job_id)

    def entries(self) -> list[LedgerEntry]:
        """Latest entry per job."""
        return list(self._index.values())

    def classify(self, job_id: str, max_attempts: int) -> ResumeAction:
        """Decide what to do with a job on resume.

        Args:
            job_id: The job to look up
            max_attempts: Failed attempts allowed before a job is given up on

        Returns:
            SKIP for delivered jobs, RETRY or EXHAUSTED for failed ones,
            PENDING when the job has never been attempted
        """
        entry = self._index.get(job_id)
        if entry is None:
            return ResumeAction.PENDING
        if entry.status is EntryStatus.SENT:
            return ResumeAction.SKIP
        if entry.retry_count < max_attempts:
            return ResumeAction.RETRY
        return ResumeAction.EXHAUSTED

    def is_delivered(self, job_id: str) -> bool:
        entry = self._index.get(job_id)
        return entry is not None and entry.status is EntryStatus.SENT

    def attempt_timestamps(self) -> list[datetime]:
        """Timestamps of every attempt in the log, in append order."""
        return [entry.attempted_at for entry in read_log(self.log_path)]

    def statistics(self, max_attempts: int) -> LedgerStatistics:
        summary = self.summary
        failed = [
            entry for entry in self._index.values() if entry.status is EntryStatus.FAILED
        ]
        error_counts = Counter(entry.error_message or "Unknown error" for entry in failed)
        error_summary = [
            ErrorCount(error=error, count=count)
            for error, count in error_counts.most_common(TOP_ERRORS_LIMIT)
        ]
        return LedgerStatistics(
            total=summary.total_jobs,
            processed=summary.processed_jobs,
            successful=summary.successful_jobs,
            failed=summary.failed_jobs,
            remaining=summary.remaining_jobs,
            completion_percentage=summary.completion_percentage,
            success_rate=summary.success_rate,
            retryable=sum(1 for entry in failed if entry.retry_count < max_attempts),
            error_summary=error_summary,
        )

    # -- Writes ----------------------------------------------------------------

    def record_attempt(self, entry: LedgerEntry, position: int | None = None) -> None:
        """Append one attempt and persist the updated summary.

        This is the only write path for attempts; callers must invoke it
        exactly once per attempt before moving on.
        """
        summary = self.summary
        previous = self._index.get(entry.job_id)
        if previous is not None and previous.status is EntryStatus.SENT:
            raise LedgerError(
                f"Job {entry.job_id} is already recorded as sent; refusing to record another attempt"
            )
        if previous is None and summary.processed_jobs >= summary.total_jobs:
            raise LedgerError(
                f"Cannot record job {entry.job_id}: all {summary.total_jobs} jobs already processed"
            )

        self._append(entry)
        self._index[entry.job_id] = entry
        self._log_length += 1

        if previous is None:
            summary.processed_jobs += 1
        elif previous.status is EntryStatus.FAILED:
            summary.failed_jobs -= 1
        if entry.status is EntryStatus.SENT:
            summary.successful_jobs += 1
        else:
            summary.failed_jobs += 1
        if position is not None:
            summary.current_position = max(0, min(position, summary.total_jobs))

        self._save_summary()

    def set_status(
        self,
        status: RunStatus,
        reason_code: ReasonCode | None = None,
        reason: str | None = None,
    ) -> None:
        """Persist a run-level status change."""
        summary = self.summary
        if status is RunStatus.COMPLETED and summary.processed_jobs != summary.total_jobs:
            raise LedgerError(
                f"Cannot mark run completed: {summary.processed_jobs}/{summary.total_jobs} processed"
            )
        summary.status = status
        summary.reason_code = reason_code
        summary.reason = reason
        self._save_summary()

    def rebuild_log(self, entries: Iterable[LedgerEntry]) -> None:
        """Replace the log with ``entries`` and recompute the summary.

        Operator-invoked maintenance (for instance to force failed jobs to be
        retried from scratch); never called during a run.
        """
        summary = self.summary
        entries = list(entries)
        tmp = self.log_path.with_name(self.log_path.name + ".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                for entry in entries:
                    f.write(entry.to_line() + "\n")
                f.flush()
                os.fsync(f.fileno())
            tmp.replace(self.log_path)
        except OSError as e:
            raise LedgerError(f"Failed to rebuild progress log {self.log_path}: {e}") from e

        self._index = {}
        for entry in entries:
            self._index[entry.job_id] = entry
        self._log_length = len(entries)
        if len(self._index) > summary.total_jobs:
            raise LedgerError("Rebuilt log references more jobs than the plan has")

        self._reconcile_counters()
        log_with_context(
            logging.INFO,
            f"Rebuilt progress log with {len(entries)} entries",
        )
        self._save_summary()

    def reset_failed(self) -> int:
        """Drop failed jobs from the log so they count as never attempted.

        Returns:
            The number of jobs that were reset
        """
        kept = [
            entry
            for entry in read_log(self.log_path)
            if self._index[entry.job_id].status is EntryStatus.SENT
        ]
        reset_ids = [
            job_id
            for job_id, entry in self._index.items()
            if entry.status is EntryStatus.FAILED
        ]
        self.rebuild_log(kept)
        return len(reset_ids)

    def reset(self) -> None:
        """Discard all progress, including delivered jobs."""
        total = self.summary.total_jobs
        self.rebuild_log([])
        self._summary = ProgressSummary.create(self.plan_ref, total)
        self._save_summary()

    def create_backup(self) -> dict[str, str | None]:
        """Copy the summary and log to timestamped backup files."""
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        backups: dict[str, str | None] = {"summary": None, "log": None, "timestamp": stamp}
        try:
            if self.summary_path.exists():
                target = self.summary_path.with_name(f"{self.summary_path.name}.backup.{stamp}")
                shutil.copy2(self.summary_path, target)
                backups["summary"] = str(target)
            if self.log_path.exists():
                target = self.log_path.with_name(f"{self.log_path.name}.backup.{stamp}")
                shutil.copy2(self.log_path, target)
                backups["log"] = str(target)
        except OSError as e:
            raise LedgerError(f"Failed to back up progress files: {e}") from e
        log_with_context(logging.INFO, f"Backed up progress files ({stamp})")
        return backups

    def _drop_torn_tail(self) -> None:
        """Truncate an incomplete final line so the next append starts cleanly."""
        if not self.log_path.exists():
            return
        try:
            content = self.log_path.read_bytes()
            if not content or content.endswith(b"\n"):
                return
            with open(self.log_path, "r+b") as f:
                f.truncate(content.rfind(b"\n") + 1)
        except OSError as e:
            raise LedgerError(f"Failed to repair progress log {self.log_path}: {e}") from e

    def _append(self, entry: LedgerEntry) -> None:
        # One complete line per write: a crash loses at most this attempt
        line = entry.to_line() + "\n"
        try:
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise LedgerError(f"Failed to append to progress log {self.log_path}: {e}") from e

    def _save_summary(self) -> None:
        """Atomically save the summary (write .tmp + rename)."""
        summary = self.summary
        summary.last_updated = _now_iso()
        summary.check_invariants()
        tmp = self.summary_path.with_suffix(".tmp")
        try:
            tmp.write_text(json.dumps(summary.to_dict(), indent=2) + "\n", encoding="utf-8")
            tmp.replace(self.summary_path)
        except OSError as e:
            raise LedgerError(f"Failed to write progress summary {self.summary_path}: {e}") from e
