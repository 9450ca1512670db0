"""Transfer job value type and its status state machine."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from chat_importer.exceptions import InvalidTransitionError, PlanValidationError
from chat_importer.types import EntryStatus, JobKind, JobRecord, JobStatus

if TYPE_CHECKING:
    from chat_importer.core.ledger import LedgerEntry


JOB_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset(
        {JobStatus.SENT, JobStatus.FAILED, JobStatus.SKIPPED}
    ),
    JobStatus.FAILED: frozenset({JobStatus.PROCESSING}),
    JobStatus.SENT: frozenset(),
    JobStatus.SKIPPED: frozenset(),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in JOB_TRANSITIONS.items() if not targets
)


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    """Return True if the transition table allows ``current`` -> ``target``."""
    return target in JOB_TRANSITIONS[current]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class TransferJob:
    """One message to deliver.

    Everything except the bookkeeping fields (``status``, ``last_error``,
    ``attempt_count``, ``completed_at``, ``external_message_id``) is fixed when
    the plan is generated.
    """

    id: str
    source_id: str
    kind: JobKind
    destination: str
    ordering_key: float
    text: str = ""
    media_path: str | None = None
    media_type: str | None = None
    size_bytes: int | None = None
    sender: str = ""

    status: JobStatus = JobStatus.PENDING
    last_error: str | None = None
    attempt_count: int = 0
    completed_at: str | None = None
    external_message_id: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def _transition(self, target: JobStatus) -> None:
        if not can_transition(self.status, target):
            raise InvalidTransitionError(self.status, target)
        self.status = target

    def mark_processing(self) -> None:
        """Start an attempt; counts towards ``attempt_count``."""
        self._transition(JobStatus.PROCESSING)
        self.attempt_count += 1

    def mark_sent(self, external_id: str | None = None) -> None:
        self._transition(JobStatus.SENT)
        self.last_error = None
        self.external_message_id = external_id
        self.completed_at = _now_iso()

    def mark_failed(self, error: str) -> None:
        if not error or not error.strip():
            raise ValueError("A failed job requires a non-empty error message")
        self._transition(JobStatus.FAILED)
        self.last_error = error
        self.completed_at = _now_iso()

    def mark_skipped(self) -> None:
        self._transition(JobStatus.SKIPPED)
        self.completed_at = _now_iso()

    def restore(self, entry: LedgerEntry | None) -> None:
        """Rebuild bookkeeping from the latest ledger entry for this job.

        This is reconstruction, not a transition: the ledger is the durable
        record and the in-memory status is only a cache of it. Without an
        entry the job goes back to ``pending`` with no attempts.
        """
        if entry is None:
            self.status = JobStatus.PENDING
            self.last_error = None
            self.attempt_count = 0
            self.completed_at = None
            self.external_message_id = None
            return

        self.completed_at = entry.timestamp
        if entry.status is EntryStatus.SENT:
            self.status = JobStatus.SENT
            self.last_error = None
            self.attempt_count = entry.retry_count + 1
            self.external_message_id = entry.external_message_id
        else:
            self.status = JobStatus.FAILED
            self.last_error = entry.error_message
            self.attempt_count = entry.retry_count
            self.external_message_id = None

    @property
    def failed_attempts(self) -> int:
        """Failed attempts so far, counting the current one if it failed."""
        if self.status is JobStatus.SENT:
            return self.attempt_count - 1
        return self.attempt_count

    # -- Serialisation --------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TransferJob:
        """Build a job from its plan record, validating field types."""
        missing = [
            key
            for key in ("id", "source_id", "kind", "destination", "ordering_key")
            if data.get(key) in (None, "")
        ]
        if missing:
            raise PlanValidationError(
                f"Job {data.get('id', '<unknown>')} is missing required fields: "
                + ", ".join(missing)
            )

        try:
            kind = JobKind(data["kind"])
        except ValueError:
            raise PlanValidationError(
                f"Job {data['id']} has unsupported kind {data['kind']!r}"
            ) from None

        ordering_key = data["ordering_key"]
        if isinstance(ordering_key, bool) or not isinstance(ordering_key, (int, float)):
            raise PlanValidationError(
                f"Job {data['id']} ordering_key must be a number, got {ordering_key!r}"
            )
        if ordering_key < 0:
            raise PlanValidationError(f"Job {data['id']} ordering_key is negative")

        text = data.get("text", "")
        if not isinstance(text, str):
            raise PlanValidationError(f"Job {data['id']} text must be a string")

        if kind.is_media and not data.get("media_path"):
            raise PlanValidationError(
                f"Job {data['id']} of kind {kind.value} has no media_path"
            )
        if data.get("media_path") and not data.get("media_type"):
            raise PlanValidationError(
                f"Job {data['id']} has a media_path but no media_type"
            )

        try:
            status = JobStatus(data.get("status", JobStatus.PENDING.value))
        except ValueError:
            raise PlanValidationError(
                f"Job {data['id']} has unknown status {data.get('status')!r}"
            ) from None

        return cls(
            id=str(data["id"]),
            source_id=str(data["source_id"]),
            kind=kind,
            destination=str(data["destination"]),
            ordering_key=ordering_key,
            text=text,
            media_path=data.get("media_path"),
            media_type=data.get("media_type"),
            size_bytes=data.get("size_bytes"),
            sender=data.get("sender", ""),
            status=status,
        )

    def to_dict(self) -> JobRecord:
        record = JobRecord(
            id=self.id,
            source_id=self.source_id,
            kind=self.kind.value,
            text=self.text,
            media_path=self.media_path,
            media_type=self.media_type,
            destination=self.destination,
            ordering_key=self.ordering_key,
            sender=self.sender,
            status=self.status.value,
        )
        if self.size_bytes is not None:
            record["size_bytes"] = self.size_bytes
        return record
