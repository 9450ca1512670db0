"""Shared type definitions for the chat import executor.

Provides closed enumerations for every status field that travels through the
plan, the ledger and the executor, TypedDicts for the on-disk JSON shapes, and
the structured results the executor hands back to its caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, TypedDict

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class JobKind(str, Enum):
    """Which channel capability delivers a job."""

    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    DOCUMENT = "document"

    @property
    def is_media(self) -> bool:
        return self is not JobKind.TEXT


class JobStatus(str, Enum):
    """In-memory status of a single transfer job."""

    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class EntryStatus(str, Enum):
    """Outcome recorded for one delivery attempt in the progress log."""

    SENT = "sent"
    FAILED = "failed"


class RunStatus(str, Enum):
    """Run status persisted in the progress summary."""

    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class RunState(str, Enum):
    """Executor lifecycle state (``idle`` is never persisted)."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class ReasonCode(str, Enum):
    """Why a run stopped without completing."""

    RATE_CEILING = "rate_ceiling"
    CONNECTION_LOST = "connection_lost"
    INTERNAL_ERROR = "internal_error"
    CANCELLED = "cancelled"
    PAUSED = "paused"


class ResumeAction(str, Enum):
    """What the executor should do with a job given its ledger history."""

    PENDING = "pending"
    RETRY = "retry"
    SKIP = "skip"
    EXHAUSTED = "exhausted"

    @property
    def actionable(self) -> bool:
        return self in (ResumeAction.PENDING, ResumeAction.RETRY)


class ExclusionReason(str, Enum):
    """Reason codes the plan producer uses for records it declined to transfer."""

    SERVICE_MESSAGE = "service_message"
    UNSUPPORTED_MEDIA = "unsupported_media"
    POLL_MESSAGE = "poll_message"
    COMMUNITY_FEATURE = "community_feature"
    MISSING_FILE = "missing_file"
    EMPTY_MESSAGE = "empty_message"
    UNSUPPORTED_FEATURES = "unsupported_features"
    MISSING_MEDIA_PATH = "missing_media_path"
    MEDIA_VALIDATION_FAILED = "media_validation_failed"
    FILE_TOO_LARGE = "file_too_large"
    TRANSFORMATION_ERROR = "transformation_error"


# ---------------------------------------------------------------------------
# On-disk JSON shapes
# ---------------------------------------------------------------------------


class JobRecord(TypedDict, total=False):
    """A job as it appears in ``import-plan.json``."""

    id: str
    source_id: str
    kind: str
    text: str
    media_path: Optional[str]
    media_type: Optional[str]
    size_bytes: Optional[int]
    destination: str
    ordering_key: float
    sender: str
    status: str


class ExcludedRecord(TypedDict, total=False):
    """A source record the plan producer declined to transfer."""

    source_id: str
    reason: str
    explanation: str


class LedgerEntryRecord(TypedDict, total=False):
    """One line of ``progress.jsonl``."""

    job_id: str
    source_id: str
    status: str
    timestamp: str
    retry_count: int
    error_message: Optional[str]
    external_message_id: Optional[str]


class ErrorCount(TypedDict):
    """One row of the error summary in ledger statistics."""

    error: str
    count: int


class LedgerStatistics(TypedDict):
    """Aggregate figures derived from the ledger."""

    total: int
    processed: int
    successful: int
    failed: int
    remaining: int
    completion_percentage: float
    success_rate: float
    retryable: int
    error_summary: list[ErrorCount]


# ---------------------------------------------------------------------------
# Executor results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProgressEvent:
    """Snapshot produced after every delivery attempt.

    ``position`` is the 1-based plan position of the job just attempted and
    ``total`` the plan length; ``attempted`` counts attempts in this run only,
    while ``successful``/``failed`` mirror the ledger summary.
    """

    position: int
    total: int
    job_id: str
    outcome: JobStatus
    attempted: int
    selected: int
    successful: int
    failed: int
    error: str | None = None

    @property
    def percentage(self) -> int:
        if self.selected == 0:
            return 100
        return round(self.attempted / self.selected * 100)


@dataclass
class RunResult:
    """Final tally of one executor run."""

    status: RunStatus
    selected: int = 0
    attempted: int = 0
    sent: int = 0
    failed: int = 0
    skipped_delivered: int = 0
    skipped_exhausted: int = 0
    reason_code: ReasonCode | None = None
    reason: str | None = None

    @property
    def had_failures(self) -> bool:
        return self.failed > 0
