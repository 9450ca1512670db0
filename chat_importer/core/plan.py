"""Transfer plan loading and validation.

The plan is produced upstream and is read-only here, apart from the transient
``status`` of each job. Loading fails fast with :class:`PlanVersionError` for
an unrecognised version and :class:`PlanValidationError` for anything that
does not reconcile: duplicate ids, out-of-order jobs, or metadata and
statistics that disagree with the job and excluded lists.
"""

from __future__ import annotations

import json
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from chat_importer.constants import SUPPORTED_PLAN_MAJOR_VERSION
from chat_importer.core.job import TransferJob
from chat_importer.exceptions import (
    PlanNotFoundError,
    PlanValidationError,
    PlanVersionError,
)
from chat_importer.types import ExcludedRecord, ExclusionReason
from chat_importer.utils.logging import log_with_context

SEMVER_PATTERN = re.compile(
    r"^(\d+)\.(\d+)\.(\d+)(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)

# Tolerance when comparing ISO date_range bounds with numeric ordering keys
_DATE_RANGE_TOLERANCE_SECONDS = 1.0


@dataclass(frozen=True)
class PlanMetadata:
    """Plan header written by the plan producer."""

    generated_at: str
    source_path: str
    output_path: str
    total_records: int
    transferable_records: int
    excluded_records: int
    media_files: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PlanMetadata:
        required = (
            "generated_at",
            "source_path",
            "output_path",
            "total_records",
            "transferable_records",
            "excluded_records",
            "media_files",
        )
        missing = [key for key in required if key not in data]
        if missing:
            raise PlanValidationError(
                "Plan metadata is missing fields: " + ", ".join(missing)
            )
        for key in required[3:]:
            value = data[key]
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise PlanValidationError(
                    f"Plan metadata {key} must be a non-negative integer"
                )
        _parse_iso(data["generated_at"], "metadata.generated_at")
        return cls(
            generated_at=data["generated_at"],
            source_path=str(data["source_path"]),
            output_path=str(data["output_path"]),
            total_records=data["total_records"],
            transferable_records=data["transferable_records"],
            excluded_records=data["excluded_records"],
            media_files=data["media_files"],
        )


@dataclass(frozen=True)
class ExcludedItem:
    """A source record the plan producer declined to transfer."""

    source_id: str
    reason: ExclusionReason
    explanation: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExcludedItem:
        if data.get("source_id") in (None, ""):
            raise PlanValidationError("Excluded record is missing source_id")
        try:
            reason = ExclusionReason(data.get("reason"))
        except ValueError:
            raise PlanValidationError(
                f"Excluded record {data['source_id']} has unknown reason "
                f"{data.get('reason')!r}"
            ) from None
        explanation = data.get("explanation")
        if not isinstance(explanation, str) or not explanation:
            raise PlanValidationError(
                f"Excluded record {data['source_id']} needs an explanation"
            )
        return cls(
            source_id=str(data["source_id"]),
            reason=reason,
            explanation=explanation,
        )

    def to_dict(self) -> ExcludedRecord:
        return ExcludedRecord(
            source_id=self.source_id,
            reason=self.reason.value,
            explanation=self.explanation,
        )


@dataclass(frozen=True)
class PlanStatistics:
    """Aggregate figures that must match the job list exactly."""

    kinds: dict[str, int] = field(default_factory=dict)
    media_types: dict[str, int] = field(default_factory=dict)
    total_bytes: int = 0
    earliest: str | None = None
    latest: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PlanStatistics:
        date_range = data.get("date_range")
        if date_range is None:
            date_range = {}
        elif not isinstance(date_range, dict):
            raise PlanValidationError(
                "Statistics date_range must be an object or null"
            )
        total_bytes = data.get("total_bytes", 0)
        if not _is_count(total_bytes):
            raise PlanValidationError(
                f"Statistics total_bytes must be a non-negative integer, got {total_bytes!r}"
            )
        return cls(
            kinds=_count_map(data.get("kinds"), "kinds"),
            media_types=_count_map(data.get("media_types"), "media_types"),
            total_bytes=total_bytes,
            earliest=date_range.get("earliest"),
            latest=date_range.get("latest"),
        )

    @classmethod
    def compute(cls, jobs: list[TransferJob]) -> PlanStatistics:
        """Derive the statistics block for a list of jobs."""
        kinds = Counter(job.kind.value for job in jobs)
        media_types = Counter(
            job.media_type for job in jobs if job.kind.is_media and job.media_type
        )
        total_bytes = sum(job.size_bytes or 0 for job in jobs)
        earliest = latest = None
        if jobs:
            keys = [job.ordering_key for job in jobs]
            earliest = _key_to_iso(min(keys))
            latest = _key_to_iso(max(keys))
        return cls(
            kinds=dict(kinds),
            media_types=dict(media_types),
            total_bytes=total_bytes,
            earliest=earliest,
            latest=latest,
        )

    def to_dict(self) -> dict[str, Any]:
        date_range = None
        if self.earliest is not None or self.latest is not None:
            date_range = {"earliest": self.earliest, "latest": self.latest}
        return {
            "kinds": dict(self.kinds),
            "media_types": dict(self.media_types),
            "total_bytes": self.total_bytes,
            "date_range": date_range,
        }


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _count_map(value: Any, label: str) -> dict[str, int]:
    if value is None:
        return {}
    if not isinstance(value, dict) or not all(
        isinstance(name, str) and _is_count(count) for name, count in value.items()
    ):
        raise PlanValidationError(
            f"Statistics {label} must map names to non-negative integers"
        )
    return dict(value)


def _parse_iso(value: Any, label: str) -> datetime:
    if not isinstance(value, str):
        raise PlanValidationError(f"{label} must be an ISO-8601 string")
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise PlanValidationError(f"{label} is not a valid ISO-8601 date: {value}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _key_to_iso(ordering_key: float) -> str:
    return datetime.fromtimestamp(ordering_key, tz=timezone.utc).isoformat()


def parse_version(version: Any) -> tuple[int, int, int]:
    """Parse a semantic version string, raising PlanVersionError if malformed."""
    if not isinstance(version, str):
        raise PlanVersionError(f"Plan version must be a string, got {version!r}")
    match = SEMVER_PATTERN.match(version)
    if not match:
        raise PlanVersionError(f"Invalid semantic version: {version}")
    return int(match.group(1)), int(match.group(2)), int(match.group(3))


@dataclass
class TransferPlan:
    """Ordered, versioned list of jobs for one run."""

    version: str
    metadata: PlanMetadata
    jobs: list[TransferJob]
    excluded: list[ExcludedItem]
    statistics: PlanStatistics
    path: Path | None = None

    def __len__(self) -> int:
        return len(self.jobs)

    @property
    def job_sources(self) -> dict[str, str]:
        """Job id -> source_id, used to match a progress log to this plan."""
        return {job.id: job.source_id for job in self.jobs}

    @property
    def media_count(self) -> int:
        return sum(1 for job in self.jobs if job.kind.is_media)

    def get_job(self, job_id: str) -> TransferJob:
        for job in self.jobs:
            if job.id == job_id:
                return job
        raise KeyError(job_id)

    def with_destination(self, destination: str) -> None:
        """Point every job at ``destination`` (the ``--target_chat`` override)."""
        for job in self.jobs:
            job.destination = destination

    @classmethod
    def from_dict(cls, data: Any, path: Path | None = None) -> TransferPlan:
        """Validate a raw plan document and build a plan from it."""
        if not isinstance(data, dict):
            raise PlanValidationError("Plan document must be a JSON object")

        major, _, _ = parse_version(data.get("version"))
        if major != SUPPORTED_PLAN_MAJOR_VERSION:
            raise PlanVersionError(
                f"Unsupported plan version {data['version']}: this executor "
                f"understands {SUPPORTED_PLAN_MAJOR_VERSION}.x.x"
            )

        for key in ("metadata", "jobs", "statistics"):
            if key not in data:
                raise PlanValidationError(f"Plan is missing the '{key}' section")
        if not isinstance(data["jobs"], list):
            raise PlanValidationError("Plan 'jobs' must be a list")
        excluded_raw = data.get("excluded") or []
        if not isinstance(excluded_raw, list):
            raise PlanValidationError("Plan 'excluded' must be a list")

        for section in ("jobs", "excluded"):
            if any(not isinstance(item, dict) for item in data.get(section) or []):
                raise PlanValidationError(f"Every entry in '{section}' must be an object")
        if not isinstance(data["metadata"], dict) or not isinstance(
            data["statistics"], dict
        ):
            raise PlanValidationError("Plan 'metadata' and 'statistics' must be objects")

        metadata = PlanMetadata.from_dict(data["metadata"])
        jobs = [TransferJob.from_dict(item) for item in data["jobs"]]
        excluded = [ExcludedItem.from_dict(item) for item in excluded_raw]
        statistics = PlanStatistics.from_dict(data["statistics"])

        plan = cls(
            version=data["version"],
            metadata=metadata,
            jobs=jobs,
            excluded=excluded,
            statistics=statistics,
            path=path,
        )
        plan.validate()
        return plan

    def validate(self) -> None:
        """Check ordering, uniqueness and that every count reconciles."""
        seen_ids: set[str] = set()
        seen_sources: set[str] = set()
        previous_key: float | None = None
        for index, job in enumerate(self.jobs):
            if job.id in seen_ids:
                raise PlanValidationError(f"Duplicate job id: {job.id}")
            seen_ids.add(job.id)
            if job.source_id in seen_sources:
                raise PlanValidationError(
                    f"Duplicate source_id reference: {job.source_id}"
                )
            seen_sources.add(job.source_id)
            if previous_key is not None and job.ordering_key < previous_key:
                raise PlanValidationError(
                    f"Jobs must be sorted by ordering_key. Job at index {index} is out of order."
                )
            previous_key = job.ordering_key

        excluded_sources = {item.source_id for item in self.excluded}
        overlap = excluded_sources & seen_sources
        if overlap:
            raise PlanValidationError(
                f"Records both planned and excluded: {', '.join(sorted(overlap))}"
            )

        self._reconcile_metadata()
        self._reconcile_statistics()

    def _reconcile_metadata(self) -> None:
        meta = self.metadata
        expected = {
            "total_records": len(self.jobs) + len(self.excluded),
            "transferable_records": len(self.jobs),
            "excluded_records": len(self.excluded),
            "media_files": self.media_count,
        }
        for key, actual in expected.items():
            declared = getattr(meta, key)
            if declared != actual:
                raise PlanValidationError(
                    f"Metadata {key} mismatch: declared {declared}, jobs give {actual}"
                )

    def _reconcile_statistics(self) -> None:
        actual = PlanStatistics.compute(self.jobs)
        declared = self.statistics

        for label, declared_counts, actual_counts in (
            ("kind", declared.kinds, actual.kinds),
            ("media type", declared.media_types, actual.media_types),
        ):
            for name in set(declared_counts) | set(actual_counts):
                want = declared_counts.get(name, 0)
                have = actual_counts.get(name, 0)
                if want != have:
                    raise PlanValidationError(
                        f"Statistics mismatch for {label} '{name}': "
                        f"declared {want}, jobs give {have}"
                    )

        if declared.total_bytes != actual.total_bytes:
            raise PlanValidationError(
                f"Statistics total_bytes mismatch: declared {declared.total_bytes}, "
                f"jobs give {actual.total_bytes}"
            )

        if not self.jobs:
            return
        keys = [job.ordering_key for job in self.jobs]
        for label, declared_iso, key in (
            ("earliest", declared.earliest, min(keys)),
            ("latest", declared.latest, max(keys)),
        ):
            if declared_iso is None:
                raise PlanValidationError(f"Statistics date_range.{label} is missing")
            declared_ts = _parse_iso(declared_iso, f"statistics.date_range.{label}")
            if abs(declared_ts.timestamp() - key) > _DATE_RANGE_TOLERANCE_SECONDS:
                raise PlanValidationError(
                    f"Statistics date_range.{label} {declared_iso} does not match "
                    f"the jobs ({_key_to_iso(key)})"
                )

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "metadata": {
                "generated_at": self.metadata.generated_at,
                "source_path": self.metadata.source_path,
                "output_path": self.metadata.output_path,
                "total_records": self.metadata.total_records,
                "transferable_records": self.metadata.transferable_records,
                "excluded_records": self.metadata.excluded_records,
                "media_files": self.metadata.media_files,
            },
            "jobs": [job.to_dict() for job in self.jobs],
            "excluded": [item.to_dict() for item in self.excluded],
            "statistics": self.statistics.to_dict(),
        }


def load_plan(path: Path) -> TransferPlan:
    """Read and validate a plan file.

    Args:
        path: Path to ``import-plan.json``

    Returns:
        The validated TransferPlan

    Raises:
        PlanNotFoundError: If the file does not exist
        PlanValidationError: If the file is unreadable or inconsistent
        PlanVersionError: If the plan version is not supported
    """
    if not path.exists():
        raise PlanNotFoundError(f"Plan file not found: {path}")
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as e:
        raise PlanValidationError(f"Failed to read plan {path}: {e}") from e

    plan = TransferPlan.from_dict(raw, path=path)
    log_with_context(
        logging.INFO,
        f"Loaded plan {path} (version {plan.version}): {len(plan.jobs)} jobs, "
        f"{len(plan.excluded)} excluded records",
    )
    return plan
