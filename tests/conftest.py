"""Shared test fixtures for the chat_importer test suite."""

from __future__ import annotations

import json
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

DESTINATION = "15550001111@c.us"
BASE_TS = 1_600_000_000


def make_job_dict(index: int, kind: str = "text", **overrides: Any) -> dict[str, Any]:
    """Return a plan job record; ``index`` drives id, source id and timestamp."""
    job: dict[str, Any] = {
        "id": f"job-{index}",
        "source_id": f"msg-{index}",
        "kind": kind,
        "text": f"message {index}",
        "media_path": None,
        "media_type": None,
        "destination": DESTINATION,
        "ordering_key": BASE_TS + index * 60,
        "sender": "Alice",
        "status": "pending",
    }
    if kind != "text":
        job["media_path"] = f"media/file-{index}.bin"
        job["media_type"] = {
            "image": "image/jpeg",
            "video": "video/mp4",
            "audio": "audio/ogg",
            "document": "application/pdf",
        }.get(kind)
        job["size_bytes"] = 1000 + index
    job.update(overrides)
    return job


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def make_plan_dict(
    jobs: list[dict[str, Any]],
    excluded: list[dict[str, Any]] | None = None,
    version: str = "1.0.0",
) -> dict[str, Any]:
    """Build a plan document whose metadata and statistics reconcile with ``jobs``."""
    excluded = excluded or []
    media_jobs = [job for job in jobs if job["kind"] != "text"]
    date_range = None
    if jobs:
        keys = [job["ordering_key"] for job in jobs]
        date_range = {"earliest": _iso(min(keys)), "latest": _iso(max(keys))}
    return {
        "version": version,
        "metadata": {
            "generated_at": "2024-01-01T00:00:00+00:00",
            "source_path": "/exports/chat/result.json",
            "output_path": "/plans/chat",
            "total_records": len(jobs) + len(excluded),
            "transferable_records": len(jobs),
            "excluded_records": len(excluded),
            "media_files": len(media_jobs),
        },
        "jobs": jobs,
        "excluded": excluded,
        "statistics": {
            "kinds": dict(Counter(job["kind"] for job in jobs)),
            "media_types": dict(Counter(job["media_type"] for job in media_jobs)),
            "total_bytes": sum(job.get("size_bytes") or 0 for job in jobs),
            "date_range": date_range,
        },
    }


def write_plan(plan_dir: Path, plan: dict[str, Any]) -> Path:
    plan_dir.mkdir(parents=True, exist_ok=True)
    path = plan_dir / "import-plan.json"
    path.write_text(json.dumps(plan), encoding="utf-8")
    return path


@pytest.fixture()
def text_plan_dict() -> dict[str, Any]:
    """A valid plan with five text jobs."""
    return make_plan_dict([make_job_dict(i) for i in range(1, 6)])


@pytest.fixture()
def plan_dir(tmp_path: Path, text_plan_dict: dict[str, Any]) -> Path:
    """A plan directory holding the five-job text plan."""
    directory = tmp_path / "plan"
    write_plan(directory, text_plan_dict)
    return directory


@pytest.fixture()
def make_job():
    """Factory for plan job records (see ``make_job_dict``)."""
    return make_job_dict


@pytest.fixture()
def make_plan():
    """Factory for reconciled plan documents (see ``make_plan_dict``)."""
    return make_plan_dict


@pytest.fixture()
def plan_writer(tmp_path: Path):
    """Write a plan document into a fresh plan directory and return the directory."""

    def _write(plan: dict[str, Any], name: str = "plan") -> Path:
        directory = tmp_path / name
        write_plan(directory, plan)
        return directory

    return _write
