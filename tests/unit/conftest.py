"""Unit test configuration and shared fixtures."""

from __future__ import annotations

import random
from pathlib import Path
from typing import Any

import pytest

from chat_importer.core.config import ImporterConfig
from chat_importer.core.context import RunContext, ledger_file_names
from chat_importer.core.ledger import ProgressLedger
from chat_importer.core.pacing import PacingController
from chat_importer.core.plan import TransferPlan, load_plan

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeAdapter:
    """In-memory channel adapter.

    ``errors`` maps a message text (or media caption) to an exception, or to a
    list of exceptions raised on successive attempts (``None`` entries succeed).
    """

    def __init__(self, errors: dict[str, Any] | None = None) -> None:
        self.calls: list[tuple[str, str, str]] = []
        self.errors = dict(errors or {})

    def _send(self, method: str, destination: str, text: str) -> str:
        self.calls.append((method, destination, text))
        error = self.errors.get(text)
        if isinstance(error, list):
            error = error.pop(0) if error else None
        if error is not None:
            raise error
        return f"ext-{len(self.calls)}"

    def send_text(self, destination: str, text: str) -> str:
        return self._send("send_text", destination, text)

    def send_image(self, destination: str, media_ref: str, caption: str = "") -> str:
        return self._send("send_image", destination, caption)

    def send_video(self, destination: str, media_ref: str, caption: str = "") -> str:
        return self._send("send_video", destination, caption)

    def send_audio(self, destination: str, media_ref: str, caption: str = "") -> str:
        return self._send("send_audio", destination, caption)

    def send_document(
        self, destination: str, media_ref: str, caption: str = ""
    ) -> str:
        return self._send("send_document", destination, caption)

    @property
    def sent_texts(self) -> list[str]:
        return [text for _, _, text in self.calls]


class FakeClock:
    """Controllable clock; ``sleep`` advances time instead of blocking."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def loaded_plan(plan_dir: Path) -> TransferPlan:
    return load_plan(plan_dir / "import-plan.json")


@pytest.fixture()
def make_context(clock: FakeClock):
    """Factory for a RunContext with instant pacing and a fresh ledger."""

    def _make(
        plan: TransferPlan,
        plan_dir: Path,
        dry_run: bool = False,
        max_attempts: int = 3,
        daily_ceiling: int = 1000,
        min_delay: float = 0,
        max_delay: float = 0,
    ) -> RunContext:
        summary_name, log_name = ledger_file_names(dry_run)
        ledger = ProgressLedger.open(
            plan_dir,
            plan_ref=str(plan.path),
            total_jobs=len(plan),
            summary_name=summary_name,
            log_name=log_name,
            job_sources=plan.job_sources,
        )
        pacing = PacingController(
            min_delay=min_delay,
            max_delay=max_delay,
            daily_ceiling=daily_ceiling,
            clock=clock,
            wall_clock=clock,
            sleep=clock.sleep,
            rng=random.Random(42),
        )
        config = ImporterConfig(max_attempts=max_attempts, daily_ceiling=daily_ceiling)
        return RunContext(config=config, ledger=ledger, pacing=pacing, dry_run=dry_run)

    return _make
