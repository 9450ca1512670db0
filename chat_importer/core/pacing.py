"""Pacing between delivery attempts.

Two rules gate every attempt:

1. A rolling 24 hour ceiling on attempts. Reaching it stops the run; there is
   no waiting it out in-process.
2. A floor of ``min_delay`` seconds since the last successful send, followed
   by a random delay in ``[min_delay, max_delay]``.
"""

from __future__ import annotations

import logging
import random
import time
from collections import deque
from datetime import datetime
from typing import Callable, Iterable

from chat_importer.constants import ROLLING_WINDOW_SECONDS
from chat_importer.exceptions import RateCeilingReached
from chat_importer.utils.logging import log_with_context


class PacingController:
    """Decides how long to wait before the next attempt.

    ``clock`` is monotonic and used for the delay floor; ``wall_clock`` is
    epoch seconds and used for the rolling window, so that attempts recorded
    by earlier processes can be seeded into it.
    """

    def __init__(
        self,
        min_delay: float,
        max_delay: float,
        daily_ceiling: int,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        if min_delay < 0 or max_delay < min_delay:
            raise ValueError(
                f"Invalid delay range: min_delay={min_delay}, max_delay={max_delay}"
            )
        if daily_ceiling < 1:
            raise ValueError("daily_ceiling must be at least 1")

        self.min_delay = min_delay
        self.max_delay = max_delay
        self.daily_ceiling = daily_ceiling
        self._clock = clock
        self._wall_clock = wall_clock
        self._sleep = sleep
        self._rng = rng or random.Random()

        self._attempts: deque[float] = deque()
        self._last_success: float | None = None

    def seed(self, timestamps: Iterable[datetime | float]) -> int:
        """Load earlier attempt times into the rolling window.

        Returns:
            How many of them still fall inside the window
        """
        cutoff = self._wall_clock() - ROLLING_WINDOW_SECONDS
        recent = sorted(
            ts
            for ts in (
                value.timestamp() if isinstance(value, datetime) else float(value)
                for value in timestamps
            )
            if ts > cutoff
        )
        self._attempts.extend(recent)
        if recent:
            log_with_context(
                logging.DEBUG,
                f"Rolling window seeded with {len(recent)} attempts from the last 24h",
            )
        return len(recent)

    def attempts_in_window(self) -> int:
        self._expire()
        return len(self._attempts)

    def remaining_today(self) -> int:
        return max(0, self.daily_ceiling - self.attempts_in_window())

    def _expire(self) -> None:
        cutoff = self._wall_clock() - ROLLING_WINDOW_SECONDS
        while self._attempts and self._attempts[0] <= cutoff:
            self._attempts.popleft()

    def wait(self) -> float:
        """Block until the next attempt may start.

        Returns:
            The total number of seconds slept

        Raises:
            RateCeilingReached: If the rolling window is already full
        """
        self._expire()
        if len(self._attempts) >= self.daily_ceiling:
            retry_after = self._attempts[0] + ROLLING_WINDOW_SECONDS - self._wall_clock()
            raise RateCeilingReached(self.daily_ceiling, max(0.0, retry_after))

        slept = 0.0
        if self._last_success is not None:
            floor_remaining = self.min_delay - (self._clock() - self._last_success)
            if floor_remaining > 0:
                self._sleep(floor_remaining)
                slept += floor_remaining

        delay = self._rng.uniform(self.min_delay, self.max_delay)
        if delay > 0:
            log_with_context(logging.DEBUG, f"Waiting {delay:.1f}s before next message")
            self._sleep(delay)
            slept += delay
        return slept

    def record_attempt(self, success: bool) -> None:
        """Count an attempt towards the window; successes also reset the floor."""
        self._attempts.append(self._wall_clock())
        if success:
            self._last_success = self._clock()
