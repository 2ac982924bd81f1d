"""Backoff policy for long-running operation polling.

Computes the delay before the next status check and the interval that
follows it:

    delay_ms         = current + current * JITTER_FACTOR * (rand - 0.5)
    next_interval_ms = min(current * BACKOFF_FACTOR, MAX_POLL_INTERVAL_MS)

With the default constants the delay stays within +/-10 % of the current
interval and the interval grows 6 s, 7.2 s, 8.64 s, ... up to 60 s.

Pure: no clock, no scheduler.  The random source is injectable so
tests and the durable orchestrator (seeded per instance) get
deterministic delays.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import TYPE_CHECKING

from gen_studio.core.constants import BACKOFF_FACTOR, JITTER_FACTOR, MAX_POLL_INTERVAL_MS

if TYPE_CHECKING:
    from collections.abc import Callable


@dataclass(frozen=True, slots=True)
class BackoffStep:
    """Delay before the next poll and the interval to use after it.

    Attributes:
        delay_ms: Jittered wait before the next status check.
        next_interval_ms: Un-jittered interval for the following step.
    """

    delay_ms: float
    next_interval_ms: float

    @property
    def delay_s(self) -> float:
        return self.delay_ms / 1000.0


def next_delay(
    current_interval_ms: float,
    *,
    rand: Callable[[], float] = random.random,
) -> BackoffStep:
    """Compute the next jittered delay and grown interval.

    Args:
        current_interval_ms: Interval the loop is currently on (> 0).
        rand: Uniform source on ``[0, 1)``.

    Raises:
        ValueError: If *current_interval_ms* is not positive.
    """
    if current_interval_ms <= 0:
        msg = f"current_interval_ms must be > 0, got {current_interval_ms!r}"
        raise ValueError(msg)

    jitter = current_interval_ms * JITTER_FACTOR * (rand() - 0.5)
    return BackoffStep(
        delay_ms=current_interval_ms + jitter,
        next_interval_ms=min(current_interval_ms * BACKOFF_FACTOR, MAX_POLL_INTERVAL_MS),
    )
