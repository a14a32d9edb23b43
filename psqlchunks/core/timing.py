"""Monotonic timing helpers for chunk runtimes."""

from __future__ import annotations

import time
from datetime import timedelta

from psqlchunks.core.errors import ClockError

NS_PER_US = 1_000


def now_ns() -> int:
    """Current monotonic clock reading in nanoseconds."""
    return time.perf_counter_ns()


def elapsed_between(start_ns: int, end_ns: int) -> timedelta:
    """
    Duration between two monotonic readings, truncated to microseconds.

    Raises:
        ClockError: if the end reading lies before the start reading
    """
    if end_ns < start_ns:
        raise ClockError(f"clock went backwards: start={start_ns}ns end={end_ns}ns")
    return timedelta(microseconds=(end_ns - start_ns) // NS_PER_US)
