r"""
Timing utilities for runs.

    from quorum_bench.runner.timing import SystemClock, Timer

    with Timer() as t:
        launch_servers()
    print(f"Elapsed: {t.elapsed_seconds}s")
"""

import time
from collections.abc import Callable
from contextlib import contextmanager
from typing import Any, Protocol, runtime_checkable

__all__ = ["Clock", "SystemClock", "Timer", "timed_section"]


@runtime_checkable
class Clock(Protocol):
    """Time source used for polling; replaceable by a simulated clock in tests."""

    def monotonic(self) -> float:
        """Seconds from an arbitrary fixed point."""
        ...

    def sleep(self, seconds: float) -> None:
        """Block for `seconds`."""
        ...


class SystemClock:
    """Wall-clock time."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class Timer:
    """Context manager for timing code blocks.

        with Timer() as t:
            do_something()
        print(f"Elapsed: {t.elapsed_ms}ms")
    """

    def __init__(self) -> None:
        self._start: int = 0
        self._end: int = 0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter_ns()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self._end = time.perf_counter_ns()

    @property
    def elapsed_ns(self) -> int:
        """Elapsed time in nanoseconds."""
        return self._end - self._start

    @property
    def elapsed_ms(self) -> float:
        """Elapsed time in milliseconds."""
        return self.elapsed_ns / 1_000_000

    @property
    def elapsed_seconds(self) -> float:
        """Elapsed time in seconds."""
        return self.elapsed_ns / 1_000_000_000


@contextmanager
def timed_section(name: str, *, callback: Callable[[str, float], None] | None = None):
    """Context manager for timing named sections.

    Args:
        name: Name of the section being timed.
        callback: Optional callback(name, elapsed_seconds) called on exit,
            also when the section raises.

    Yields:
        Timer instance.
    """
    timer = Timer()
    timer.__enter__()
    try:
        yield timer
    finally:
        timer.__exit__(None, None, None)
        if callback:
            callback(name, timer.elapsed_seconds)
