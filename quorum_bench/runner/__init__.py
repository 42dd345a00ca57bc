r"""
Run execution: readiness barrier, phase timing and the run coordinator.

    from quorum_bench.runner import RunCoordinator

    outcome = RunCoordinator(description, logs_dir=Path("logs")).run()
"""

from quorum_bench.runner.barrier import await_all, log_contains
from quorum_bench.runner.coordinator import LogLayout, ProgressCallback, RunCoordinator, RunOutcome
from quorum_bench.runner.timing import Clock, SystemClock, Timer, timed_section

__all__ = [
    "Clock",
    "LogLayout",
    "ProgressCallback",
    "RunCoordinator",
    "RunOutcome",
    "SystemClock",
    "Timer",
    "await_all",
    "log_contains",
    "timed_section",
]
