r"""
quorum-bench: benchmark harness for replicated consensus clusters.

Launches a cluster of server processes and a fleet of clients, waits for
their log markers, and reports the mean client latency. Runs locally, on
fixed hosts over SSH, or on provisioned EC2 machines.

    from quorum_bench import RunCoordinator, get_preset

    outcome = RunCoordinator(get_preset("smoke"), logs_dir=Path("logs")).run()
    print(outcome.aggregate.mean_latency)
"""

from quorum_bench.config import DEFAULT_PRESET, PRESETS, get_preset
from quorum_bench.errors import HarnessError
from quorum_bench.runner import RunCoordinator, RunOutcome
from quorum_bench.types import AggregateResult, RunDescription, RunPhase, RunStatus, TopologyConfig

__all__ = [
    "AggregateResult",
    "DEFAULT_PRESET",
    "HarnessError",
    "PRESETS",
    "RunCoordinator",
    "RunDescription",
    "RunOutcome",
    "RunPhase",
    "RunStatus",
    "TopologyConfig",
    "get_preset",
]

__version__ = "0.1.0"
