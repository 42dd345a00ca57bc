r"""
Cluster lifecycle managers for off-box runs.

Each manager provisions machines, exposes them as `Machine` objects with
`run`, `copy` and `start`, and releases them exactly once.

    from quorum_bench.cluster import ClusterRegistry, MachineRequest

    cluster = ClusterRegistry.create("baremetal", hosts=["10.0.0.1"])
"""

from quorum_bench.cluster.base import ClusterManager, ClusterRegistry, CommandResult, Machine, MachineRequest
from quorum_bench.cluster.aws import AwsCluster
from quorum_bench.cluster.baremetal import BaremetalCluster
from quorum_bench.cluster.monitor import ResourceMonitor

__all__ = [
    "AwsCluster",
    "BaremetalCluster",
    "ClusterManager",
    "ClusterRegistry",
    "CommandResult",
    "Machine",
    "MachineRequest",
    "ResourceMonitor",
]
