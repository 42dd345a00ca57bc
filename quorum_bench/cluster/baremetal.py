r"""
Fixed-host cluster: machines that already exist and are reachable over SSH.

Provisioning hands out hosts from the configured list; teardown kills any
participant still running there.

    from quorum_bench.cluster.baremetal import BaremetalCluster

    cluster = BaremetalCluster(hosts=["10.0.0.1", "10.0.0.2"], user="bench")
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from quorum_bench.cluster.base import ClusterManager, ClusterRegistry, Machine, MachineRequest
from quorum_bench.errors import ProvisionError

__all__ = ["BaremetalCluster"]


@ClusterRegistry.register("baremetal")
class BaremetalCluster(ClusterManager):
    """Hands out a fixed set of hosts."""

    def __init__(
        self,
        hosts: Sequence[str] = (),
        *,
        user: str | None = None,
        key_file: str | None = None,
        cleanup_patterns: Sequence[str] = (),
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._hosts = list(hosts)
        self._user = user
        self._key_file = key_file
        self._cleanup_patterns = list(cleanup_patterns)

    @property
    def name(self) -> str:
        return "baremetal"

    def set_cleanup_patterns(self, patterns: Sequence[str]) -> None:
        """Command-line patterns of participants to kill on teardown."""
        self._cleanup_patterns = list(patterns)

    def _provision(self, request: MachineRequest) -> list[Machine]:
        if request.count > len(self._hosts):
            raise ProvisionError(f"requested {request.count} machines but only {len(self._hosts)} hosts are configured")
        return [
            Machine(host, user=self._user, key_file=self._key_file)
            for host in self._hosts[: request.count]
        ]

    def _release(self, machine: Machine) -> None:
        for pattern in self._cleanup_patterns:
            result = machine.kill_matching(pattern)
            if not result.ok:
                raise RuntimeError(f"pkill exited with {result.exited}")
