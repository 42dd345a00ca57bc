r"""
Cluster lifecycle management: provisioning, remote execution and teardown.

Every machine that was successfully provisioned is torn down exactly once,
whether or not the run that used it succeeded.

    from quorum_bench.cluster import AwsCluster, MachineRequest

    cluster = AwsCluster(settings)
    with cluster.session(MachineRequest(count=6, region="eu-west-1", instance_type="m5.large")) as machines:
        print(machines[0].run("uname -a").stdout)
"""

from __future__ import annotations

import logging
import shlex
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Any

from fabric import Connection

from quorum_bench.errors import ProvisionError, TeardownError, TransientProvisionError

__all__ = [
    "ClusterManager",
    "ClusterRegistry",
    "CommandResult",
    "Machine",
    "MachineRequest",
]

LOGGER = logging.getLogger("quorum_bench.cluster")


@dataclass(frozen=True, slots=True)
class MachineRequest:
    """What to provision.

    Attributes:
        count: Number of machines.
        region: Cloud region (ignored by fixed-host clusters).
        instance_type: Machine type (ignored by fixed-host clusters).
    """

    count: int
    region: str = ""
    instance_type: str = ""


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Output of a command run on a machine."""

    stdout: str
    exited: int

    @property
    def ok(self) -> bool:
        """True if the command exited with status 0."""
        return self.exited == 0


class Machine:
    """A provisioned host reachable over SSH.

    Attributes:
        address: Address other participants use to reach this host.
        resource_id: Provider id (instance id, host name).
    """

    def __init__(
        self,
        address: str,
        *,
        resource_id: str | None = None,
        user: str | None = None,
        key_file: str | None = None,
        connection: Any = None,
    ) -> None:
        self.address = address
        self.resource_id = resource_id or address
        self._user = user
        self._key_file = key_file
        self._connection = connection

    def __repr__(self) -> str:
        return f"Machine({self.address!r}, resource_id={self.resource_id!r})"

    @property
    def connection(self) -> Any:
        """Lazily opened fabric connection."""
        if self._connection is None:
            connect_kwargs = {"key_filename": self._key_file} if self._key_file else {}
            self._connection = Connection(
                self.address,
                user=self._user,
                connect_kwargs=connect_kwargs,
            )
        return self._connection

    def run(self, command: str) -> CommandResult:
        """Run a command to completion and capture its output."""
        LOGGER.debug("[%s] %s", self.address, command)
        result = self.connection.run(command, hide=True, warn=True, pty=False)
        return CommandResult(stdout=result.stdout.strip(), exited=result.exited)

    def copy(self, local: str | Path, remote: str) -> None:
        """Upload a local file."""
        LOGGER.debug("[%s] put %s -> %s", self.address, local, remote)
        self.connection.put(str(local), remote=remote)

    def fetch(self, remote: str, local: str | Path) -> None:
        """Download a remote file."""
        LOGGER.debug("[%s] get %s -> %s", self.address, remote, local)
        self.connection.get(remote, local=str(local))

    def start(self, command: str, log_stream: IO[str]) -> Any:
        """Start a command in the background, streaming output into `log_stream`.

        Returns:
            The invoke promise tracking the remote command.
        """
        LOGGER.debug("[%s] start %s", self.address, command)
        return self.connection.run(
            command,
            asynchronous=True,
            hide=True,
            warn=True,
            pty=False,
            out_stream=log_stream,
            err_stream=log_stream,
        )

    def kill_matching(self, pattern: str) -> CommandResult:
        """Kill every process whose command line matches `pattern`.

        The first character is bracketed so the remote shell running pkill,
        whose own command line holds the pattern, never matches.
        """
        return self.run(f"pkill -f {shlex.quote(_self_excluding(pattern))} || true")

    def has_matching(self, pattern: str) -> bool:
        """True if some process command line matches `pattern`."""
        return self.run(f"pgrep -f {shlex.quote(_self_excluding(pattern))}").ok

    def close(self) -> None:
        """Close the SSH connection, if open."""
        if self._connection is not None:
            self._connection.close()


def _self_excluding(pattern: str) -> str:
    if pattern[:1].isalnum():
        return f"[{pattern[0]}]{pattern[1:]}"
    return pattern


class ClusterManager(ABC):
    """Provisions machines and guarantees their release.

    Subclasses implement `_provision` and `_release`; retry, bookkeeping
    and leak reporting live here.
    """

    def __init__(
        self,
        *,
        max_attempts: int = 3,
        backoff: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._max_attempts = max(1, max_attempts)
        self._backoff = backoff
        self._sleep = sleep
        self._live: dict[str, Machine] = {}
        self._released: set[str] = set()
        self.leaks: list[TeardownError] = []

    @property
    @abstractmethod
    def name(self) -> str:
        """Testbed name."""
        ...

    @abstractmethod
    def _provision(self, request: MachineRequest) -> list[Machine]:
        """Provision machines once.

        Raises:
            TransientProvisionError: On failures worth retrying.
            ProvisionError: On permanent failures.
        """
        ...

    @abstractmethod
    def _release(self, machine: Machine) -> None:
        """Release one machine. May raise; failures are recorded as leaks."""
        ...

    @property
    def machines(self) -> list[Machine]:
        """Provisioned machines not yet torn down."""
        return list(self._live.values())

    def provision(self, request: MachineRequest) -> list[Machine]:
        """Provision machines, retrying transient failures with back-off.

        Raises:
            ProvisionError: After `max_attempts` transient failures, or at once
                on a permanent failure.
        """
        if request.count < 1:
            raise ProvisionError(f"cannot provision {request.count} machines")

        attempt = 0
        while True:
            attempt += 1
            try:
                machines = self._provision(request)
                break
            except TransientProvisionError as e:
                if attempt >= self._max_attempts:
                    raise ProvisionError(f"{self.name}: giving up after {attempt} attempts: {e}") from e
                delay = self._backoff * 2 ** (attempt - 1)
                LOGGER.warning("%s: provisioning failed (%s), retrying in %.1fs", self.name, e, delay)
                self._sleep(delay)

        for machine in machines:
            self._live[machine.resource_id] = machine
        LOGGER.info("%s: provisioned %d machine(s)", self.name, len(machines))
        return machines

    def teardown(self, machine: Machine) -> None:
        """Release a machine. Idempotent; never raises.

        Failures are kept in `leaks` and logged as resource-leak warnings.
        """
        if machine.resource_id in self._released:
            return
        self._released.add(machine.resource_id)
        self._live.pop(machine.resource_id, None)
        try:
            self._release(machine)
        except Exception as e:
            leak = TeardownError(f"{self.name} machine {machine.resource_id}", e)
            self.leaks.append(leak)
            LOGGER.warning("possible resource leak: %s", leak)
        else:
            LOGGER.info("%s: released %s", self.name, machine.resource_id)
        finally:
            try:
                machine.close()
            except Exception as e:
                LOGGER.debug("closing connection to %s failed: %s", machine.address, e)

    def teardown_all(self) -> None:
        """Release every live machine."""
        for machine in self.machines:
            self.teardown(machine)

    @contextmanager
    def session(self, request: MachineRequest) -> Iterator[list[Machine]]:
        """Provision machines and release them on exit, even on error."""
        machines = self.provision(request)
        try:
            yield machines
        finally:
            for machine in machines:
                self.teardown(machine)


class ClusterRegistry:
    """Registry for cluster manager implementations."""

    _clusters: dict[str, type[ClusterManager]] = {}

    @classmethod
    def register(cls, name: str) -> Any:
        """Decorator to register a cluster manager class."""

        def decorator(cluster_cls: type[ClusterManager]) -> type[ClusterManager]:
            cls._clusters[name] = cluster_cls
            return cluster_cls

        return decorator

    @classmethod
    def get(cls, name: str) -> type[ClusterManager] | None:
        """Get cluster manager class by name."""
        return cls._clusters.get(name)

    @classmethod
    def list(cls) -> list[str]:
        """List registered testbed names."""
        return list(cls._clusters.keys())

    @classmethod
    def create(cls, name: str, **kwargs: Any) -> ClusterManager:
        """Create cluster manager instance by name."""
        cluster_cls = cls.get(name)
        if cluster_cls is None:
            valid = ", ".join(cls.list()) or "none"
            msg = f"Unknown testbed '{name}'. Registered: {valid}"
            raise ValueError(msg)
        return cluster_cls(**kwargs)
