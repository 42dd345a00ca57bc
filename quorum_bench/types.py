r"""
Core types for cluster benchmark runs.

    from quorum_bench.types import ProcessSpec, RunHandle, RunStatus

    handle = launcher.spawn(spec, ParticipantKind.SERVER, log_path)
    if handle.status == RunStatus.RUNNING:
        print(f"{handle.label} is up")
"""

from dataclasses import dataclass, field
from enum import IntEnum, StrEnum, auto
from pathlib import Path
from typing import Any

__all__ = [
    "AggregateResult",
    "ClientSpec",
    "CloudSettings",
    "ParticipantKind",
    "PeerKey",
    "ProcessSpec",
    "RunDescription",
    "RunHandle",
    "RunPhase",
    "RunStatus",
    "TopologyConfig",
]


class RunStatus(IntEnum):
    """Lifecycle status of a launched participant."""

    STARTING = auto()
    RUNNING = auto()
    ENDED = auto()
    FAILED = auto()


class ParticipantKind(StrEnum):
    """Which binary a participant runs."""

    SERVER = "server"
    CLIENT = "client"


class RunPhase(StrEnum):
    """Phases of one experiment, in execution order."""

    IDLE = "idle"
    CONFIGURING = "configuring"
    LAUNCHING_SERVERS = "launching_servers"
    AWAITING_SERVERS_READY = "awaiting_servers_ready"
    LAUNCHING_CLIENTS = "launching_clients"
    AWAITING_CLIENTS_READY = "awaiting_clients_ready"
    AWAITING_CLIENTS_ENDED = "awaiting_clients_ended"
    AGGREGATING = "aggregating"
    TEARING_DOWN = "tearing_down"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        """True for DONE and FAILED."""
        return self in (RunPhase.DONE, RunPhase.FAILED)


@dataclass(frozen=True, slots=True, order=True)
class PeerKey:
    """Composite peer key: one physical process may serve several shards."""

    process_id: int
    shard_id: int = 0

    def render(self, *, sharded: bool) -> str:
        """Render as `id` or `id-shard`."""
        if sharded:
            return f"{self.process_id}-{self.shard_id}"
        return str(self.process_id)


@dataclass(frozen=True, slots=True)
class TopologyConfig:
    """Declarative description of the server cluster.

    Attributes:
        processes: Number of server processes (N).
        faults: Tolerated simultaneous failures (f), requires 2f < N.
        shard_assignment: Shard id -> process ids serving it (None = one shard).
        workers: Worker tasks per process.
        executors: Executor tasks per process.
        multiplexing: Connections per peer link.
        tcp_buffer_size: TCP buffer size in bytes.
        base_port: Peer port of process i (its first shard) is base_port + i.
        base_client_port: Client port of process i (its first shard) is base_client_port + i.
    """

    processes: int
    faults: int
    shard_assignment: dict[int, tuple[int, ...]] | None = None
    workers: int = 1
    executors: int = 1
    multiplexing: int = 1
    tcp_buffer_size: int = 0
    base_port: int = 3000
    base_client_port: int = 4000

    @property
    def shards(self) -> int:
        """Number of shards."""
        return len(self.shard_assignment) if self.shard_assignment else 1


@dataclass(frozen=True, slots=True)
class ProcessSpec:
    """Launch description of one server process.

    Attributes:
        process_id: Process id in 1..N.
        host: Bind address.
        port: Peer-facing port.
        client_port: Client-facing port.
        peers: PeerKey -> "host:port", ascending by key.
        sorted_peers: Rendered `--sorted` entries, starting at this process.
        processes: Cluster size N.
        faults: Fault threshold f.
        shard_id: Shard this launch role runs as.
        shards: Total number of shards.
        shard_ids: Every shard the physical process serves, ascending.
        workers: Worker tasks.
        executors: Executor tasks.
        multiplexing: Connections per peer link.
        tcp_buffer_size: TCP buffer size in bytes.
    """

    process_id: int
    host: str
    port: int
    client_port: int
    peers: dict[PeerKey, str]
    sorted_peers: tuple[str, ...]
    processes: int
    faults: int
    shard_id: int = 0
    shards: int = 1
    shard_ids: tuple[int, ...] = (0,)
    workers: int = 1
    executors: int = 1
    multiplexing: int = 1
    tcp_buffer_size: int = 0

    @property
    def address(self) -> str:
        """Peer-facing address."""
        return f"{self.host}:{self.port}"

    @property
    def client_address(self) -> str:
        """Client-facing address."""
        return f"{self.host}:{self.client_port}"

    @property
    def peer_ids(self) -> set[int]:
        """Ids of all peers, regardless of shard."""
        return {key.process_id for key in self.peers}

    @property
    def key(self) -> PeerKey:
        """Composite key of this launch role."""
        return PeerKey(self.process_id, self.shard_id)

    @property
    def role(self) -> str:
        """Launch role name: `2`, or `2-1` when the cluster is sharded."""
        return self.key.render(sharded=self.shards > 1)

    @property
    def peer_addresses(self) -> list[str]:
        """Distinct peer addresses in `--sorted` order."""
        ordered = sorted(
            self.peers,
            key=lambda peer: ((peer.process_id - self.process_id) % self.processes, peer.shard_id),
        )
        return list(dict.fromkeys(self.peers[peer] for peer in ordered))


@dataclass(frozen=True, slots=True)
class ClientSpec:
    """Launch description of one client process.

    Attributes:
        client_id: Client process id.
        addresses: Client-facing server addresses to target.
        id_start: First simulated client id (inclusive).
        id_end: Last simulated client id (inclusive).
        commands_per_client: Commands each simulated client issues.
    """

    client_id: int
    addresses: tuple[str, ...]
    id_start: int
    id_end: int
    commands_per_client: int

    @property
    def role(self) -> str:
        """Launch role name, the client id."""
        return str(self.client_id)

    @property
    def simulated_clients(self) -> int:
        """Number of simulated clients."""
        return self.id_end - self.id_start + 1


@dataclass(slots=True)
class RunHandle:
    """One launched participant.

    The session is owned by the launcher that created it; status is
    advanced by the readiness barrier.
    """

    spec: ProcessSpec | ClientSpec
    kind: ParticipantKind
    log_path: Path
    session: Any = field(default=None, repr=False)
    status: RunStatus = RunStatus.STARTING

    @property
    def participant_id(self) -> int:
        """Numeric id of the participant."""
        if isinstance(self.spec, ProcessSpec):
            return self.spec.process_id
        return self.spec.client_id

    @property
    def label(self) -> str:
        """Human-readable name, e.g. `server 2` or `server 2-1`."""
        return f"{self.kind.value} {self.spec.role}"


@dataclass(frozen=True, slots=True)
class AggregateResult:
    """Aggregate latency of one run.

    Attributes:
        mean_latency: Floor of the mean of all `avg=` values.
        count: Number of latency records consumed.
        skipped: Malformed latency records ignored.
    """

    mean_latency: int
    count: int
    skipped: int = 0


@dataclass(frozen=True, slots=True)
class RunDescription:
    """Declarative description of one experiment.

    Attributes:
        name: Description name.
        topology: Server cluster layout.
        clients_per_process: Simulated clients per client process.
        commands_per_client: Commands each simulated client issues.
        server_command: Argv prefix of the server binary.
        client_command: Argv prefix of the client binary.
        startup_timeout: Seconds to wait for start markers.
        completion_timeout: Seconds to wait for the end marker.
        startup_poll_interval: Poll interval of the startup barriers.
        completion_poll_interval: Poll interval of the completion barrier.
    """

    name: str
    topology: TopologyConfig
    clients_per_process: int = 1
    commands_per_client: int = 10
    server_command: tuple[str, ...] = ("./server",)
    client_command: tuple[str, ...] = ("./client",)
    startup_timeout: float = 60.0
    completion_timeout: float = 600.0
    startup_poll_interval: float = 0.5
    completion_poll_interval: float = 5.0


@dataclass(frozen=True, slots=True)
class CloudSettings:
    """Cloud testbed settings; none of these alter the run protocol.

    Attributes:
        region: Cloud region.
        instance_type: Machine type.
        machine_count: Machines to provision (None = one per participant).
        ami: Machine image id.
        key_name: Registered SSH key pair name.
        ssh_user: Remote login user.
        key_file: Local private key path.
    """

    region: str = "eu-west-1"
    instance_type: str = "m5.large"
    machine_count: int | None = None
    ami: str | None = None
    key_name: str | None = None
    ssh_user: str = "ubuntu"
    key_file: str | None = None
