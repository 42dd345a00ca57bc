r"""
Topology configuration: derives per-participant launch specs.

    from quorum_bench.topology import build_topology, build_clients
    from quorum_bench.types import TopologyConfig

    specs = build_topology(TopologyConfig(processes=3, faults=1))
    clients = build_clients(specs, clients_per_process=1, commands_per_client=10)

Every builder is pure: equal input gives equal output. A process serving
several shards is launched once per shard, see `build_roles`.
"""

from collections.abc import Mapping, Sequence

from quorum_bench.errors import ConfigError
from quorum_bench.types import ClientSpec, PeerKey, ProcessSpec, TopologyConfig

__all__ = ["DEFAULT_HOST", "build_clients", "build_roles", "build_topology", "process_shards", "validate_topology"]

DEFAULT_HOST = "127.0.0.1"


def validate_topology(config: TopologyConfig) -> None:
    """Check quorum viability and shard consistency.

    Raises:
        ConfigError: If 2f >= N or the shard assignment is inconsistent.
    """
    n, f = config.processes, config.faults
    if n < 1:
        raise ConfigError(f"need at least one process, got {n}")
    if f < 0:
        raise ConfigError(f"fault threshold must be non-negative, got {f}")
    if 2 * f >= n:
        raise ConfigError(f"no viable quorum: 2f >= N with N={n}, f={f}")
    process_shards(config)


def process_shards(config: TopologyConfig) -> dict[int, tuple[int, ...]]:
    """Map each process id to the ascending shard ids it serves.

    Raises:
        ConfigError: On duplicate or out-of-range ids, or unassigned processes.
    """
    ids = range(1, config.processes + 1)
    if not config.shard_assignment:
        return {process_id: (0,) for process_id in ids}

    served: dict[int, list[int]] = {process_id: [] for process_id in ids}
    for shard_id, members in sorted(config.shard_assignment.items()):
        seen: set[int] = set()
        for process_id in members:
            if process_id in seen:
                raise ConfigError(f"process {process_id} listed twice in shard {shard_id}")
            if process_id not in served:
                raise ConfigError(f"shard {shard_id} lists unknown process {process_id} (valid: 1..{config.processes})")
            seen.add(process_id)
            served[process_id].append(shard_id)

    missing = [process_id for process_id, shards in served.items() if not shards]
    if missing:
        raise ConfigError(f"processes without a shard: {', '.join(map(str, missing))}")
    return {process_id: tuple(shards) for process_id, shards in served.items()}


def build_roles(
    config: TopologyConfig,
    hosts: Mapping[int, str] | None = None,
) -> list[ProcessSpec]:
    """Build one launch role per (process, shard) pair.

    A process serving several shards is launched once per shard. Its k-th
    shard (in ascending order) listens on `base_port + k*N + id`, so every
    role on a host gets its own ports; single-shard clusters keep
    `base_port + id`.

    Args:
        config: Cluster description.
        hosts: Process id -> host; missing ids bind to DEFAULT_HOST.

    Returns:
        Roles ordered by process id, then shard id.

    Raises:
        ConfigError: If the configuration is invalid.
    """
    validate_topology(config)
    shards_of = process_shards(config)
    hosts = hosts or {}
    n = config.processes
    sharded = config.shards > 1

    def host_of(process_id: int) -> str:
        return hosts.get(process_id, DEFAULT_HOST)

    def offset(key: PeerKey) -> int:
        return shards_of[key.process_id].index(key.shard_id) * n + key.process_id

    roles = []
    for process_id in range(1, n + 1):
        peers: dict[PeerKey, str] = {}
        for peer_id in range(1, n + 1):
            if peer_id == process_id:
                continue
            for shard_id in shards_of[peer_id]:
                key = PeerKey(peer_id, shard_id)
                peers[key] = f"{host_of(peer_id)}:{config.base_port + offset(key)}"

        rotation = list(range(process_id, n + 1)) + list(range(1, process_id))
        sorted_peers = tuple(
            PeerKey(member, shard_id).render(sharded=sharded)
            for member in rotation
            for shard_id in shards_of[member]
        )

        for shard_id in shards_of[process_id]:
            own = offset(PeerKey(process_id, shard_id))
            roles.append(
                ProcessSpec(
                    process_id=process_id,
                    host=host_of(process_id),
                    port=config.base_port + own,
                    client_port=config.base_client_port + own,
                    peers=dict(sorted(peers.items())),
                    sorted_peers=sorted_peers,
                    processes=n,
                    faults=config.faults,
                    shard_id=shard_id,
                    shards=config.shards,
                    shard_ids=shards_of[process_id],
                    workers=config.workers,
                    executors=config.executors,
                    multiplexing=config.multiplexing,
                    tcp_buffer_size=config.tcp_buffer_size,
                )
            )
    return roles


def build_topology(
    config: TopologyConfig,
    hosts: Mapping[int, str] | None = None,
) -> list[ProcessSpec]:
    """Build one ProcessSpec per server, ordered by id.

    Each spec is the process's role for its lowest shard; `shard_ids` lists
    every shard it serves. Use `build_roles` to get every launch role.

    Returns:
        Exactly N specs with symmetric peer lists.

    Raises:
        ConfigError: If the configuration is invalid.
    """
    return [role for role in build_roles(config, hosts) if role.shard_id == role.shard_ids[0]]


def build_clients(
    specs: Sequence[ProcessSpec],
    *,
    clients_per_process: int,
    commands_per_client: int,
) -> list[ClientSpec]:
    """Build one client per server process.

    Client i simulates ids (i-1)*k+1 .. i*k. It targets every role of
    process i, then, for each shard process i does not serve, the first
    role on the same host that does.

    Args:
        specs: Server specs or launch roles; roles are grouped by process id.

    Raises:
        ConfigError: If counts are not positive.
    """
    if clients_per_process < 1:
        raise ConfigError(f"clients_per_process must be positive, got {clients_per_process}")
    if commands_per_client < 1:
        raise ConfigError(f"commands_per_client must be positive, got {commands_per_client}")

    roles_of: dict[int, list[ProcessSpec]] = {}
    for spec in specs:
        roles_of.setdefault(spec.process_id, []).append(spec)

    clients = []
    for process_id, own in sorted(roles_of.items()):
        host = own[0].host
        covered = {role.shard_id for role in own}
        addresses = [role.client_address for role in own]
        for other in specs:
            if other.host == host and other.shard_id not in covered:
                covered.add(other.shard_id)
                addresses.append(other.client_address)
        id_end = process_id * clients_per_process
        clients.append(
            ClientSpec(
                client_id=process_id,
                addresses=tuple(addresses),
                id_start=id_end - clients_per_process + 1,
                id_end=id_end,
                commands_per_client=commands_per_client,
            )
        )
    return clients
