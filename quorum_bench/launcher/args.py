r"""
Command-line encoding of server and client specs.

    from quorum_bench.launcher.args import server_args

    argv = ["./newt_atomic", *server_args(spec)]
"""

from quorum_bench.types import ClientSpec, ProcessSpec

__all__ = ["client_args", "server_args"]


def server_args(spec: ProcessSpec) -> list[str]:
    """Encode a ProcessSpec as server binary arguments.

    Peer addresses follow the `--sorted` rotation. Shard flags are only
    emitted when the cluster has more than one shard.
    """
    args = [
        "--id", str(spec.process_id),
        "--sorted", ",".join(spec.sorted_peers),
        "--port", str(spec.port),
        "--addresses", ",".join(spec.peer_addresses),
        "--client_port", str(spec.client_port),
        "--processes", str(spec.processes),
        "--faults", str(spec.faults),
        "--workers", str(spec.workers),
        "--executors", str(spec.executors),
        "--multiplexing", str(spec.multiplexing),
        "--tcp_buffer_size", str(spec.tcp_buffer_size),
    ]  # fmt: skip
    if spec.shards > 1:
        args += ["--shards", str(spec.shards), "--shard_id", str(spec.shard_id)]
    return args


def client_args(spec: ClientSpec) -> list[str]:
    """Encode a ClientSpec as client binary arguments."""
    return [
        "--ids", f"{spec.id_start}-{spec.id_end}",
        "--addresses", ",".join(spec.addresses),
        "--commands_per_client", str(spec.commands_per_client),
    ]  # fmt: skip
