r"""
Log markers emitted by the server and client binaries.

These substrings are the whole observable contract with the binaries.

    from quorum_bench.markers import process_started

    assert process_started(3) == "process 3 started"
"""

import re

__all__ = [
    "CLIENTS_ENDED",
    "LATENCY_AVG",
    "LATENCY_KEYWORD",
    "avg_field",
    "client_started",
    "is_latency_line",
    "process_started",
]

CLIENTS_ENDED = "all clients ended"
LATENCY_KEYWORD = "latency"
LATENCY_AVG = "avg="

# avg= followed by the token up to the next separator
_AVG_FIELD = re.compile(r"avg=([^\s,;)\]]*)")


def process_started(process_id: int) -> str:
    """Marker of a server that is connected to its peers."""
    return f"process {process_id} started"


def client_started(client_id: int) -> str:
    """Marker of a simulated client that has connected."""
    return f"client {client_id} started"


def is_latency_line(line: str) -> bool:
    """True if the line is a latency summary."""
    return LATENCY_KEYWORD in line and LATENCY_AVG in line


def avg_field(line: str) -> str | None:
    """Raw text of the `avg=` field, or None when absent."""
    match = _AVG_FIELD.search(line)
    return match.group(1) if match else None
