r"""
Participant launching.

A ProcessLauncher encodes specs as command lines and starts them on an
ExecutionTarget: LocalTarget for this host, RemoteTarget for a
provisioned machine. Both write the participant's output to a local log.

    from quorum_bench.launcher import LocalTarget, ProcessLauncher
"""

from quorum_bench.launcher.base import ExecutionTarget, ProcessLauncher, Session, TargetFactory
from quorum_bench.launcher.args import client_args, server_args
from quorum_bench.launcher.local import LocalSession, LocalTarget
from quorum_bench.launcher.remote import RemoteSession, RemoteTarget

__all__ = [
    "ExecutionTarget",
    "LocalSession",
    "LocalTarget",
    "ProcessLauncher",
    "RemoteSession",
    "RemoteTarget",
    "Session",
    "TargetFactory",
    "client_args",
    "server_args",
]
