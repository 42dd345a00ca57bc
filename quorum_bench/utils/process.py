"""Process utilities for local participants.

Termination walks the whole process tree with psutil, so wrapper shells
and their children do not outlive the run.
"""

from __future__ import annotations

import logging

import psutil

__all__ = [
    "terminate_tree",
    "total_memory_gb",
]

LOGGER = logging.getLogger("quorum_bench.utils.process")


def terminate_tree(pid: int, *, timeout: float = 5.0) -> int:
    """Terminate a process and all its descendants.

    Sends SIGTERM first and SIGKILL to whatever is still alive after
    `timeout` seconds.

    Returns:
        Number of processes that had to be killed.
    """
    try:
        parent = psutil.Process(pid)
        procs = [*parent.children(recursive=True), parent]
    except psutil.NoSuchProcess:
        return 0

    for proc in procs:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            pass

    _, alive = psutil.wait_procs(procs, timeout=timeout)
    for proc in alive:
        LOGGER.warning("process %d did not terminate, killing", proc.pid)
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
    if alive:
        psutil.wait_procs(alive, timeout=timeout)
    return len(alive)


def total_memory_gb() -> float:
    """Total system memory in GB."""
    return round(psutil.virtual_memory().total / (1024**3), 1)
