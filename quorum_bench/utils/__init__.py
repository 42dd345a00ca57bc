"""Utility modules for quorum-bench."""

from quorum_bench.utils.process import terminate_tree, total_memory_gb

__all__ = [
    "terminate_tree",
    "total_memory_gb",
]
