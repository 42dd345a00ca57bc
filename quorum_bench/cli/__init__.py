r"""
Command-line interface for quorum-bench.

    quorum-bench run -p smoke
    quorum-bench report results/run.json -f markdown
"""

from quorum_bench.cli.main import app, main

__all__ = [
    "app",
    "main",
]
