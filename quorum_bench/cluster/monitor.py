r"""
Per-machine resource monitoring with dstat.

    from quorum_bench.cluster.monitor import ResourceMonitor

    monitor = ResourceMonitor(machines, workdir="quorum-bench")
    monitor.start()
    ...
    csv_files = monitor.stop(Path("results/run_1/logs"))

Monitoring never fails a run: problems are logged and kept in `warnings`.
"""

from __future__ import annotations

import io
import logging
import shlex
from collections.abc import Sequence
from pathlib import Path, PurePosixPath
from typing import Any

from quorum_bench.cluster.base import Machine

__all__ = ["DSTAT_FILE", "ResourceMonitor"]

LOGGER = logging.getLogger("quorum_bench.cluster.monitor")

DSTAT_FILE = ".quorum_bench_dstat.csv"

# time, totals, cpu/disk/net/memory and io, one sample per second
DSTAT_ARGS = "-t -T -cdnm --io --output {output} 1"


class ResourceMonitor:
    """Runs dstat on every machine for the duration of a run."""

    def __init__(self, machines: Sequence[Machine], *, workdir: str = "quorum-bench") -> None:
        self._machines = list(machines)
        self._output = str(PurePosixPath(workdir) / DSTAT_FILE)
        self._workdir = workdir
        self._running: dict[str, Any] = {}
        self.warnings: list[str] = []

    @property
    def command(self) -> str:
        """Remote dstat command line."""
        return f"dstat {DSTAT_ARGS.format(output=shlex.quote(self._output))} > /dev/null"

    @property
    def running(self) -> list[str]:
        """Resource ids of machines where dstat was started."""
        return list(self._running)

    def start(self) -> None:
        """Start dstat on every machine, dropping output of earlier runs."""
        for machine in self._machines:
            try:
                machine.run(f"mkdir -p {shlex.quote(self._workdir)} && rm -f {shlex.quote(self._output)}")
                self._running[machine.resource_id] = machine.start(self.command, io.StringIO())
            except Exception as e:
                self._warn(f"cannot start dstat on {machine.address}: {e}")
        LOGGER.info("dstat running on %d of %d machine(s)", len(self._running), len(self._machines))

    def stop(self, dest_dir: Path) -> list[Path]:
        """Stop dstat, check it is gone and pull each machine's samples.

        Returns:
            Local CSV files, one per machine that was sampled.
        """
        pulled: list[Path] = []
        pattern = f"dstat .*{DSTAT_FILE}"
        for machine in self._machines:
            if self._running.pop(machine.resource_id, None) is None:
                continue
            try:
                machine.kill_matching(pattern)
                if machine.has_matching(pattern):
                    self._warn(f"dstat still running on {machine.address}")
                local = dest_dir / f"dstat_{machine.resource_id}.csv"
                dest_dir.mkdir(parents=True, exist_ok=True)
                machine.fetch(self._output, local)
                machine.run(f"rm -f {shlex.quote(self._output)}")
                pulled.append(local)
            except Exception as e:
                self._warn(f"cannot collect dstat samples from {machine.address}: {e}")
        return pulled

    def _warn(self, message: str) -> None:
        self.warnings.append(message)
        LOGGER.warning(message)
