r"""
Local execution target: participants run as OS processes on this host.

    from quorum_bench.launcher.local import LocalTarget

    session = LocalTarget(cwd=Path("bin")).start(["./server", "--id", "1"], Path("server_1.log"))
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Sequence
from pathlib import Path
from typing import IO

from quorum_bench.errors import LaunchError
from quorum_bench.launcher.base import ExecutionTarget, Session
from quorum_bench.utils.process import terminate_tree

__all__ = ["LocalSession", "LocalTarget"]


class LocalSession(Session):
    """A participant running as a local child process."""

    def __init__(self, proc: subprocess.Popen[bytes], log_file: IO[bytes]) -> None:
        self._proc = proc
        self._log_file = log_file

    @property
    def pid(self) -> int:
        """Process id."""
        return self._proc.pid

    def exit_code(self) -> int | None:
        return self._proc.poll()

    def terminate(self, *, timeout: float = 5.0) -> None:
        try:
            if self._proc.poll() is None:
                terminate_tree(self._proc.pid, timeout=timeout)
            self._proc.wait(timeout=timeout)
        finally:
            if not self._log_file.closed:
                self._log_file.close()


class LocalTarget(ExecutionTarget):
    """Runs participants on the local host."""

    def __init__(self, *, cwd: Path | None = None, env: dict[str, str] | None = None) -> None:
        self._cwd = cwd
        self._env = env

    @property
    def name(self) -> str:
        return "localhost"

    def start(self, argv: Sequence[str], log_path: Path) -> Session:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_file = open(log_path, "wb")
        env = {**os.environ, **self._env} if self._env else None
        try:
            proc = subprocess.Popen(
                list(argv),
                cwd=self._cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=log_file,
                stderr=subprocess.STDOUT,
            )
        except OSError as e:
            log_file.close()
            raise LaunchError(f"cannot execute {argv[0]}: {e}") from e
        return LocalSession(proc, log_file)
