r"""
Remote execution target: participants run on a provisioned machine.

The binary is copied to the machine, started over SSH, and its output is
streamed back into the same local log path a local run would use.

    from quorum_bench.launcher.remote import RemoteTarget

    target = RemoteTarget(machine, workdir="bench")
    session = target.start(["./target/release/newt_atomic", "--id", "1"], Path("logs/server_1.log"))
"""

from __future__ import annotations

import logging
import shlex
import threading
import time
from collections.abc import Sequence
from pathlib import Path, PurePosixPath
from typing import IO, Any

from quorum_bench.cluster.base import Machine
from quorum_bench.errors import LaunchError
from quorum_bench.launcher.base import ExecutionTarget, Session

__all__ = ["RemoteSession", "RemoteTarget"]

LOGGER = logging.getLogger("quorum_bench.launcher.remote")


class RemoteSession(Session):
    """A participant running on a remote machine over an SSH session."""

    def __init__(self, machine: Machine, promise: Any, log_file: IO[str], pid_file: str) -> None:
        self._machine = machine
        self._promise = promise
        self._log_file = log_file
        self._pid_file = pid_file
        self._exited: int | None = None

    def exit_code(self) -> int | None:
        if self._exited is None and self._promise.runner.process_is_finished:
            self._exited = self._promise.join().exited
        return self._exited

    def terminate(self, *, timeout: float = 5.0) -> None:
        try:
            if self.exit_code() is None:
                pid_file = shlex.quote(self._pid_file)
                self._machine.run(f"test -f {pid_file} && kill $(cat {pid_file}) || true")
                deadline = time.monotonic() + timeout
                while self.exit_code() is None and time.monotonic() < deadline:
                    time.sleep(0.1)
                if self.exit_code() is None:
                    LOGGER.warning("%s: participant did not stop, killing", self._machine.address)
                    self._machine.run(f"kill -9 $(cat {pid_file}) || true")
            self._machine.run(f"rm -f {shlex.quote(self._pid_file)}")
        finally:
            if not self._log_file.closed:
                self._log_file.close()


class RemoteTarget(ExecutionTarget):
    """Runs participants on one remote machine."""

    def __init__(self, machine: Machine, *, workdir: str = ".", upload: bool = True) -> None:
        self._machine = machine
        self._workdir = workdir
        self._upload = upload
        self._uploaded: set[str] = set()
        self._upload_lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._machine.address

    @property
    def machine(self) -> Machine:
        """The machine participants run on."""
        return self._machine

    def _remote_binary(self, binary: str) -> str:
        """Copy a local binary into the workdir (once); return the path to exec there."""
        local = Path(binary)
        if not self._upload or not local.is_file():
            return binary
        remote = str(PurePosixPath(self._workdir) / local.name)
        with self._upload_lock:
            if remote not in self._uploaded:
                self._machine.run(f"mkdir -p {shlex.quote(self._workdir)}")
                self._machine.copy(local, remote)
                self._machine.run(f"chmod u+x {shlex.quote(remote)}")
                self._uploaded.add(remote)
        return f"./{local.name}"

    def start(self, argv: Sequence[str], log_path: Path) -> Session:
        if not argv:
            raise LaunchError("empty command")
        binary = self._remote_binary(argv[0])
        command = " ".join(shlex.quote(arg) for arg in [binary, *argv[1:]])
        pid_file = f".quorum_bench_{log_path.stem}.pid"
        workdir = shlex.quote(self._workdir)
        wrapped = f"mkdir -p {workdir} && cd {workdir} && echo $$ > {shlex.quote(pid_file)} && exec {command}"

        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_file = open(log_path, "w", encoding="utf-8")
        try:
            promise = self._machine.start(wrapped, log_file)
        except Exception as e:
            log_file.close()
            raise LaunchError(f"cannot start {argv[0]} on {self._machine.address}: {e}") from e
        pid_path = str(PurePosixPath(self._workdir) / pid_file)
        return RemoteSession(self._machine, promise, log_file, pid_path)
