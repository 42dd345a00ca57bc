r"""
Process launcher and the execution-target interface.

An execution target knows how to start a command and stream its output
into a local log file. The launcher turns specs into argv and owns every
session it starts until the participant is reaped.

    from quorum_bench.launcher import LocalTarget, ProcessLauncher

    launcher = ProcessLauncher(
        lambda kind, participant_id: LocalTarget(),
        server_command=["./newt_atomic"],
        client_command=["./client"],
    )
    handle = launcher.spawn(spec, ParticipantKind.SERVER, Path("logs/server_1.log"))
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from pathlib import Path

from quorum_bench.errors import LaunchError, TeardownError
from quorum_bench.launcher.args import client_args, server_args
from quorum_bench.types import ClientSpec, ParticipantKind, ProcessSpec, RunHandle, RunStatus

__all__ = ["ExecutionTarget", "ProcessLauncher", "Session", "TargetFactory"]

LOGGER = logging.getLogger("quorum_bench.launcher")


class Session(ABC):
    """A running participant, local or remote."""

    @abstractmethod
    def exit_code(self) -> int | None:
        """Exit status, or None while still running."""
        ...

    @abstractmethod
    def terminate(self, *, timeout: float = 5.0) -> None:
        """Stop the participant; no-op if it already exited."""
        ...

    @property
    def alive(self) -> bool:
        """Whether the participant is still running."""
        return self.exit_code() is None


class ExecutionTarget(ABC):
    """Where participants run: the local host or a remote machine."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Target name for messages."""
        ...

    @abstractmethod
    def start(self, argv: Sequence[str], log_path: Path) -> Session:
        """Start `argv`, sending stdout and stderr to `log_path`.

        The log file is created or truncated.
        """
        ...


TargetFactory = Callable[[ParticipantKind, int], ExecutionTarget]


class ProcessLauncher:
    """Spawns servers and clients on their execution targets."""

    def __init__(
        self,
        target_for: TargetFactory,
        *,
        server_command: Sequence[str],
        client_command: Sequence[str],
    ) -> None:
        self._target_for = target_for
        self._commands = {
            ParticipantKind.SERVER: list(server_command),
            ParticipantKind.CLIENT: list(client_command),
        }

    def argv(self, spec: ProcessSpec | ClientSpec, kind: ParticipantKind) -> list[str]:
        """Full command line for a participant."""
        if kind == ParticipantKind.SERVER:
            if not isinstance(spec, ProcessSpec):
                raise LaunchError(f"server launch needs a ProcessSpec, got {type(spec).__name__}")
            args = server_args(spec)
        else:
            if not isinstance(spec, ClientSpec):
                raise LaunchError(f"client launch needs a ClientSpec, got {type(spec).__name__}")
            args = client_args(spec)
        return [*self._commands[kind], *args]

    def spawn(self, spec: ProcessSpec | ClientSpec, kind: ParticipantKind, log_path: Path) -> RunHandle:
        """Start one participant.

        Raises:
            LaunchError: If the participant could not be started.
        """
        argv = self.argv(spec, kind)
        handle = RunHandle(spec=spec, kind=kind, log_path=log_path)
        target = self._target_for(kind, handle.participant_id)
        LOGGER.debug("starting %s on %s: %s", handle.label, target.name, " ".join(argv))
        try:
            handle.session = target.start(argv, log_path)
        except LaunchError:
            raise
        except Exception as e:
            raise LaunchError(f"failed to start {handle.label} on {target.name}: {e}") from e
        LOGGER.info("started %s on %s (log: %s)", handle.label, target.name, log_path)
        return handle

    def reap(self, handle: RunHandle, *, timeout: float = 5.0) -> None:
        """Stop a participant, check it is gone and release its session.

        A participant reaped before it became ready is marked FAILED, a
        running one ENDED. Idempotent.

        Raises:
            TeardownError: If the participant is still alive after `timeout`.
        """
        session: Session | None = handle.session
        if session is None:
            return
        ended = False
        try:
            session.terminate(timeout=timeout)
            ended = _await_exit(session, timeout)
        finally:
            handle.session = None
            if handle.status == RunStatus.STARTING:
                handle.status = RunStatus.FAILED
            elif handle.status == RunStatus.RUNNING:
                handle.status = RunStatus.ENDED
        if not ended:
            raise TeardownError(handle.label, "still running after stop")
        LOGGER.debug("reaped %s", handle.label)


def _await_exit(session: Session, timeout: float, interval: float = 0.1) -> bool:
    deadline = time.monotonic() + timeout
    while session.alive:
        if time.monotonic() >= deadline:
            return False
        time.sleep(interval)
    return True
