r"""
Readiness barrier: wait until every participant's log shows its marker.

    from quorum_bench.runner.barrier import await_all

    await_all(
        handles,
        lambda handle: process_started(handle.participant_id),
        poll_interval=0.5,
        timeout=60,
        ready_status=RunStatus.RUNNING,
    )

Every poll re-reads each pending log from the start and only checks for
presence, so a marker written twice counts once.
"""

import logging
import threading
from collections.abc import Callable, Sequence
from pathlib import Path

from quorum_bench.errors import LaunchError, ReadinessTimeoutError, RunCancelledError
from quorum_bench.runner.timing import Clock, SystemClock
from quorum_bench.types import RunHandle, RunStatus

__all__ = ["await_all", "log_contains"]

LOGGER = logging.getLogger("quorum_bench.runner.barrier")


def log_contains(path: Path, marker: str) -> bool:
    """True if the log at `path` exists and contains `marker`."""
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return False
    return marker in text


def _exited(handle: RunHandle) -> bool:
    session = handle.session
    return session is not None and session.exit_code() is not None


def await_all(
    handles: Sequence[RunHandle],
    marker_for: Callable[[RunHandle], str],
    *,
    poll_interval: float,
    timeout: float,
    ready_status: RunStatus,
    clock: Clock | None = None,
    cancel: threading.Event | None = None,
) -> None:
    """Block until every handle's log contains its marker.

    Args:
        handles: Participants to wait for.
        marker_for: Marker each handle must emit.
        poll_interval: Seconds between scans.
        timeout: Seconds before giving up.
        ready_status: Status assigned to satisfied handles.
        clock: Time source (defaults to the system clock).
        cancel: Event that aborts the wait when set.

    Raises:
        ReadinessTimeoutError: If markers are still missing after `timeout`.
        LaunchError: If a participant exited without emitting its marker.
        RunCancelledError: If `cancel` is set.
    """
    clock = clock or SystemClock()
    deadline = clock.monotonic() + timeout
    pending = list(handles)

    while True:
        if cancel is not None and cancel.is_set():
            raise RunCancelledError("run cancelled while waiting for participants")

        still_pending = []
        for handle in pending:
            # liveness is sampled before the log so a marker written just before exit is still seen
            exited = _exited(handle)
            if log_contains(handle.log_path, marker_for(handle)):
                handle.status = ready_status
                LOGGER.debug("%s ready", handle.label)
            elif exited:
                handle.status = RunStatus.FAILED
                code = handle.session.exit_code()
                raise LaunchError(f"{handle.label} exited with status {code} before becoming ready (log: {handle.log_path})")
            else:
                still_pending.append(handle)
        pending = still_pending

        if not pending:
            return

        remaining = deadline - clock.monotonic()
        if remaining <= 0:
            raise ReadinessTimeoutError((handle.label for handle in pending), timeout)

        LOGGER.debug("waiting for %d participant(s): %s", len(pending), ", ".join(h.label for h in pending))
        clock.sleep(min(poll_interval, remaining))
