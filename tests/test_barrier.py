r"""
Tests for quorum_bench.runner.barrier module.
"""

import threading

import pytest

from quorum_bench.errors import LaunchError, ReadinessTimeoutError, RunCancelledError
from quorum_bench.markers import CLIENTS_ENDED, client_started
from quorum_bench.runner.barrier import await_all, log_contains
from quorum_bench.types import RunStatus


def started(handle):
    return client_started(handle.participant_id)


class TestLogContains:
    def test_missing_log(self, logs_dir):
        assert not log_contains(logs_dir / "absent.log", "client 1 started")

    def test_marker_present(self, logs_dir):
        path = logs_dir / "client_1.log"
        path.write_text("connecting\nclient 1 started\n")
        assert log_contains(path, "client 1 started")


class TestAwaitAll:
    def test_all_present_returns_without_sleeping(self, make_handle, fake_clock):
        handles = [make_handle(i, f"client {i} started\n") for i in (1, 2, 3)]

        await_all(handles, started, poll_interval=1, timeout=10, ready_status=RunStatus.RUNNING, clock=fake_clock)

        assert fake_clock.sleeps == []
        assert all(handle.status == RunStatus.RUNNING for handle in handles)

    def test_timeout_names_missing_participant(self, make_handle, fake_clock):
        handles = [
            make_handle(1, "client 1 started\n"),
            make_handle(2, "connecting\n"),
            make_handle(3, "client 3 started\n"),
        ]

        with pytest.raises(ReadinessTimeoutError) as excinfo:
            await_all(handles, started, poll_interval=2, timeout=10, ready_status=RunStatus.RUNNING, clock=fake_clock)

        assert excinfo.value.unready == ["client 2"]
        assert excinfo.value.timeout == 10
        assert fake_clock.now == pytest.approx(10)
        assert handles[0].status == RunStatus.RUNNING
        assert handles[1].status == RunStatus.STARTING

    def test_timeout_is_builtin_timeout(self, make_handle, fake_clock):
        with pytest.raises(TimeoutError):
            await_all([make_handle(1)], started, poll_interval=1, timeout=3, ready_status=RunStatus.RUNNING, clock=fake_clock)

    def test_marker_appears_later(self, make_handle, fake_clock):
        handle = make_handle(1, "booting\n")

        def write_marker(now):
            if now >= 3:
                with open(handle.log_path, "a") as f:
                    f.write("client 1 started\n")

        fake_clock.on_sleep = write_marker
        await_all([handle], started, poll_interval=1, timeout=10, ready_status=RunStatus.RUNNING, clock=fake_clock)

        assert handle.status == RunStatus.RUNNING
        assert fake_clock.sleeps == [1, 1, 1]

    def test_last_sleep_capped_at_deadline(self, make_handle, fake_clock):
        with pytest.raises(ReadinessTimeoutError):
            await_all([make_handle(1)], started, poll_interval=4, timeout=10, ready_status=RunStatus.RUNNING, clock=fake_clock)
        assert fake_clock.sleeps == [4, 4, 2]

    def test_repeated_marker_counts_once(self, make_handle, fake_clock):
        handle = make_handle(1, "client 1 started\nrestarted\nclient 1 started\n")
        await_all([handle], started, poll_interval=1, timeout=5, ready_status=RunStatus.RUNNING, clock=fake_clock)
        assert handle.status == RunStatus.RUNNING

    def test_exited_without_marker_fails_fast(self, make_handle, fake_clock, fake_session_cls):
        handles = [
            make_handle(1, "client 1 started\n", session=fake_session_cls()),
            make_handle(2, "panic: address in use\n", session=fake_session_cls(code=101)),
        ]

        with pytest.raises(LaunchError, match="client 2 exited with status 101"):
            await_all(handles, started, poll_interval=1, timeout=60, ready_status=RunStatus.RUNNING, clock=fake_clock)

        assert handles[1].status == RunStatus.FAILED
        assert fake_clock.sleeps == []

    def test_exited_after_marker_is_ready(self, make_handle, fake_clock, fake_session_cls):
        handle = make_handle(1, f"{CLIENTS_ENDED}\n", session=fake_session_cls(code=0))
        await_all([handle], lambda h: CLIENTS_ENDED, poll_interval=5, timeout=60, ready_status=RunStatus.ENDED, clock=fake_clock)
        assert handle.status == RunStatus.ENDED

    def test_cancel(self, make_handle, fake_clock):
        cancel = threading.Event()
        fake_clock.on_sleep = lambda now: cancel.set()

        with pytest.raises(RunCancelledError):
            await_all(
                [make_handle(1)],
                started,
                poll_interval=1,
                timeout=60,
                ready_status=RunStatus.RUNNING,
                clock=fake_clock,
                cancel=cancel,
            )
        assert fake_clock.now == 1

    def test_empty_handles(self, fake_clock):
        await_all([], started, poll_interval=1, timeout=1, ready_status=RunStatus.RUNNING, clock=fake_clock)
        assert fake_clock.sleeps == []
