r"""
Tests for quorum_bench.types and quorum_bench.errors modules.
"""

from pathlib import Path

import pytest

from quorum_bench.errors import HarnessError, ParseError, ReadinessTimeoutError, TeardownError
from quorum_bench.topology import build_roles
from quorum_bench.types import (
    ClientSpec,
    ParticipantKind,
    PeerKey,
    RunHandle,
    RunPhase,
    RunStatus,
    TopologyConfig,
)


class TestRunStatus:
    def test_status_order(self):
        assert RunStatus.STARTING < RunStatus.RUNNING < RunStatus.ENDED < RunStatus.FAILED


class TestRunPhase:
    def test_terminal_phases(self):
        assert RunPhase.DONE.terminal
        assert RunPhase.FAILED.terminal
        assert not RunPhase.TEARING_DOWN.terminal
        assert not RunPhase.IDLE.terminal

    def test_phase_values(self):
        assert RunPhase.AWAITING_SERVERS_READY == "awaiting_servers_ready"


class TestPeerKey:
    def test_render_unsharded(self):
        assert PeerKey(3, 1).render(sharded=False) == "3"

    def test_render_sharded(self):
        assert PeerKey(3, 1).render(sharded=True) == "3-1"

    def test_ordering(self):
        keys = [PeerKey(2, 0), PeerKey(1, 1), PeerKey(1, 0)]
        assert sorted(keys) == [PeerKey(1, 0), PeerKey(1, 1), PeerKey(2, 0)]


class TestTopologyConfig:
    def test_single_shard_by_default(self):
        assert TopologyConfig(processes=3, faults=1).shards == 1

    def test_shard_count(self):
        config = TopologyConfig(processes=3, faults=1, shard_assignment={0: (1, 2, 3), 1: (1, 2, 3)})
        assert config.shards == 2


class TestRunHandle:
    def test_label_and_id(self):
        spec = ClientSpec(client_id=2, addresses=("h:4002",), id_start=3, id_end=4, commands_per_client=5)
        handle = RunHandle(spec=spec, kind=ParticipantKind.CLIENT, log_path=Path("client_2.log"))
        assert handle.participant_id == 2
        assert handle.label == "client 2"
        assert handle.status == RunStatus.STARTING
        assert spec.simulated_clients == 2

    def test_sharded_server_label(self):
        config = TopologyConfig(processes=3, faults=1, shard_assignment={0: (1, 2, 3), 1: (1, 2, 3)})
        role = build_roles(config)[3]
        handle = RunHandle(spec=role, kind=ParticipantKind.SERVER, log_path=Path("server_2-1.log"))
        assert handle.participant_id == 2
        assert handle.label == "server 2-1"


class TestErrors:
    def test_readiness_timeout_is_timeout_error(self):
        error = ReadinessTimeoutError(["server 3", "server 1"], 30)
        assert isinstance(error, TimeoutError)
        assert isinstance(error, HarnessError)
        assert error.unready == ["server 3", "server 1"]
        assert "30s" in str(error)

    def test_readiness_timeout_keeps_participant_order(self):
        error = ReadinessTimeoutError(iter(["server 2", "server 10", "server 2-1"]), 5)
        assert error.unready == ["server 2", "server 10", "server 2-1"]
        assert str(error) == "not ready after 5s: server 2, server 10, server 2-1"

    def test_parse_error_names_location(self):
        error = ParseError("logs/client_1.log", 7, "latency avg=abc\n")
        assert error.line_number == 7
        assert "client_1.log:7" in str(error)

    def test_teardown_error_keeps_cause(self):
        cause = RuntimeError("boom")
        error = TeardownError("aws machine i-1", cause)
        assert error.cause is cause
        assert "i-1" in str(error)

    def test_errors_share_base(self):
        with pytest.raises(HarnessError):
            raise ParseError("x.log", 1, "latency avg=")
