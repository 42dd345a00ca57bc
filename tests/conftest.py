r"""
Shared pytest fixtures for quorum-bench tests.
"""

import sys
from pathlib import Path

import pytest

from quorum_bench.cluster.base import ClusterManager, CommandResult, Machine, MachineRequest
from quorum_bench.errors import TransientProvisionError
from quorum_bench.launcher.base import Session
from quorum_bench.types import ClientSpec, ParticipantKind, RunDescription, RunHandle, TopologyConfig

FAKES = Path(__file__).parent / "fakes"


class FakeClock:
    """Simulated clock: sleeping advances time instantly."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []
        self.on_sleep = None

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep:
            self.on_sleep(self.now)


class FakeSession(Session):
    def __init__(self, code: int | None = None, *, stuck: bool = False) -> None:
        self.code = code
        self.stuck = stuck
        self.terminated = 0

    def exit_code(self) -> int | None:
        return self.code

    def terminate(self, *, timeout: float = 5.0) -> None:
        self.terminated += 1
        if self.code is None and not self.stuck:
            self.code = -15


class FakeConnection:
    """Records commands instead of running them over SSH."""

    def __init__(self, exited: int = 0, stdout: str = "") -> None:
        self.commands: list[str] = []
        self.puts: list[tuple[str, str]] = []
        self.gets: list[tuple[str, str]] = []
        self.exited = exited
        self.stdout = stdout
        self.closed = False

    def run(self, command, **kwargs):
        self.commands.append(command)
        return CommandResult(stdout=self.stdout, exited=self.exited)

    def put(self, local, remote=None):
        self.puts.append((local, remote))

    def get(self, remote, local=None):
        self.gets.append((remote, local))

    def close(self):
        self.closed = True


class FakeCluster(ClusterManager):
    """In-memory cluster that counts provisions and releases."""

    def __init__(self, *, transient_failures: int = 0, broken: set[str] | None = None, **kwargs) -> None:
        kwargs.setdefault("sleep", lambda seconds: None)
        super().__init__(**kwargs)
        self.transient_failures = transient_failures
        self.broken = broken or set()
        self.attempts = 0
        self.released: list[str] = []
        self.provisioned: list[Machine] = []

    @property
    def name(self) -> str:
        return "fake"

    def _provision(self, request: MachineRequest) -> list[Machine]:
        self.attempts += 1
        if self.attempts <= self.transient_failures:
            raise TransientProvisionError("insufficient capacity")
        machines = [
            Machine(f"10.0.0.{i}", resource_id=f"fake-{self.attempts}-{i}", connection=FakeConnection())
            for i in range(1, request.count + 1)
        ]
        self.provisioned.extend(machines)
        return machines

    def _release(self, machine: Machine) -> None:
        self.released.append(machine.resource_id)
        if machine.resource_id in self.broken:
            raise RuntimeError("instance stuck in shutting-down")


@pytest.fixture
def fake_clock() -> FakeClock:
    """Simulated clock starting at zero."""
    return FakeClock()


@pytest.fixture
def fake_cluster_cls() -> type[FakeCluster]:
    return FakeCluster


@pytest.fixture
def fake_connection_cls() -> type[FakeConnection]:
    return FakeConnection


@pytest.fixture
def fake_session_cls() -> type[FakeSession]:
    return FakeSession


@pytest.fixture
def topology() -> TopologyConfig:
    """Three processes tolerating one fault."""
    return TopologyConfig(processes=3, faults=1)


@pytest.fixture
def logs_dir(tmp_path: Path) -> Path:
    path = tmp_path / "logs"
    path.mkdir()
    return path


@pytest.fixture
def make_handle(logs_dir: Path):
    """Factory for client handles whose log already holds `text`."""

    def factory(client_id: int, text: str | None = None, session: Session | None = None) -> RunHandle:
        log_path = logs_dir / f"client_{client_id}.log"
        if text is not None:
            log_path.write_text(text)
        spec = ClientSpec(
            client_id=client_id,
            addresses=("127.0.0.1:4001",),
            id_start=client_id,
            id_end=client_id,
            commands_per_client=1,
        )
        return RunHandle(spec=spec, kind=ParticipantKind.CLIENT, log_path=log_path, session=session)

    return factory


@pytest.fixture
def fake_description(topology: TopologyConfig) -> RunDescription:
    """Run description driving the stand-in server and client scripts."""
    return RunDescription(
        name="fake",
        topology=topology,
        clients_per_process=1,
        commands_per_client=10,
        server_command=(sys.executable, str(FAKES / "fake_server.py")),
        client_command=(sys.executable, str(FAKES / "fake_client.py")),
        startup_timeout=30.0,
        completion_timeout=60.0,
        startup_poll_interval=0.05,
        completion_poll_interval=0.05,
    )
