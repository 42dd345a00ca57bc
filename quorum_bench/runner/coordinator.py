r"""
Run coordinator: drives one experiment from configuration to teardown.

    from quorum_bench.config import get_preset
    from quorum_bench.runner import RunCoordinator

    coordinator = RunCoordinator(get_preset("smoke"), logs_dir=Path("logs"))
    coordinator.set_progress_callback(lambda phase, message: print(phase, message))
    outcome = coordinator.run()
    if outcome.ok:
        print(f"mean latency: {outcome.aggregate.mean_latency}")

Phases run strictly in order. Every participant that was spawned is reaped
and every machine that was provisioned is torn down, whatever happens.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from quorum_bench.cluster.base import ClusterManager, Machine, MachineRequest
from quorum_bench.cluster.monitor import ResourceMonitor
from quorum_bench.config import run_description_to_dict, save_run_description
from quorum_bench.errors import HarnessError, LaunchError, RunCancelledError, TeardownError
from quorum_bench.launcher import ExecutionTarget, LocalTarget, ProcessLauncher, RemoteTarget, TargetFactory
from quorum_bench.markers import CLIENTS_ENDED, client_started, process_started
from quorum_bench.reporting.metrics import aggregate
from quorum_bench.runner.barrier import await_all
from quorum_bench.runner.timing import Clock, SystemClock, timed_section
from quorum_bench.topology import build_clients, build_roles
from quorum_bench.types import (
    AggregateResult,
    ClientSpec,
    CloudSettings,
    ParticipantKind,
    ProcessSpec,
    RunDescription,
    RunHandle,
    RunPhase,
    RunStatus,
)

__all__ = ["LogLayout", "ProgressCallback", "RunCoordinator", "RunOutcome"]

LOGGER = logging.getLogger("quorum_bench.runner")

ProgressCallback = Callable[[RunPhase, str], None]

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130

RUN_CONFIG_FILE = "run.yaml"


class LogLayout:
    """Where each participant's log lives.

    Paths are assigned once per participant before anything is launched;
    the launcher writes there and the barrier and aggregator read there.
    Participants are named by id, or by `id-shard` for sharded servers.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)
        self._paths: dict[tuple[ParticipantKind, str], Path] = {}

    def assign(self, kind: ParticipantKind, participant: int | str) -> Path:
        """Assign (or return the already assigned) log path of a participant."""
        key = (kind, str(participant))
        if key not in self._paths:
            self._paths[key] = self.root / f"{kind.value}_{participant}.log"
        return self._paths[key]

    def path(self, kind: ParticipantKind, participant: int | str) -> Path:
        """Log path of an assigned participant.

        Raises:
            KeyError: If no path was assigned.
        """
        return self._paths[(kind, str(participant))]

    def paths(self, kind: ParticipantKind) -> list[Path]:
        """Log paths of all participants of one kind, ordered by id."""
        assigned = [(name, path) for (k, name), path in self._paths.items() if k == kind]
        return [path for name, path in sorted(assigned, key=lambda item: _numeric(item[0]))]

    def __len__(self) -> int:
        return len(self._paths)


def _numeric(participant: str) -> tuple[int, ...]:
    return tuple(int(part) for part in participant.split("-"))


@dataclass
class RunOutcome:
    """Result of one experiment.

    Attributes:
        description: Run description name.
        testbed: Where the participants ran.
        phase: Final phase (DONE or FAILED).
        failed_in: Phase that raised, if any.
        aggregate: Latency aggregate (None unless aggregation succeeded).
        error: Error that ended the run, if any.
        warnings: Non-fatal problems (skipped metric lines, reap failures).
        leaks: Resources that could not be released.
        phase_durations: Seconds spent in each phase.
        config: Snapshot of the run description.
        started_at: Timestamp when the run started.
        completed_at: Timestamp when the run finished.
    """

    description: str
    testbed: str
    phase: RunPhase = RunPhase.IDLE
    failed_in: RunPhase | None = None
    aggregate: AggregateResult | None = None
    error: BaseException | None = None
    warnings: list[str] = field(default_factory=list)
    leaks: list[TeardownError] = field(default_factory=list)
    phase_durations: dict[str, float] = field(default_factory=dict)
    config: dict[str, Any] = field(default_factory=dict)
    started_at: float = 0.0
    completed_at: float = 0.0

    @property
    def ok(self) -> bool:
        """True if the run completed and produced an aggregate."""
        return self.phase == RunPhase.DONE and self.error is None and self.aggregate is not None

    @property
    def cancelled(self) -> bool:
        """True if the run was stopped by a signal."""
        return isinstance(self.error, RunCancelledError)

    @property
    def exit_code(self) -> int:
        """Process exit status for this outcome."""
        if self.ok:
            return EXIT_OK
        if self.cancelled:
            return EXIT_CANCELLED
        return EXIT_FAILED

    @property
    def duration_seconds(self) -> float:
        """Total duration in seconds."""
        return self.completed_at - self.started_at


class RunCoordinator:
    """Runs one experiment end to end.

    Without a cluster every participant runs on this host. With a cluster,
    machines are provisioned while configuring, after the topology has been
    validated: every role of server i is placed on machine i-1 and client i
    on machine N+i-1, wrapping around when fewer machines were requested.
    With `monitor`, dstat samples each machine until teardown. A participant
    still alive `stop_timeout` seconds after being stopped is reported as a
    leak.
    """

    def __init__(
        self,
        description: RunDescription,
        *,
        logs_dir: Path | str,
        cluster: ClusterManager | None = None,
        cloud: CloudSettings | None = None,
        target_factory: TargetFactory | None = None,
        clock: Clock | None = None,
        workdir: str = "quorum-bench",
        max_workers: int | None = None,
        monitor: bool = False,
        stop_timeout: float = 5.0,
    ) -> None:
        self._description = description
        self._layout = LogLayout(logs_dir)
        self._cluster = cluster
        self._cloud = cloud or CloudSettings()
        self._target_factory = target_factory
        self._clock = clock or SystemClock()
        self._workdir = workdir
        self._max_workers = max_workers
        self._monitor_enabled = monitor
        self._stop_timeout = stop_timeout
        self._monitor: ResourceMonitor | None = None
        self._cancel = threading.Event()
        self._progress_callback: ProgressCallback | None = None

        self._phase = RunPhase.IDLE
        self._machines: list[Machine] = []
        self._targets: dict[str, ExecutionTarget] = {}
        self._targets_lock = threading.Lock()
        self._launcher: ProcessLauncher | None = None
        self._servers: list[ProcessSpec] = []
        self._clients: list[ClientSpec] = []
        self._server_handles: list[RunHandle] = []
        self._client_handles: list[RunHandle] = []

    @property
    def phase(self) -> RunPhase:
        """Current phase."""
        return self._phase

    @property
    def layout(self) -> LogLayout:
        """Log path of every participant."""
        return self._layout

    @property
    def testbed(self) -> str:
        """Name of the testbed participants run on."""
        return self._cluster.name if self._cluster else "local"

    @property
    def handles(self) -> list[RunHandle]:
        """Every participant spawned so far, servers first."""
        return [*self._server_handles, *self._client_handles]

    def set_progress_callback(self, callback: ProgressCallback) -> None:
        """Set callback for phase transitions."""
        self._progress_callback = callback

    def stop(self) -> None:
        """Cancel the run. Safe to call from a signal handler or another thread."""
        if not self._cancel.is_set():
            LOGGER.warning("stop requested, cancelling run")
        self._cancel.set()

    def plan(self) -> list[tuple[str, list[str]]]:
        """Command line of every participant, without launching anything."""
        servers = build_roles(self._description.topology)
        clients = build_clients(
            servers,
            clients_per_process=self._description.clients_per_process,
            commands_per_client=self._description.commands_per_client,
        )
        launcher = self._make_launcher()
        plan = [(f"server {spec.role}", launcher.argv(spec, ParticipantKind.SERVER)) for spec in servers]
        plan.extend((f"client {spec.role}", launcher.argv(spec, ParticipantKind.CLIENT)) for spec in clients)
        return plan

    def run(self) -> RunOutcome:
        """Execute the experiment.

        Errors never escape: they end the run in FAILED and are reported in
        `RunOutcome.error`.
        """
        outcome = RunOutcome(description=self._description.name, testbed=self.testbed)
        outcome.started_at = time.time()
        LOGGER.info("run %r starting on %s", self._description.name, self.testbed)
        try:
            self._execute(outcome)
        except RunCancelledError as e:
            outcome.failed_in = self._phase
            outcome.error = e
            LOGGER.warning("run cancelled during %s", self._phase)
        except HarnessError as e:
            outcome.failed_in = self._phase
            outcome.error = e
            LOGGER.error("run failed during %s: %s", self._phase, e)
        except Exception as e:
            outcome.failed_in = self._phase
            outcome.error = e
            LOGGER.exception("run failed during %s", self._phase)
        finally:
            with self._enter(RunPhase.TEARING_DOWN, "stopping participants", outcome):
                self._teardown(outcome)
            completed = outcome.error is None and outcome.aggregate is not None
            self._transition(RunPhase.DONE if completed else RunPhase.FAILED, self._summary(outcome))
            outcome.phase = self._phase
            outcome.completed_at = time.time()
        return outcome

    def _execute(self, outcome: RunOutcome) -> None:
        description = self._description

        with self._enter(RunPhase.CONFIGURING, "building topology", outcome):
            self._configure(outcome)

        with self._enter(RunPhase.LAUNCHING_SERVERS, f"launching {len(self._servers)} server(s)", outcome):
            self._server_handles = self._spawn_all(self._servers, ParticipantKind.SERVER)

        with self._enter(RunPhase.AWAITING_SERVERS_READY, "waiting for servers", outcome):
            await_all(
                self._server_handles,
                lambda handle: process_started(handle.participant_id),
                poll_interval=description.startup_poll_interval,
                timeout=description.startup_timeout,
                ready_status=RunStatus.RUNNING,
                clock=self._clock,
                cancel=self._cancel,
            )

        with self._enter(RunPhase.LAUNCHING_CLIENTS, f"launching {len(self._clients)} client(s)", outcome):
            self._client_handles = self._spawn_all(self._clients, ParticipantKind.CLIENT)

        with self._enter(RunPhase.AWAITING_CLIENTS_READY, "waiting for clients", outcome):
            await_all(
                self._client_handles,
                lambda handle: client_started(handle.spec.id_start),
                poll_interval=description.startup_poll_interval,
                timeout=description.startup_timeout,
                ready_status=RunStatus.RUNNING,
                clock=self._clock,
                cancel=self._cancel,
            )

        with self._enter(RunPhase.AWAITING_CLIENTS_ENDED, "waiting for clients to finish", outcome):
            await_all(
                self._client_handles,
                lambda handle: CLIENTS_ENDED,
                poll_interval=description.completion_poll_interval,
                timeout=description.completion_timeout,
                ready_status=RunStatus.ENDED,
                clock=self._clock,
                cancel=self._cancel,
            )

        with self._enter(RunPhase.AGGREGATING, "aggregating client latencies", outcome):
            result = aggregate(self._layout.paths(ParticipantKind.CLIENT), strict=False)
            if result.skipped:
                outcome.warnings.append(f"skipped {result.skipped} malformed latency line(s)")
            outcome.aggregate = result
            LOGGER.info("mean latency %d over %d record(s)", result.mean_latency, result.count)

    def _configure(self, outcome: RunOutcome) -> None:
        description = self._description
        n = description.topology.processes

        # raises ConfigError before any machine is paid for
        self._servers, self._clients = self._build(description)
        snapshot = save_run_description(description, self._layout.root / RUN_CONFIG_FILE)
        outcome.config = run_description_to_dict(description)
        LOGGER.debug("run description saved to %s", snapshot)

        if self._cluster is not None:
            count = self._cloud.machine_count or 2 * n
            request = MachineRequest(count=count, region=self._cloud.region, instance_type=self._cloud.instance_type)
            self._machines = self._cluster.provision(request)
            self._check_cancel()
            hosts = {process_id: self._machine_for(ParticipantKind.SERVER, process_id).address for process_id in range(1, n + 1)}
            self._servers, self._clients = self._build(description, hosts)

        for spec in self._servers:
            self._layout.assign(ParticipantKind.SERVER, spec.role)
        for spec in self._clients:
            self._layout.assign(ParticipantKind.CLIENT, spec.role)
        self._launcher = self._make_launcher()

        if self._monitor_enabled and self._machines:
            self._monitor = ResourceMonitor(self._machines, workdir=self._workdir)
            self._monitor.start()

    def _build(
        self, description: RunDescription, hosts: dict[int, str] | None = None
    ) -> tuple[list[ProcessSpec], list[ClientSpec]]:
        servers = build_roles(description.topology, hosts)
        clients = build_clients(
            servers,
            clients_per_process=description.clients_per_process,
            commands_per_client=description.commands_per_client,
        )
        return servers, clients

    def _make_launcher(self) -> ProcessLauncher:
        return ProcessLauncher(
            self._target_factory or self._target_for,
            server_command=self._description.server_command,
            client_command=self._description.client_command,
        )

    def _machine_for(self, kind: ParticipantKind, participant_id: int) -> Machine:
        n = self._description.topology.processes
        offset = 0 if kind == ParticipantKind.SERVER else n
        return self._machines[(offset + participant_id - 1) % len(self._machines)]

    def _target_for(self, kind: ParticipantKind, participant_id: int) -> ExecutionTarget:
        with self._targets_lock:
            if not self._machines:
                return self._targets.setdefault("localhost", LocalTarget())
            machine = self._machine_for(kind, participant_id)
            if machine.resource_id not in self._targets:
                self._targets[machine.resource_id] = RemoteTarget(machine, workdir=self._workdir)
            return self._targets[machine.resource_id]

    def _spawn_all(self, specs: Sequence[ProcessSpec | ClientSpec], kind: ParticipantKind) -> list[RunHandle]:
        """Spawn one phase's participants concurrently.

        Handles that did start are kept even when a sibling failed, so they
        are reaped on teardown.
        """
        self._check_cancel()
        launcher = self._launcher
        if launcher is None:
            raise LaunchError(f"cannot launch {kind.value}s before the run is configured")

        def spawn(spec: ProcessSpec | ClientSpec) -> RunHandle:
            return launcher.spawn(spec, kind, self._layout.path(kind, spec.role))

        handles: list[RunHandle] = []
        errors: list[BaseException] = []
        workers = self._max_workers or max(1, len(specs))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(spawn, spec) for spec in specs]
            for future in futures:
                try:
                    handles.append(future.result())
                except Exception as e:
                    errors.append(e)

        if kind == ParticipantKind.SERVER:
            self._server_handles = handles
        else:
            self._client_handles = handles
        if errors:
            first = errors[0]
            if isinstance(first, HarnessError):
                raise first
            raise LaunchError(f"failed to launch {kind.value}: {first}") from first
        return handles

    def _teardown(self, outcome: RunOutcome) -> None:
        if self._launcher is not None:
            # clients first so servers never see a client outlive them
            for handle in [*self._client_handles, *self._server_handles]:
                try:
                    self._launcher.reap(handle, timeout=self._stop_timeout)
                except TeardownError as e:
                    outcome.leaks.append(e)
                    LOGGER.warning("possible resource leak: %s", e)
                except Exception as e:
                    message = f"failed to stop {handle.label}: {e}"
                    outcome.warnings.append(message)
                    LOGGER.warning(message)

        if self._monitor is not None:
            pulled = self._monitor.stop(self._layout.root)
            outcome.warnings.extend(self._monitor.warnings)
            LOGGER.info("pulled %d dstat file(s)", len(pulled))

        if self._cluster is not None:
            before = len(self._cluster.leaks)
            for machine in self._machines:
                self._cluster.teardown(machine)
            outcome.leaks.extend(self._cluster.leaks[before:])

    def _check_cancel(self) -> None:
        if self._cancel.is_set():
            raise RunCancelledError(f"run cancelled during {self._phase}")

    @contextmanager
    def _enter(self, phase: RunPhase, message: str, outcome: RunOutcome) -> Iterator[None]:
        if phase != RunPhase.TEARING_DOWN:
            self._check_cancel()
        self._transition(phase, message)

        def record(name: str, seconds: float) -> None:
            outcome.phase_durations[name] = seconds

        with timed_section(phase.value, callback=record):
            yield

    def _transition(self, phase: RunPhase, message: str) -> None:
        LOGGER.info("[%s] %s", phase, message)
        self._phase = phase
        if self._progress_callback:
            self._progress_callback(phase, message)

    def _summary(self, outcome: RunOutcome) -> str:
        if outcome.error is not None:
            return f"failed during {outcome.failed_in}: {outcome.error}"
        if outcome.aggregate is None:
            return "interrupted"
        return f"mean latency {outcome.aggregate.mean_latency} over {outcome.aggregate.count} record(s)"
