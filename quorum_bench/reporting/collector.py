r"""
Run collection.

    from quorum_bench.reporting.collector import RunCollector

    collector = RunCollector()
    collector.start_session(preset="smoke", testbed="local")
    collector.add_outcome(outcome)
    collector.end_session()
"""

from __future__ import annotations

import platform
import sys
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from quorum_bench.utils.process import total_memory_gb

if TYPE_CHECKING:
    from quorum_bench.runner.coordinator import RunOutcome

__all__ = ["EnvironmentInfo", "RunCollector", "RunRecord", "SessionInfo"]


@dataclass
class SessionInfo:
    """Information about a benchmark session.

    Attributes:
        session_id: Unique session identifier.
        started_at: Session start timestamp.
        completed_at: Session end timestamp (empty if ongoing).
        preset: Preset or run file used.
        testbed: Where participants ran.
    """

    session_id: str = ""
    started_at: str = ""
    completed_at: str = ""
    preset: str = ""
    testbed: str = ""


@dataclass
class EnvironmentInfo:
    """Information about the host driving the run.

    Attributes:
        platform: Operating system platform.
        python_version: Python version string.
        cpu: CPU description.
        memory_gb: Total memory in GB.
    """

    platform: str = ""
    python_version: str = ""
    cpu: str = ""
    memory_gb: float = 0.0


@dataclass
class RunRecord:
    """Serializable summary of one run."""

    description: str
    testbed: str
    status: str
    phase: str
    failed_in: str | None = None
    mean_latency: int | None = None
    count: int = 0
    skipped: int = 0
    error: str | None = None
    duration_seconds: float = 0.0
    phase_durations: dict[str, float] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    leaks: list[str] = field(default_factory=list)
    config: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        """True if the run completed."""
        return self.status == "ok"

    @classmethod
    def from_outcome(cls, outcome: RunOutcome) -> RunRecord:
        """Summarize a coordinator outcome."""
        if outcome.ok:
            status = "ok"
        elif outcome.cancelled:
            status = "cancelled"
        else:
            status = "failed"
        result = outcome.aggregate
        return cls(
            description=outcome.description,
            testbed=outcome.testbed,
            status=status,
            phase=outcome.phase.value,
            failed_in=outcome.failed_in.value if outcome.failed_in else None,
            mean_latency=result.mean_latency if result else None,
            count=result.count if result else 0,
            skipped=result.skipped if result else 0,
            error=str(outcome.error) if outcome.error else None,
            duration_seconds=round(outcome.duration_seconds, 3),
            phase_durations={name: round(seconds, 3) for name, seconds in outcome.phase_durations.items()},
            warnings=list(outcome.warnings),
            leaks=[str(leak) for leak in outcome.leaks],
            config=dict(outcome.config),
        )


class RunCollector:
    """Collects run outcomes of a session."""

    def __init__(self) -> None:
        self._records: list[RunRecord] = []
        self._session = SessionInfo()
        self._environment = EnvironmentInfo()

    def start_session(self, *, preset: str, testbed: str) -> None:
        """Start a new benchmark session."""
        started_at = datetime.now(UTC)
        self._session = SessionInfo(
            session_id=f"run_{started_at.strftime('%Y%m%d_%H%M%S')}",
            started_at=started_at.isoformat(),
            preset=preset,
            testbed=testbed,
        )
        self._collect_environment()

    def _collect_environment(self) -> None:
        self._environment = EnvironmentInfo(
            platform=platform.system().lower(),
            python_version=f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
            cpu=platform.processor() or platform.machine() or "unknown",
            memory_gb=total_memory_gb(),
        )

    def end_session(self) -> None:
        """End the current benchmark session."""
        self._session.completed_at = datetime.now(UTC).isoformat()

    def add_outcome(self, outcome: RunOutcome) -> RunRecord:
        """Record a coordinator outcome."""
        record = RunRecord.from_outcome(outcome)
        self._records.append(record)
        return record

    def add_record(self, record: RunRecord) -> None:
        """Record an already summarized run."""
        self._records.append(record)

    @property
    def records(self) -> list[RunRecord]:
        """Get all collected runs."""
        return self._records

    @property
    def session(self) -> SessionInfo:
        """Get session information."""
        return self._session

    @property
    def environment(self) -> EnvironmentInfo:
        """Get environment information."""
        return self._environment

    @property
    def leaks(self) -> list[str]:
        """Every resource leak reported by any run."""
        return [leak for record in self._records for leak in record.leaks]

    def to_dict(self) -> dict[str, Any]:
        """Convert collected data to dictionary."""
        return {
            "session": {
                "id": self._session.session_id,
                "started_at": self._session.started_at,
                "completed_at": self._session.completed_at,
                "preset": self._session.preset,
                "testbed": self._session.testbed,
            },
            "environment": asdict(self._environment),
            "runs": [asdict(record) for record in self._records],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RunCollector:
        """Rebuild a collector from `to_dict` output."""
        collector = cls()
        session = data.get("session", {})
        collector._session = SessionInfo(
            session_id=session.get("id", ""),
            started_at=session.get("started_at", ""),
            completed_at=session.get("completed_at", ""),
            preset=session.get("preset", ""),
            testbed=session.get("testbed", ""),
        )
        collector._environment = EnvironmentInfo(**data.get("environment", {}))
        collector._records = [RunRecord(**run) for run in data.get("runs", [])]
        return collector
