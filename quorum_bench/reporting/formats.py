r"""
Export formats for run results.

    from quorum_bench.reporting.formats import JsonExporter, MarkdownExporter

    exporter = JsonExporter()
    exporter.export(collector, "results.json")
"""

import csv
import io
import json
from abc import ABC, abstractmethod
from pathlib import Path

from quorum_bench.reporting.collector import RunCollector, RunRecord
from quorum_bench.types import RunPhase

__all__ = ["BaseExporter", "CsvExporter", "EXPORTERS", "JsonExporter", "MarkdownExporter", "get_exporter"]


class BaseExporter(ABC):
    """Base class for result exporters."""

    suffix: str = ""

    def export(self, collector: RunCollector, path: str | Path) -> None:
        """Export results to file."""
        Path(path).write_text(self.to_string(collector))

    @abstractmethod
    def to_string(self, collector: RunCollector) -> str:
        """Export results to string."""
        ...


class JsonExporter(BaseExporter):
    """Export results to JSON format."""

    suffix = ".json"

    def __init__(self, *, indent: int = 2) -> None:
        self._indent = indent

    def to_string(self, collector: RunCollector) -> str:
        return json.dumps(collector.to_dict(), indent=self._indent)


class CsvExporter(BaseExporter):
    """Export results to CSV format, one row per run."""

    suffix = ".csv"

    columns = [
        "session_id",
        "description",
        "testbed",
        "status",
        "failed_in",
        "mean_latency",
        "count",
        "skipped",
        "duration_s",
        "error",
    ]

    def to_string(self, collector: RunCollector) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(self.columns)
        session_id = collector.session.session_id
        for record in collector.records:
            writer.writerow([
                session_id,
                record.description,
                record.testbed,
                record.status,
                record.failed_in or "",
                "" if record.mean_latency is None else record.mean_latency,
                record.count,
                record.skipped,
                f"{record.duration_seconds:.3f}",
                record.error or "",
            ])
        return buffer.getvalue()


class MarkdownExporter(BaseExporter):
    """Export results to Markdown format."""

    suffix = ".md"

    def to_string(self, collector: RunCollector) -> str:
        lines: list[str] = []
        session = collector.session
        env = collector.environment

        lines.append("# Cluster Benchmark Report")
        lines.append("")
        lines.append(f"**Session:** {session.session_id}")
        lines.append(f"**Preset:** {session.preset}")
        lines.append(f"**Testbed:** {session.testbed}")
        lines.append(f"**Date:** {session.started_at[:10] if session.started_at else 'N/A'}")
        lines.append("")

        lines.append("## Environment")
        lines.append("")
        lines.append(f"- Platform: {env.platform}")
        lines.append(f"- Python: {env.python_version}")
        lines.append(f"- CPU: {env.cpu}")
        lines.append(f"- Memory: {env.memory_gb} GB")
        lines.append("")

        lines.append("## Runs")
        lines.append("")
        self._add_summary_table(collector.records, lines)

        for record in collector.records:
            if record.phase_durations:
                self._add_phase_table(record, lines)

        leaks = collector.leaks
        if leaks:
            lines.append("## Possible Resource Leaks")
            lines.append("")
            lines.extend(f"- {leak}" for leak in leaks)
            lines.append("")

        return "\n".join(lines)

    def _add_summary_table(self, records: list[RunRecord], lines: list[str]) -> None:
        lines.append("| Run | Testbed | Status | Mean latency | Records | Skipped | Duration (s) |")
        lines.append("|-----|---------|--------|--------------|---------|---------|--------------|")
        for record in records:
            status = record.status.upper() if not record.ok else "ok"
            latency = "N/A" if record.mean_latency is None else str(record.mean_latency)
            lines.append(
                f"| {record.description} | {record.testbed} | {status} | {latency} | "
                f"{record.count} | {record.skipped} | {record.duration_seconds:.2f} |"
            )
        lines.append("")

        failures = [record for record in records if not record.ok]
        for record in failures:
            lines.append(f"- **{record.description}** {record.status} during `{record.failed_in}`: {record.error}")
        if failures:
            lines.append("")

    def _add_phase_table(self, record: RunRecord, lines: list[str]) -> None:
        lines.append(f"### Phases of {record.description}")
        lines.append("")
        lines.append("| Phase | Seconds |")
        lines.append("|-------|---------|")
        order = [phase.value for phase in RunPhase]
        for name, seconds in sorted(record.phase_durations.items(), key=lambda item: order.index(item[0])):
            lines.append(f"| {name} | {seconds:.2f} |")
        lines.append("")


EXPORTERS: dict[str, type[BaseExporter]] = {
    "json": JsonExporter,
    "csv": CsvExporter,
    "markdown": MarkdownExporter,
}


def get_exporter(name: str) -> BaseExporter:
    """Create an exporter by format name.

    Raises:
        ValueError: If the format is unknown.
    """
    exporter_cls = EXPORTERS.get(name.lower())
    if exporter_cls is None:
        valid = ", ".join(EXPORTERS)
        raise ValueError(f"Unknown format '{name}'. Valid formats: {valid}")
    return exporter_cls()
