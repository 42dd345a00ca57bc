r"""
Metric aggregation and result reporting.

Aggregates client latencies and exports run outcomes to
JSON, CSV, and Markdown formats.

    from quorum_bench.reporting import MarkdownExporter, RunCollector

    collector = RunCollector()
    collector.add_outcome(outcome)
    MarkdownExporter().export(collector, "report.md")
"""

from quorum_bench.reporting.collector import EnvironmentInfo, RunCollector, RunRecord, SessionInfo
from quorum_bench.reporting.formats import CsvExporter, JsonExporter, MarkdownExporter, get_exporter
from quorum_bench.reporting.metrics import aggregate, parse_latency

__all__ = [
    "CsvExporter",
    "EnvironmentInfo",
    "JsonExporter",
    "MarkdownExporter",
    "RunCollector",
    "RunRecord",
    "SessionInfo",
    "aggregate",
    "get_exporter",
    "parse_latency",
]
