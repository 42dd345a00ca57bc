r"""
Command-line interface for quorum-bench.

    quorum-bench run -p smoke
    quorum-bench run -f runs/newt.yaml --testbed baremetal --hosts 10.0.0.1,10.0.0.2
    quorum-bench aggregate logs/client_*.log
    quorum-bench report results/run_20250101_120000.json -f markdown
"""

import json
import logging
import shlex
import signal
from dataclasses import replace
from pathlib import Path
from typing import Annotated, Any

import typer

__all__ = ["app", "main"]

LOGGER = logging.getLogger("quorum_bench.cli")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

TESTBEDS = ("local", "aws", "baremetal")

app = typer.Typer(
    name="quorum-bench",
    help="Benchmark harness for replicated consensus clusters.",
    no_args_is_help=True,
)


def _setup_logging(level: str) -> None:
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        typer.echo(f"Error: unknown log level '{level}'", err=True)
        raise typer.Exit(1)
    logging.basicConfig(level=numeric, format=LOG_FORMAT)


def _make_cluster(testbed: str, hosts: str | None, description: Any, cloud: Any) -> tuple[Any, Any]:
    """Cluster manager and cloud settings for a testbed (None for local)."""
    from quorum_bench.cluster import ClusterRegistry
    from quorum_bench.config import get_env

    if testbed == "local":
        return None, cloud
    if testbed == "aws":
        return ClusterRegistry.create("aws", settings=cloud), cloud

    host_list = [h.strip() for h in (hosts or get_env("HOSTS") or "").split(",") if h.strip()]
    if not host_list:
        typer.echo("Error: --hosts (or QUORUM_BENCH_HOSTS) is required for the baremetal testbed", err=True)
        raise typer.Exit(1)
    patterns = [Path(description.server_command[0]).name, Path(description.client_command[0]).name]
    cluster = ClusterRegistry.create(
        "baremetal",
        hosts=host_list,
        user=cloud.ssh_user,
        key_file=cloud.key_file,
        cleanup_patterns=patterns,
    )
    return cluster, replace(cloud, machine_count=cloud.machine_count or len(host_list))


@app.command()
def run(
    preset: Annotated[str | None, typer.Option("-p", "--preset", help="Run preset: smoke, standard, sharded")] = None,
    run_file: Annotated[Path | None, typer.Option("-f", "--file", help="YAML run description")] = None,
    testbed: Annotated[str, typer.Option("--testbed", help="Testbed: local, aws, baremetal")] = "local",
    hosts: Annotated[str | None, typer.Option("--hosts", help="Baremetal hosts (comma-separated)")] = None,
    server_cmd: Annotated[str | None, typer.Option("--server-cmd", help="Server command line")] = None,
    client_cmd: Annotated[str | None, typer.Option("--client-cmd", help="Client command line")] = None,
    output: Annotated[Path, typer.Option("-o", "--output", help="Output directory")] = Path("./results"),
    format_: Annotated[
        str, typer.Option("--format", help="Output format: json, csv, markdown, all (comma-separated)")
    ] = "json",
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Show the command lines without launching")] = False,
    monitor: Annotated[bool, typer.Option("--monitor", help="Sample machine resources with dstat (cluster testbeds)")] = False,
    log_level: Annotated[str, typer.Option("--log-level", help="Logging level")] = "INFO",
) -> None:
    """Run one experiment and aggregate client latencies."""
    from quorum_bench.config import DEFAULT_PRESET, cloud_settings_from_env, get_preset, load_run_description, with_commands
    from quorum_bench.errors import HarnessError
    from quorum_bench.reporting import RunCollector, get_exporter
    from quorum_bench.runner import RunCoordinator

    _setup_logging(log_level)

    if testbed not in TESTBEDS:
        typer.echo(f"Error: unknown testbed '{testbed}'. Valid testbeds: {', '.join(TESTBEDS)}", err=True)
        raise typer.Exit(1)
    if preset and run_file:
        typer.echo("Error: use either --preset or --file, not both", err=True)
        raise typer.Exit(1)

    try:
        description = load_run_description(run_file) if run_file else get_preset(preset or DEFAULT_PRESET)
        description = with_commands(
            description,
            server_command=tuple(shlex.split(server_cmd)) if server_cmd else None,
            client_command=tuple(shlex.split(client_cmd)) if client_cmd else None,
        )
        cluster, cloud = _make_cluster(testbed, hosts, description, cloud_settings_from_env())
    except (HarnessError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    formats = [f.strip() for f in format_.split(",") if f.strip()]
    if "all" in formats:
        formats = ["json", "csv", "markdown"]
    try:
        exporters = [get_exporter(fmt) for fmt in formats]
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    collector = RunCollector()
    collector.start_session(preset=description.name, testbed=testbed)
    logs_dir = output / collector.session.session_id / "logs"
    coordinator = RunCoordinator(description, logs_dir=logs_dir, cluster=cluster, cloud=cloud, monitor=monitor)

    if dry_run:
        typer.echo(f"[DRY RUN] {description.name} on {testbed}:")
        try:
            for label, argv in coordinator.plan():
                typer.echo(f"  {label}: {shlex.join(argv)}")
        except HarnessError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)
        return

    coordinator.set_progress_callback(lambda phase, message: typer.echo(f"[{phase}] {message}"))

    def stop(signum: int, frame: Any) -> None:
        LOGGER.warning("received signal %d", signum)
        coordinator.stop()

    previous = {sig: signal.signal(sig, stop) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        outcome = coordinator.run()
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    collector.add_outcome(outcome)
    collector.end_session()

    output.mkdir(parents=True, exist_ok=True)
    for exporter in exporters:
        path = output / f"{collector.session.session_id}{exporter.suffix}"
        exporter.export(collector, path)
        typer.echo(f"Exported {path}")

    for leak in outcome.leaks:
        typer.echo(f"Warning: possible resource leak: {leak}", err=True)

    result = outcome.aggregate
    if outcome.ok and result is not None:
        typer.echo(
            f"\nCompleted: mean latency {result.mean_latency} "
            f"over {result.count} record(s) in {outcome.duration_seconds:.1f}s"
        )
        return

    if outcome.cancelled:
        typer.echo("\nStopped by signal; all participants reaped", err=True)
    else:
        typer.echo(f"\nFailed during {outcome.failed_in}: {outcome.error}", err=True)
    raise typer.Exit(outcome.exit_code)


@app.command()
def aggregate(
    logs: Annotated[list[Path], typer.Argument(help="Client log files")],
    lenient: Annotated[bool, typer.Option("--lenient", help="Skip malformed latency lines")] = False,
    log_level: Annotated[str, typer.Option("--log-level", help="Logging level")] = "WARNING",
) -> None:
    """Compute the mean latency of client logs."""
    from quorum_bench.errors import NoDataError, ParseError
    from quorum_bench.reporting import aggregate as aggregate_logs

    _setup_logging(log_level)

    try:
        result = aggregate_logs(logs, strict=not lenient)
    except (NoDataError, ParseError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"mean latency: {result.mean_latency}")
    typer.echo(f"records: {result.count}")
    if result.skipped:
        typer.echo(f"skipped: {result.skipped}")


@app.command()
def report(
    results_path: Annotated[Path, typer.Argument(help="Path to results JSON file or directory")],
    format_: Annotated[str, typer.Option("-f", "--format", help="Output format: json, csv, markdown")] = "markdown",
    output: Annotated[Path | None, typer.Option("-o", "--output", help="Output file path")] = None,
) -> None:
    """Generate reports from saved run results."""
    from quorum_bench.reporting import RunCollector, get_exporter

    if results_path.is_dir():
        json_files = list(results_path.glob("*.json"))
        if not json_files:
            typer.echo(f"No JSON files found in {results_path}", err=True)
            raise typer.Exit(1)
        results_path = max(json_files, key=lambda p: p.stat().st_mtime)

    if not results_path.exists():
        typer.echo(f"File not found: {results_path}", err=True)
        raise typer.Exit(1)

    try:
        exporter = get_exporter(format_)
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    with open(results_path) as f:
        collector = RunCollector.from_dict(json.load(f))

    if output is None:
        output = results_path.with_suffix(exporter.suffix)
    exporter.export(collector, output)
    typer.echo(f"Generated report: {output}")


@app.command()
def presets() -> None:
    """List run presets."""
    from quorum_bench.config import DEFAULT_PRESET, PRESETS

    typer.echo("Available presets:")
    for name, description in PRESETS.items():
        topology = description.topology
        marker = " (default)" if name == DEFAULT_PRESET else ""
        typer.echo(
            f"  - {name}{marker}: N={topology.processes}, f={topology.faults}, shards={topology.shards}, "
            f"{description.clients_per_process} client(s) x {description.commands_per_client} command(s)"
        )


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
