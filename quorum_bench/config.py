r"""
Run presets, run-description files and environment settings.

Presets:
    - smoke: 3 processes, f=1, 1 client each, 10 commands (quick validation)
    - standard: 5 processes, f=2, 10 clients each, 1000 commands
    - sharded: 3 processes serving 2 shards, f=1

    from quorum_bench.config import get_preset, load_run_description

    description = get_preset("smoke")
    description = load_run_description("runs/newt.yaml")
"""

import os
from dataclasses import asdict, fields, replace
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

from quorum_bench.errors import ConfigError
from quorum_bench.types import CloudSettings, RunDescription, TopologyConfig

__all__ = [
    "DEFAULT_PRESET",
    "ENV_PREFIX",
    "PRESETS",
    "cloud_settings_from_env",
    "get_env",
    "get_preset",
    "load_run_description",
    "parse_run_description",
    "run_description_to_dict",
    "save_run_description",
    "with_commands",
]

# Look for .env in current dir, then next to the package
_env_file = Path(".env")
if not _env_file.exists():
    _env_file = Path(__file__).parent.parent / ".env"
if _env_file.exists():
    load_dotenv(_env_file)

ENV_PREFIX = "QUORUM_BENCH_"

PRESETS: dict[str, RunDescription] = {
    # Quick validation
    "smoke": RunDescription(
        name="smoke",
        topology=TopologyConfig(processes=3, faults=1),
        clients_per_process=1,
        commands_per_client=10,
        startup_timeout=30.0,
        completion_timeout=120.0,
        completion_poll_interval=1.0,
    ),
    # Standard benchmark (default)
    "standard": RunDescription(
        name="standard",
        topology=TopologyConfig(processes=5, faults=2, workers=4, executors=4, multiplexing=2),
        clients_per_process=10,
        commands_per_client=1000,
    ),
    # Two shards served by every process
    "sharded": RunDescription(
        name="sharded",
        topology=TopologyConfig(
            processes=3,
            faults=1,
            shard_assignment={0: (1, 2, 3), 1: (1, 2, 3)},
            workers=2,
            executors=2,
        ),
        clients_per_process=4,
        commands_per_client=100,
    ),
}

DEFAULT_PRESET = "standard"

_TOPOLOGY_KEYS = {f.name for f in fields(TopologyConfig)} | {"shards"}
_DESCRIPTION_KEYS = {f.name for f in fields(RunDescription)}


def get_preset(name: str) -> RunDescription:
    """Get a run preset by name.

    Raises:
        ConfigError: If the preset name is not recognized.
    """
    if name not in PRESETS:
        valid = ", ".join(PRESETS.keys())
        msg = f"Unknown preset '{name}'. Valid presets: {valid}"
        raise ConfigError(msg)
    return PRESETS[name]


def get_env(key: str, *, default: str | None = None) -> str | None:
    """Get environment variable with QUORUM_BENCH_ prefix.

    Args:
        key: Variable name without prefix (e.g., "AWS_REGION").
        default: Default value if not set.
    """
    return os.environ.get(f"{ENV_PREFIX}{key}", default)


def cloud_settings_from_env() -> CloudSettings:
    """Read cloud testbed settings from QUORUM_BENCH_AWS_* variables."""
    defaults = CloudSettings()
    count = get_env("AWS_MACHINE_COUNT")
    try:
        machine_count = int(count) if count else None
    except ValueError:
        raise ConfigError(f"{ENV_PREFIX}AWS_MACHINE_COUNT must be an integer, got {count!r}") from None
    return CloudSettings(
        region=get_env("AWS_REGION", default=defaults.region) or defaults.region,
        instance_type=get_env("AWS_INSTANCE_TYPE", default=defaults.instance_type) or defaults.instance_type,
        machine_count=machine_count,
        ami=get_env("AWS_AMI"),
        key_name=get_env("AWS_KEY_NAME"),
        ssh_user=get_env("SSH_USER", default=defaults.ssh_user) or defaults.ssh_user,
        key_file=get_env("SSH_KEY_FILE"),
    )


def load_run_description(path: str | Path) -> RunDescription:
    """Load a YAML run description.

    Raises:
        ConfigError: If the file is missing or malformed.
    """
    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text())
    except OSError as e:
        raise ConfigError(f"cannot read run description {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: run description must be a mapping")
    data.setdefault("name", path.stem)
    return parse_run_description(data)


def parse_run_description(data: dict[str, Any]) -> RunDescription:
    """Build a RunDescription from a plain mapping.

    Unset fields fall back to the dataclass defaults.

    Raises:
        ConfigError: On unknown keys or a missing topology.
    """
    unknown = sorted(set(data) - _DESCRIPTION_KEYS)
    if unknown:
        raise ConfigError(f"unknown run description keys: {', '.join(unknown)}")

    topology_data = data.get("topology")
    if not isinstance(topology_data, dict):
        raise ConfigError("run description needs a 'topology' mapping")
    unknown = sorted(set(topology_data) - _TOPOLOGY_KEYS)
    if unknown:
        raise ConfigError(f"unknown topology keys: {', '.join(unknown)}")

    topology_kwargs = dict(topology_data)
    shards = topology_kwargs.pop("shards", None)
    if shards is not None:
        topology_kwargs["shard_assignment"] = shards
    assignment = topology_kwargs.get("shard_assignment")
    if assignment is not None:
        try:
            topology_kwargs["shard_assignment"] = {
                int(shard): tuple(int(member) for member in members) for shard, members in assignment.items()
            }
        except (AttributeError, TypeError, ValueError) as e:
            raise ConfigError(f"invalid shard assignment: {assignment!r}") from e

    try:
        topology = TopologyConfig(**topology_kwargs)
        kwargs = {k: v for k, v in data.items() if k != "topology"}
        for key in ("server_command", "client_command"):
            if key in kwargs:
                value = kwargs[key]
                kwargs[key] = tuple(value.split()) if isinstance(value, str) else tuple(value)
        return RunDescription(topology=topology, **kwargs)
    except TypeError as e:
        raise ConfigError(f"invalid run description: {e}") from e


def with_commands(
    description: RunDescription,
    *,
    server_command: tuple[str, ...] | None = None,
    client_command: tuple[str, ...] | None = None,
) -> RunDescription:
    """Return a copy with the binary commands overridden."""
    changes: dict[str, Any] = {}
    if server_command:
        changes["server_command"] = server_command
    if client_command:
        changes["client_command"] = client_command
    return replace(description, **changes) if changes else description


def run_description_to_dict(description: RunDescription) -> dict[str, Any]:
    """JSON- and YAML-safe mapping of a RunDescription.

    `parse_run_description` turns it back into an equal description.
    """
    data = asdict(description)
    topology = data["topology"]
    if topology["shard_assignment"] is not None:
        topology["shard_assignment"] = {
            str(shard): list(members) for shard, members in sorted(topology["shard_assignment"].items())
        }
    data["server_command"] = list(description.server_command)
    data["client_command"] = list(description.client_command)
    return data


def save_run_description(description: RunDescription, path: str | Path) -> Path:
    """Write a RunDescription as YAML that `load_run_description` reads back."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(run_description_to_dict(description), sort_keys=False))
    return path
