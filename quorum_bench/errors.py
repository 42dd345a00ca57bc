r"""
Error taxonomy for benchmark runs.

    from quorum_bench.errors import HarnessError, ReadinessTimeoutError

    try:
        await_all(handles, marker_for, poll_interval=0.5, timeout=30)
    except ReadinessTimeoutError as e:
        print(f"not ready: {e.unready}")
"""

from collections.abc import Iterable
from pathlib import Path

__all__ = [
    "ConfigError",
    "HarnessError",
    "LaunchError",
    "NoDataError",
    "ParseError",
    "ProvisionError",
    "ReadinessTimeoutError",
    "RunCancelledError",
    "TeardownError",
    "TransientProvisionError",
]


class HarnessError(Exception):
    """Base class for all harness errors."""


class ConfigError(HarnessError):
    """Invalid topology or run description."""


class LaunchError(HarnessError):
    """A participant could not be spawned or died before becoming ready."""


class ReadinessTimeoutError(HarnessError, TimeoutError):
    """Expected log markers were not observed in time."""

    def __init__(self, unready: Iterable[str], timeout: float) -> None:
        self.unready = list(unready)
        self.timeout = timeout
        super().__init__(f"not ready after {timeout:g}s: {', '.join(self.unready)}")


class ParseError(HarnessError):
    """A latency line carries a malformed numeric field."""

    def __init__(self, path: Path | str, line_number: int, line: str) -> None:
        self.path = Path(path)
        self.line_number = line_number
        self.line = line
        super().__init__(f"{self.path}:{line_number}: malformed latency line: {line.strip()!r}")


class NoDataError(HarnessError):
    """No latency line matched across all client logs."""


class ProvisionError(HarnessError):
    """Cloud machines could not be provisioned."""


class TransientProvisionError(ProvisionError):
    """Provisioning failure worth retrying (capacity, rate limit, slow boot)."""


class TeardownError(HarnessError):
    """A provisioned resource could not be released; possible leak."""

    def __init__(self, resource: str, cause: BaseException | str) -> None:
        self.resource = resource
        self.cause = cause
        super().__init__(f"failed to release {resource}: {cause}")


class RunCancelledError(HarnessError):
    """The run was stopped by an external signal."""
