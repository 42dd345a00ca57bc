r"""
Latency aggregation over client logs.

    from quorum_bench.reporting.metrics import aggregate

    result = aggregate([Path("logs/client_1.log"), Path("logs/client_2.log")])
    print(result.mean_latency, result.count)

A latency line contains `latency` and `avg=<int>`; the aggregate is the
floor of the mean of all such values across every log.
"""

import logging
import re
from collections.abc import Iterable
from pathlib import Path

from quorum_bench.errors import NoDataError, ParseError
from quorum_bench.markers import avg_field, is_latency_line
from quorum_bench.types import AggregateResult

__all__ = ["aggregate", "parse_latency"]

LOGGER = logging.getLogger("quorum_bench.reporting.metrics")

# ASCII digits only: int() would also take `1_000` and non-ASCII digits
_INTEGER = re.compile(r"-?\d+", re.ASCII)


def parse_latency(line: str) -> int | None:
    """Integer `avg=` value of a latency line.

    Returns:
        The value, or None if the line is not a latency line.

    Raises:
        ValueError: If the line is a latency line with a malformed value.
    """
    if not is_latency_line(line):
        return None
    raw = avg_field(line)
    if not raw:
        raise ValueError(f"empty avg field in {line.strip()!r}")
    if not _INTEGER.fullmatch(raw):
        raise ValueError(f"avg={raw!r} is not an integer in {line.strip()!r}")
    return int(raw)


def aggregate(log_paths: Iterable[Path | str], *, strict: bool = True) -> AggregateResult:
    """Mean latency across client logs.

    Args:
        log_paths: Client logs to scan; missing files contribute nothing.
        strict: Raise on malformed lines instead of skipping them.

    Returns:
        Floor of the mean, number of values, and number of skipped lines.

    Raises:
        ParseError: In strict mode, on the first malformed latency line.
        NoDataError: If no latency line was found in any log.
    """
    total = 0
    count = 0
    skipped = 0
    paths = [Path(p) for p in log_paths]

    for path in paths:
        if not path.is_file():
            LOGGER.warning("client log %s not found, no latency data from it", path)
            continue
        with open(path, encoding="utf-8", errors="replace") as f:
            for line_number, line in enumerate(f, start=1):
                try:
                    value = parse_latency(line)
                except ValueError:
                    if strict:
                        raise ParseError(path, line_number, line) from None
                    skipped += 1
                    LOGGER.warning("%s:%d: skipping malformed latency line: %s", path, line_number, line.strip())
                    continue
                if value is not None:
                    total += value
                    count += 1

    if count == 0:
        raise NoDataError(f"no latency lines found in {len(paths)} log(s)")

    LOGGER.debug("aggregated %d latency value(s), %d skipped", count, skipped)
    return AggregateResult(mean_latency=total // count, count=count, skipped=skipped)
