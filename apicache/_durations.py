from __future__ import annotations

import logging
import re
import typing as tp

from apicache._exceptions import MalformedDuration

logger = logging.getLogger("apicache.durations")

__all__ = ("parse_duration", "UNITS")

DURATION_PATTERN = re.compile(r"^(\d+)\s+(\w+)$")

UNITS: tp.Dict[str, int] = {
    "seconds": 1000,
    "minutes": 60000,
    "hours": 3600000,
    "days": 3600000 * 24,
    "weeks": 3600000 * 24 * 7,
    # 30 and 365 day approximations, not calendar accurate
    "months": 3600000 * 24 * 30,
    "years": 3600000 * 24 * 365,
}


def _pluralize(unit: str) -> str:
    unit = unit.lower()
    return unit if unit.endswith("s") else unit + "s"


def _to_milliseconds(value: tp.Any) -> int:
    if isinstance(value, bool):
        raise MalformedDuration(f"Unsupported duration: {value!r}")

    if isinstance(value, (int, float)):
        milliseconds = int(value)
    elif isinstance(value, str):
        match = DURATION_PATTERN.match(value.strip())
        if match is None:
            raise MalformedDuration(f"Duration {value!r} does not look like '<count> <unit>'")
        count, unit = match.groups()
        try:
            unit_ms = UNITS[_pluralize(unit)]
        except KeyError:
            raise MalformedDuration(f"Unknown duration unit {unit!r}") from None
        milliseconds = int(count) * unit_ms
    else:
        raise MalformedDuration(f"Unsupported duration: {value!r}")

    if milliseconds <= 0:
        raise MalformedDuration(f"Duration must be positive, got {value!r}")
    return milliseconds


def parse_duration(
    value: tp.Union[int, float, str, None],
    default: int,
    log: tp.Optional[logging.Logger] = None,
) -> int:
    """
    Convert a human readable duration into milliseconds.

    Numbers are taken as milliseconds already. Strings must read like
    ``"10 minutes"`` or ``"1 day"``; both singular and plural units are accepted.
    Anything that cannot be parsed, and any non-positive result, falls back to
    ``default``.

    Example:
        ```python
        parse_duration("2 hours", default=1000)  # 7200000
        parse_duration("soon", default=1000)  # 1000
        ```
    """
    log = log or logger
    if value is None:
        return default
    try:
        return _to_milliseconds(value)
    except MalformedDuration as exc:
        log.debug("%s, using the default of %d milliseconds", exc, default)
        return default
