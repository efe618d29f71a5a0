from __future__ import annotations

import re

from loadsim.exceptions import ValidationError

_DURATION_RE = re.compile(r"^(?P<value>\d+(?:\.\d+)?)(?P<unit>ms|s|m|h)$")

_UNIT_SECONDS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration_to_seconds(raw: str | int | float) -> float:
    """Parse duration strings like '500ms', '10s', '5m', '1h' into seconds.

    Bare numbers are taken as seconds.
    """
    if isinstance(raw, bool):
        raise ValidationError("INVALID_DURATION", "duration must be a string or number", {"value": raw})

    if isinstance(raw, (int, float)):
        if raw < 0:
            raise ValidationError("INVALID_DURATION", "duration must be non-negative", {"value": raw})
        return float(raw)

    match = _DURATION_RE.match(raw.strip())
    if not match:
        raise ValidationError(
            "INVALID_DURATION",
            "duration must match <number><unit> where unit is ms|s|m|h",
            {"value": raw},
        )

    return float(match.group("value")) * _UNIT_SECONDS[match.group("unit")]
