"""Parsing of short duration strings such as '500ms', '30s', '5m' or '1h'."""

from __future__ import annotations

import re
from datetime import timedelta

_NUMBER = re.compile(r"\+?[0-9]+")
_MAX_NUMBER = 2**64 - 1


def parse_duration(text: str, allow_hours: bool = True) -> timedelta:
    """Parse a whole number followed by ms, s, m or (if allowed) h.

    Raises ValueError when the text is not such a duration.
    """
    value = text.strip()
    units = [("ms", "milliseconds"), ("s", "seconds"), ("m", "minutes")]
    if allow_hours:
        units.append(("h", "hours"))
    for suffix, unit in units:
        if value.endswith(suffix):
            number = value[: -len(suffix)]
            if not _NUMBER.fullmatch(number) or int(number) > _MAX_NUMBER:
                raise ValueError(f"invalid duration: {text!r}")
            try:
                return timedelta(**{unit: int(number)})
            except OverflowError as exc:
                raise ValueError(f"duration out of range: {text!r}") from exc
    raise ValueError(f"invalid duration: {text!r}")