from __future__ import annotations

import re


SIZE_PATTERN = re.compile(r"^(?P<value>\d+(?:\.\d+)?)\s*(?P<unit>[KMG]?B)?$", re.IGNORECASE)

MULTIPLIERS = {
    "B": 1,
    "KB": 1024,
    "MB": 1024 ** 2,
    "GB": 1024 ** 3,
}


class SizeParseError(ValueError):
    """Raised when the provided size string cannot be parsed."""


def parse_size(size_str: str) -> int:
    """Convert a human readable size string to bytes.

    Examples
    --------
    "500KB" -> 512000
    "0.5MB" -> 524288
    "100" -> 100 (bytes)
    "0" -> 0 (no size constraint)
    """
    match = SIZE_PATTERN.match(size_str.strip())
    if not match:
        raise SizeParseError(f"Unable to parse size value: {size_str!r}")

    value = float(match.group("value"))
    unit = (match.group("unit") or "B").upper()
    return int(value * MULTIPLIERS[unit])


def format_size(num_bytes: int) -> str:
    """KB with two decimals, MB appended once past 1024 KB."""
    if num_bytes <= 0:
        return "0 KB"
    kb = num_bytes / 1024.0
    if kb >= 1024.0:
        return f"{kb:.2f} KB ({kb / 1024.0:.2f} MB)"
    return f"{kb:.2f} KB"
