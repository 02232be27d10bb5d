"""Tolerant parsing helpers for payer payloads.

Payer responses are inconsistently typed: amounts arrive as strings,
numbers, or not at all, and dates come in several layouts.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Any

# Reasonable date bounds for coverage and service dates
MIN_VALID_YEAR = 1900
MAX_VALID_YEAR = 2100

_LEADING_NUMBER = re.compile(r"^\s*[-+]?(\d+(\.\d*)?|\.\d+)")
_TRUTHY = {"true", "yes", "1", "y"}


def parse_amount(value: Any) -> float:
    """Parse a monetary or numeric value, defaulting to 0.

    Accepts numbers, numeric strings (optionally with ``$`` and thousands
    separators or trailing text), and None.

    Examples:
        >>> parse_amount("25")
        25.0
        >>> parse_amount("$1,200.50")
        1200.5
        >>> parse_amount(None)
        0.0
        >>> parse_amount("n/a")
        0.0
    """
    if value is None or isinstance(value, bool):
        return 0.0

    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        match = _LEADING_NUMBER.match(value.replace("$", "").replace(",", ""))
        if not match:
            return 0.0
        number = float(match.group(0))
    else:
        return 0.0

    return 0.0 if math.isnan(number) else number


def parse_boolean(value: Any) -> bool:
    """Parse a loosely typed boolean ("Y", "yes", "1", "true", True)."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return False


def parse_flexible_date(date_str: str | None) -> datetime | None:
    """Parse date from multiple common formats with validation.

    Supports the following formats:
    - ISO 8601: YYYY-MM-DD (e.g., 2024-01-15)
    - US format: MM/DD/YYYY (e.g., 01/15/2024)
    - Compact: YYYYMMDD (e.g., 20240115)

    A full ISO timestamp is accepted by reading its date part.

    Args:
        date_str: Date string to parse, or None

    Returns:
        Parsed datetime object, or None if parsing fails or input is None
    """
    if not date_str:
        return None

    candidate = date_str.strip()
    if "T" in candidate:
        candidate = candidate.split("T", 1)[0]

    formats = [
        "%Y-%m-%d",  # ISO 8601
        "%m/%d/%Y",  # US format
        "%Y%m%d",  # Compact
    ]

    for fmt in formats:
        try:
            parsed = datetime.strptime(candidate, fmt)
            if parsed.year < MIN_VALID_YEAR or parsed.year > MAX_VALID_YEAR:
                continue
            return parsed
        except ValueError:
            continue

    return None


def _to_date(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    parsed = parse_flexible_date(value)
    if parsed is None:
        raise ValueError(f"Unrecognized date: {value!r}")
    return parsed.date()


def format_date_yyyymmdd(value: date | datetime | str) -> str:
    """Format a date as compact YYYYMMDD (X12 style)."""
    return _to_date(value).strftime("%Y%m%d")


def format_date_iso(value: date | datetime | str) -> str:
    """Format a date as YYYY-MM-DD."""
    return _to_date(value).isoformat()


def parse_date_field(date_str: str | None) -> str | None:
    """Normalize a payer date field to YYYY-MM-DD.

    Compact ``YYYYMMDD`` values are expanded; anything else is returned
    unchanged so no information is lost.
    """
    if not date_str:
        return None
    if len(date_str) == 8 and date_str.isdigit():
        return f"{date_str[0:4]}-{date_str[4:6]}-{date_str[6:8]}"
    return date_str
