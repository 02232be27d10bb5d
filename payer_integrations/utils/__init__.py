"""Shared utility functions for payer integrations."""

from .parsing import (
    format_date_iso,
    format_date_yyyymmdd,
    parse_amount,
    parse_boolean,
    parse_date_field,
    parse_flexible_date,
)

__all__ = [
    "format_date_iso",
    "format_date_yyyymmdd",
    "parse_amount",
    "parse_boolean",
    "parse_date_field",
    "parse_flexible_date",
]
