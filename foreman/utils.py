"""Shared helpers for ordering text, parsing instants and rounding."""
from __future__ import annotations

import math
import unicodedata
from datetime import UTC, date, datetime, time


def compare(a, b) -> int:
    """Three-way comparison returning -1, 0 or 1."""
    return (a > b) - (a < b)


def collation_key(text: str) -> tuple[str, str, str]:
    """Sort key approximating a locale-aware string comparison.

    Accents and case are ignored first; on otherwise equal strings lower case
    sorts before upper case.
    """
    decomposed = unicodedata.normalize("NFKD", text)
    base = "".join(ch for ch in decomposed if not unicodedata.combining(ch)).casefold()
    return base, text.casefold(), text.swapcase()


def to_instant(value: str | date | datetime) -> datetime:
    """Coerce an ISO string, date or datetime to an aware UTC-based datetime.

    Dates map to midnight UTC; naive datetimes are taken as UTC.
    Raises ``ValueError`` for anything else.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip())
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=UTC)
    raise ValueError(f"not a date or timestamp: {value!r}")


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def amount(value: float | None) -> float:
    """Monetary amount with a missing value counted as zero."""
    return float(value) if value else 0.0
