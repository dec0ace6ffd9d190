"""Miscellaneous helper functions."""

from __future__ import annotations

import datetime as dt
import math
from typing import Optional


def parse_iso_datetime(value: str | None) -> Optional[dt.datetime]:
    """Parse an ISO8601 datetime string into a :class:`datetime` object.

    The standard ``datetime.fromisoformat`` helper does not accept a lowercase
    ``z`` as the UTC designator on older interpreters. Some data sources
    provide timestamps that end with ``z`` instead of the canonical ``Z``.
    This function normalises that case and returns ``None`` if the value
    cannot be parsed.
    """
    if not value:
        return None
    try:
        if value.endswith(("z", "Z")):
            value = value[:-1] + "+00:00"
        return dt.datetime.fromisoformat(value)
    except ValueError:
        return None


def parse_date_input(value: str | None) -> Optional[dt.date]:
    """Parse a date filter typed into a form.

    Accepts ``YYYY-MM-DD`` or a full ISO timestamp. Empty input gives
    ``None``; anything else unparseable raises ``ValueError``.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    try:
        return dt.date.fromisoformat(text)
    except ValueError:
        pass
    parsed = parse_iso_datetime(text)
    if parsed is None:
        raise ValueError(f"invalid date: {value!r}")
    return parsed.date()


def parse_amount_input(value: str | float | int | None) -> Optional[float]:
    """Parse an amount typed into a form (``"12.5"`` or ``"12,5"``).

    Empty input gives ``None``; non-numeric, NaN or infinite input raises
    ``ValueError``.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = value.strip().replace(" ", "")
        if not text:
            return None
        if "," in text and "." not in text:
            text = text.replace(",", ".")
        number = float(text)
    if math.isnan(number) or math.isinf(number):
        raise ValueError(f"invalid amount: {value!r}")
    return number
