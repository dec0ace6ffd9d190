"""Locale-aware number formatting for dashboard figures.

Pure functions: they never touch the cache and only depend on their
arguments. Grouping and decimal separators follow the conventions of
the supported display locales (Turkish by default).
"""

from __future__ import annotations

from typing import NamedTuple

from fisboard.core.config import settings


class _LocaleFormat(NamedTuple):
    group: str
    decimal: str
    currency_suffix: bool


_LOCALES = {
    "tr_TR": _LocaleFormat(group=".", decimal=",", currency_suffix=False),
    "en_US": _LocaleFormat(group=",", decimal=".", currency_suffix=False),
    "en_GB": _LocaleFormat(group=",", decimal=".", currency_suffix=False),
    "de_DE": _LocaleFormat(group=".", decimal=",", currency_suffix=True),
}

_CURRENCY_SYMBOLS = {"TRY": "₺", "USD": "$", "EUR": "€", "GBP": "£"}


def _locale(name: str | None) -> _LocaleFormat:
    key = (name or settings.DISPLAY_LOCALE).replace("-", "_")
    try:
        return _LOCALES[key]
    except KeyError:
        raise ValueError(f"unsupported display locale: {name}") from None


def _group_digits(value: float, decimals: int, fmt: _LocaleFormat, trim_zeros: bool = False) -> str:
    text = f"{abs(value):,.{decimals}f}"
    whole, _, fraction = text.partition(".")
    if trim_zeros:
        fraction = fraction.rstrip("0")
    whole = whole.replace(",", fmt.group)
    return f"{whole}{fmt.decimal}{fraction}" if fraction else whole


def format_number(value: float, locale: str | None = None, max_decimals: int = 3) -> str:
    """``1234.5`` -> ``"1.234,5"`` in tr_TR."""
    fmt = _locale(locale)
    body = _group_digits(value, max_decimals, fmt, trim_zeros=True)
    return f"-{body}" if value < 0 and body.strip("0.,") else body


def format_currency(value: float, currency: str | None = None, locale: str | None = None) -> str:
    """``0`` -> ``"₺0,00"``; always two fraction digits."""
    fmt = _locale(locale)
    code = currency or settings.DISPLAY_CURRENCY
    symbol = _CURRENCY_SYMBOLS.get(code, code)
    amount = _group_digits(round(value, 2), 2, fmt)
    sign = "-" if round(value, 2) < 0 else ""
    if fmt.currency_suffix:
        return f"{sign}{amount}\u00a0{symbol}"
    return f"{sign}{symbol}{amount}"


def format_percentage(value: float, locale: str | None = None) -> str:
    """``12.5`` -> ``"%12,5"`` in tr_TR (sign before the number)."""
    fmt = _locale(locale)
    body = _group_digits(value, 1, fmt)
    sign = "-" if round(value, 1) < 0 else ""
    if (locale or settings.DISPLAY_LOCALE).startswith("tr"):
        return f"%{sign}{body}"
    return f"{sign}{body}%"


def format_file_size(size: int) -> str:
    units = ["B", "KB", "MB", "GB"]
    index = 0
    value = float(size)
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{value:.{2 if index > 0 else 0}f} {units[index]}"
