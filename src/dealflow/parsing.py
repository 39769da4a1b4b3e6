"""Parsing helpers for exchange payloads."""
from __future__ import annotations

import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from dateutil import parser


NON_NUMERIC = re.compile(r"[^0-9.\-]")
NSE_DATE = re.compile(r"^(?P<day>\d{1,2})-[A-Za-z]{3}-\d{4}$")
BSE_DATE = re.compile(r"^(?P<day>\d{1,2})/(?P<month>\d{1,2})/\d{4}$")


def _clean(value: Any) -> str:
    return NON_NUMERIC.sub("", str(value).strip())


def parse_int(value: Any) -> Optional[int]:
    """Parse a human readable integer such as ``"1,25,000"``."""

    if value is None or value == "":
        return None
    if isinstance(value, int):
        return value
    cleaned = _clean(value)
    if not cleaned or cleaned in {"-", "."}:
        return None
    try:
        return int(Decimal(cleaned))
    except InvalidOperation:
        return None


def parse_decimal(value: Any) -> Optional[Decimal]:
    """Parse a human readable decimal such as ``"2,845.50"``."""

    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    cleaned = _clean(value)
    if not cleaned:
        return None
    try:
        return Decimal(cleaned)
    except InvalidOperation:
        return None


def parse_float(value: Any) -> Optional[float]:
    """Parse a human readable percentage/float value."""

    parsed = parse_decimal(str(value).replace("%", "") if value is not None else None)
    return float(parsed) if parsed is not None else None


def _parse_with_grammar(value: Any, grammar: re.Pattern[str]) -> Optional[date]:
    if not value:
        return None
    if isinstance(value, date):
        return value
    text = str(value).strip()
    match = grammar.match(text)
    if not match:
        return None
    try:
        parsed = parser.parse(text, dayfirst=True).date()
    except (ValueError, OverflowError):
        return None
    # dateutil swaps day and month when the month field is above 12.
    fields = {name: int(raw) for name, raw in match.groupdict().items()}
    if parsed.day != fields["day"] or parsed.month != fields.get("month", parsed.month):
        return None
    return parsed


def parse_nse_date(value: Any) -> Optional[date]:
    """Parse NSE's ``DD-MON-YYYY`` dates, e.g. ``03-JAN-2026``."""

    return _parse_with_grammar(value, NSE_DATE)


def parse_bse_date(value: Any) -> Optional[date]:
    """Parse BSE's ``DD/MM/YYYY`` dates."""

    return _parse_with_grammar(value, BSE_DATE)


__all__ = ["parse_bse_date", "parse_decimal", "parse_float", "parse_int", "parse_nse_date"]
