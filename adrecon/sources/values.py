"""Lenient parsing of spreadsheet cell values."""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Optional

_DMY = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})(?:\s+(\d{1,2}):(\d{2})(?::(\d{2}))?)?$")
_CURRENCY_PREFIX = re.compile(r"^[^\d\-]+")


def parse_date(value) -> Optional[datetime]:
    """Return a datetime for *value*, or None when it cannot be read.

    Accepts date/datetime objects, ISO strings and ``dd/mm/yyyy[ hh:mm[:ss]]``.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)

    text = str(value).strip()
    if not text:
        return None
    m = _DMY.match(text)
    if m:
        day, month, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
        hh, mm, ss = (int(g) if g else 0 for g in m.group(4, 5, 6))
        try:
            return datetime(year, month, day, hh, mm, ss)
        except ValueError:
            return None
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return None


def parse_amount(value) -> float:
    """Numeric cell value; unreadable input counts as 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if value == value else 0.0

    # currency prefixes such as "S/." would otherwise leave a stray separator
    text = _CURRENCY_PREFIX.sub("", str(value).strip())
    text = re.sub(r"[^\d,.\-]", "", text)
    if not text:
        return 0.0
    if "," in text and "." in text:
        # the right-most separator is the decimal one
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        head, _, tail = text.rpartition(",")
        text = text.replace(",", "") if len(tail) == 3 else f"{head.replace(',', '')}.{tail}"
    elif text.count(".") > 1:
        text = text.replace(".", "")
    try:
        return float(text)
    except ValueError:
        return 0.0


def cell(row, position: int):
    """1-based cell lookup that tolerates short rows."""
    idx = position - 1
    if idx < 0 or idx >= len(row):
        return ""
    return row[idx]


def clean_id(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()
