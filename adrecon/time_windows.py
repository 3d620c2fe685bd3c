"""Report ranges: Meta API time parameters and matching calendar bounds."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Optional, Tuple

META_PRESETS = {
    "today",
    "yesterday",
    "last_3d",
    "last_7d",
    "last_14d",
    "last_28d",
    "last_30d",
    "last_90d",
    "maximum",
}

ALIASES = {
    "lifetime": "maximum",
    "historico": "maximum",
    "all": "maximum",
    "hoy": "today",
    "ayer": "yesterday",
}

MAXIMUM_START = date(2020, 1, 1)

_LAST_N_DAYS = re.compile(r"^last_(\d+)d$")


@dataclass(frozen=True)
class TimeWindow:
    """Either a named Meta preset or an explicit inclusive ``since``/``until`` pair."""

    preset: Optional[str] = None
    since: Optional[date] = None
    until: Optional[date] = None

    def __post_init__(self) -> None:
        if self.preset is None and (self.since is None or self.until is None):
            raise ValueError("TimeWindow needs a preset or both since and until.")
        if self.since and self.until and self.since > self.until:
            raise ValueError("TimeWindow since must be <= until.")

    def to_params(self) -> Dict[str, object]:
        if self.preset:
            return {"date_preset": self.preset}
        return {
            "time_range": {
                "since": self.since.isoformat(),
                "until": self.until.isoformat(),
            }
        }

    def describe(self) -> str:
        if self.preset:
            return self.preset
        return f"{self.since.isoformat()}..{self.until.isoformat()}"


def _canonical(name: str) -> str:
    key = str(name or "").strip().lower()
    return ALIASES.get(key, key)


def _last_days(days: int, today: date) -> Tuple[date, date]:
    yesterday = today - timedelta(days=1)
    return yesterday - timedelta(days=days - 1), yesterday


def window_from_range_name(name: str, today: Optional[date] = None) -> TimeWindow:
    """Translate a range name into an API window.

    Meta presets are passed through; ``last_<N>d`` values without a preset
    become an explicit range of N days ending yesterday.
    """
    key = _canonical(name)
    if key in META_PRESETS:
        return TimeWindow(preset=key)
    m = _LAST_N_DAYS.match(key)
    if m and int(m.group(1)) > 0:
        since, until = _last_days(int(m.group(1)), today or date.today())
        return TimeWindow(since=since, until=until)
    raise ValueError(f"Unknown time range: {name!r}")


def calendar_bounds(name: str, today: Optional[date] = None) -> Tuple[date, date]:
    """Inclusive calendar days used to filter orders/messages for a range."""
    today = today or date.today()
    key = _canonical(name)
    if key == "today":
        return today, today
    if key == "yesterday":
        y = today - timedelta(days=1)
        return y, y
    if key == "maximum":
        return MAXIMUM_START, today
    m = _LAST_N_DAYS.match(key)
    if m and int(m.group(1)) > 0:
        return _last_days(int(m.group(1)), today)
    raise ValueError(f"Unknown time range: {name!r}")


@dataclass(frozen=True)
class ReportRange:
    name: str
    window: TimeWindow
    start: date
    end: date


def resolve_range(name: str, today: Optional[date] = None) -> ReportRange:
    today = today or date.today()
    start, end = calendar_bounds(name, today)
    return ReportRange(
        name=str(name).strip().upper(),
        window=window_from_range_name(name, today),
        start=start,
        end=end,
    )
