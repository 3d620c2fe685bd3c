"""Canonical forms for free-text identifiers (ad ids, products, countries)."""

from __future__ import annotations

import re
import unicodedata
from typing import Iterable, Optional

_AD_PREFIX = re.compile(r"^(?:ads[\s\-_]*)+", re.IGNORECASE)

NO_COUNTRY = "N/A"


def normalize_text(value) -> str:
    """Uppercase, strip diacritics and surrounding whitespace.

    ``"  Perú "`` -> ``"PERU"``. ``None`` and empty values give ``""``.
    """
    if value is None:
        return ""
    s = str(value)
    if not s:
        return ""
    decomposed = unicodedata.normalize("NFD", s.upper())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.strip()


def normalize_ad_id(raw) -> str:
    """Strip leading ``Ads`` prefixes (plus ``-``, ``_`` or spaces) from an ad id.

    Falls back to the trimmed input when nothing is left after stripping, so
    the result is never empty for non-empty input and the function is
    idempotent.
    """
    original = str(raw if raw is not None else "").strip()
    stripped = _AD_PREFIX.sub("", original).strip()
    return stripped or original


def matches_country_filter(country_text, country_filter: Optional[str]) -> bool:
    """Order/message side: does the record's country contain the filter?"""
    wanted = normalize_text(country_filter)
    if not wanted:
        return True
    return wanted in normalize_text(country_text)


def campaign_matches_country(campaign_name, country_filter: Optional[str]) -> bool:
    """Ad side: does the campaign name contain the selected country?"""
    wanted = normalize_text(country_filter)
    if not wanted:
        return True
    return wanted in normalize_text(campaign_name)


def country_from_campaign(campaign_name, countries: Iterable[str]) -> str:
    """Return the first known country named inside a campaign name."""
    name = normalize_text(campaign_name)
    if not name:
        return NO_COUNTRY
    for country in countries:
        key = normalize_text(country)
        if key and key in name:
            return key
    return NO_COUNTRY
