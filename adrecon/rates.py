"""USD exchange rates: remote source, TTL cache and hardcoded fallback."""

from __future__ import annotations

import json
import logging
from datetime import date
from typing import Dict, Mapping, Optional

import requests

from adrecon.cache import CacheStore, rate_cache_key
from adrecon.config import ExchangeConfig
from adrecon.normalize import normalize_text
from adrecon.sources.values import parse_date

logger = logging.getLogger(__name__)

FALLBACK_RATES: Dict[str, float] = {"PEN": 3.75, "COP": 4100.0, "MXN": 17.5, "USD": 1.0}


class RateSourceError(RuntimeError):
    pass


def _parse_rates(payload) -> Dict[str, float]:
    if not isinstance(payload, dict) or not isinstance(payload.get("rates"), dict):
        raise RateSourceError("Rate payload has no 'rates' object.")
    rates: Dict[str, float] = {}
    for code, value in payload["rates"].items():
        try:
            rate = float(value)
        except (TypeError, ValueError):
            continue
        if rate > 0:
            rates[str(code).upper()] = rate
    if not rates:
        raise RateSourceError("Rate payload contained no usable rates.")
    rates["USD"] = 1.0
    return rates


class HttpRateSource:
    """Fetch rates over HTTP (exchangerate-api for latest, frankfurter for history)."""

    def __init__(self, config: Optional[ExchangeConfig] = None, session=None) -> None:
        self._config = config or ExchangeConfig()
        self._session = session or requests.Session()

    def _get_json(self, url: str, params: Optional[dict] = None):
        try:
            response = self._session.get(
                url, params=params, timeout=self._config.timeout_seconds
            )
        except requests.RequestException as exc:
            raise RateSourceError(f"Rate request failed: {exc}") from exc
        if response.status_code != 200:
            raise RateSourceError(f"Rate request returned HTTP {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise RateSourceError("Rate response is not JSON.") from exc

    def fetch_latest_rates(self) -> Dict[str, float]:
        return _parse_rates(self._get_json(self._config.latest_url))

    def fetch_historical_rate(self, day: date, currency: str) -> float:
        url = f"{self._config.historical_url.rstrip('/')}/{day.isoformat()}"
        rates = _parse_rates(
            self._get_json(url, params={"from": "USD", "to": currency.upper()})
        )
        if currency.upper() not in rates:
            raise RateSourceError(f"No {currency} rate for {day.isoformat()}")
        return rates[currency.upper()]


class ExchangeRateProvider:
    """Resolve currencies to units-per-USD. Never raises.

    On any source failure the provider degrades to the fallback table (for the
    latest table) or to the current-table value (for historical rates).
    """

    def __init__(
        self,
        source=None,
        cache: Optional[CacheStore] = None,
        config: Optional[ExchangeConfig] = None,
    ) -> None:
        self._config = config or ExchangeConfig()
        self._source = source if source is not None else HttpRateSource(self._config)
        self._cache = cache
        self._table: Optional[Dict[str, float]] = None

    def fallback_rates(self) -> Dict[str, float]:
        table = dict(self._config.fallback_rates or FALLBACK_RATES)
        table["USD"] = 1.0
        return table

    def get_exchange_rates(self) -> Dict[str, float]:
        """Return the USD-based table, pinned for the life of this provider."""
        if self._table is None:
            self._table = self._load_table()
        return dict(self._table)

    def _load_table(self) -> Dict[str, float]:
        key = rate_cache_key("latest")
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached:
                try:
                    return _parse_rates({"rates": json.loads(cached)})
                except (ValueError, RateSourceError):
                    logger.warning("Ignoring corrupt cached rate table")

        try:
            rates = _parse_rates({"rates": self._source.fetch_latest_rates()})
        except Exception as exc:
            logger.warning("Exchange rate fetch failed, using fallback table: %s", exc)
            return self.fallback_rates()

        if self._cache is not None:
            self._cache.set(key, json.dumps(rates), ttl_seconds=self._config.ttl_seconds)
        return rates

    def rate_for(self, currency: str) -> float:
        return self.get_exchange_rates().get(str(currency or "").upper(), 1.0)

    def get_historical_rate(self, day, currency: str) -> float:
        code = str(currency or "").upper()
        if code == "USD":
            return 1.0
        when = parse_date(day)
        if when is None:
            logger.warning("Unreadable rate date %r, using current %s rate", day, code)
            return self.rate_for(code)
        day = when.date()

        key = rate_cache_key("historical", code, day.isoformat())
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached:
                try:
                    return float(cached)
                except ValueError:
                    logger.warning("Ignoring corrupt cached rate %s", key)

        try:
            rate = float(self._source.fetch_historical_rate(day, code))
            if rate <= 0:
                raise RateSourceError(f"Non-positive rate {rate}")
        except Exception as exc:
            logger.warning(
                "Historical rate %s for %s unavailable, using current rate: %s",
                code,
                day.isoformat(),
                exc,
            )
            return self.rate_for(code)

        if self._cache is not None:
            self._cache.set(
                key, str(rate), ttl_seconds=self._config.historical_ttl_seconds
            )
        return rate

    def stats(self) -> dict:
        return self._cache.stats() if self._cache is not None else {}


def currency_for_country(country, country_currency: Mapping[str, str]) -> str:
    """Currency code for a free-text country; USD when unknown."""
    return country_currency.get(normalize_text(country), "USD")
