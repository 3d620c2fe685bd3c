"""Aggregate raw order and message records per normalized ad id."""

from __future__ import annotations

import logging
from datetime import date, datetime, time
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from adrecon.normalize import matches_country_filter, normalize_ad_id, normalize_text
from adrecon.rates import currency_for_country
from adrecon.schema import AggregatedFinancials, MessageRecord, OrderRecord

logger = logging.getLogger(__name__)

NO_COUNTRY_LABEL = "SIN PAIS"


def _start_of(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def _end_of(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time(23, 59, 59))


def _as_day(value) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    return value


def aggregate_orders(
    orders: Iterable[OrderRecord],
    country_filter: str = "",
    date_start=None,
    date_end=None,
    rates: Optional[Mapping[str, float]] = None,
    country_currency: Optional[Mapping[str, str]] = None,
) -> Dict[str, AggregatedFinancials]:
    """Sum order amounts (local and USD) per normalized ad id.

    Records without an id are dropped. When both window bounds are given,
    dated orders outside ``[date_start, date_end]`` are dropped; undated
    orders are kept. A non-empty *country_filter* keeps only orders whose
    normalized country contains it.
    """
    rates = rates or {"USD": 1.0}
    country_currency = country_currency or {}
    start, end = _start_of(date_start), _end_of(date_end)
    window = start is not None and end is not None

    out: Dict[str, AggregatedFinancials] = {}
    skipped_no_id = 0
    skipped_country = 0

    for rec in orders:
        raw = str(rec.raw_ad_id if rec.raw_ad_id is not None else "").strip()
        if not raw:
            skipped_no_id += 1
            continue

        if window and rec.order_date is not None:
            when = _start_of(rec.order_date)
            if when < start or when > end:
                continue

        if not matches_country_filter(rec.country, country_filter):
            skipped_country += 1
            continue

        ad_id = normalize_ad_id(raw)
        country = normalize_text(rec.country)
        currency = currency_for_country(country, country_currency)
        rate = rates.get(currency) or 1.0

        agg = out.get(ad_id)
        if agg is None:
            agg = AggregatedFinancials(currency=currency, rate=rate, country=country)
            out[ad_id] = agg
        agg.total_usd += rec.amount / rate
        agg.total_local += rec.amount
        agg.sale_count += 1

    logger.debug(
        "Orders aggregated: %d ad ids, %d without id, %d filtered by country",
        len(out),
        skipped_no_id,
        skipped_country,
    )
    return out


def aggregate_messages(
    messages: Iterable[MessageRecord],
    country_filter: str = "",
    date_start=None,
    date_end=None,
) -> Dict[str, int]:
    """Count messages per normalized ad id.

    Dates are compared by calendar day; the end day is included in full.
    With a window, undated messages are skipped. Country filtering follows
    :func:`aggregate_orders`.
    """
    first_day, last_day = _as_day(date_start), _as_day(date_end)
    window = first_day is not None and last_day is not None

    counts: Dict[str, int] = {}
    for rec in messages:
        raw = str(rec.raw_ad_id if rec.raw_ad_id is not None else "").strip()
        if not raw:
            continue
        if window:
            day = _as_day(rec.event_date)
            if day is None or day < first_day or day > last_day:
                continue
        if not matches_country_filter(rec.country, country_filter):
            continue
        ad_id = normalize_ad_id(raw)
        counts[ad_id] = counts.get(ad_id, 0) + 1
    return counts


def summarize_product_sales(
    orders: Iterable[OrderRecord],
    query: str,
    rates: Mapping[str, float],
    country_currency: Mapping[str, str],
    known_countries: Iterable[str] = (),
) -> Tuple[Dict[str, Dict], List[OrderRecord]]:
    """Total sales matching a free-text product query, split by country.

    The product matches when either text contains the other. When the query
    names a known country, only orders from exactly that country count.
    Returns ``(per_country, matched_orders)``.
    """
    wanted = normalize_text(query)
    if not wanted:
        return {}, []

    wanted_country = ""
    for c in known_countries:
        key = normalize_text(c)
        if key and key in wanted:
            wanted_country = key
            break

    per_country: Dict[str, Dict] = {}
    matched: List[OrderRecord] = []
    for rec in orders:
        product = normalize_text(rec.product)
        if not product or rec.amount <= 0:
            continue
        if not (product in wanted or wanted in product):
            continue
        country = normalize_text(rec.country)
        if wanted_country and country != wanted_country:
            continue

        currency = currency_for_country(country, country_currency)
        rate = rates.get(currency) or 1.0
        bucket = per_country.setdefault(
            country or NO_COUNTRY_LABEL,
            {"sales": 0, "total_local": 0.0, "total_usd": 0.0, "currency": currency, "rate": rate},
        )
        bucket["sales"] += 1
        bucket["total_local"] += rec.amount
        bucket["total_usd"] += rec.amount / rate
        matched.append(rec)
    return per_country, matched
