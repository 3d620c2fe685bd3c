"""Tests for order/message aggregation per normalized ad id."""

from __future__ import annotations

from datetime import date, datetime

import pytest

from adrecon.aggregator import aggregate_messages, aggregate_orders, summarize_product_sales
from adrecon.config import DEFAULT_COUNTRY_CURRENCY
from adrecon.normalize import normalize_text
from adrecon.schema import MessageRecord, OrderRecord

RATES = {"USD": 1.0, "PEN": 3.75, "COP": 4000.0}


def _order(ad_id, amount, country="PERU", when=None, product=""):
    return OrderRecord(order_date=when, raw_ad_id=ad_id, amount=amount, country=country, product=product)


class TestAggregateOrders:
    def test_prefixed_and_bare_ids_merge(self):
        out = aggregate_orders(
            [_order("Ads-555", 10), _order("555", 20)],
            rates=RATES,
            country_currency=DEFAULT_COUNTRY_CURRENCY,
        )
        assert list(out) == ["555"]
        assert out["555"].sale_count == 2
        assert out["555"].total_local == 30

    def test_pen_converted_to_usd(self):
        out = aggregate_orders(
            [_order("1", 100, country="Perú")],
            rates=RATES,
            country_currency=DEFAULT_COUNTRY_CURRENCY,
        )
        agg = out["1"]
        assert agg.total_usd == pytest.approx(26.67, abs=0.01)
        assert agg.currency == "PEN"
        assert agg.rate == 3.75
        assert agg.country == "PERU"

    def test_unknown_country_is_usd(self):
        out = aggregate_orders([_order("1", 50, country="Narnia")], rates=RATES)
        assert out["1"].currency == "USD"
        assert out["1"].total_usd == 50

    def test_empty_ids_skipped(self):
        out = aggregate_orders([_order("", 10), _order("   ", 10), _order(None, 10)], rates=RATES)
        assert out == {}

    def test_empty_filter_includes_everything(self):
        orders = [_order("1", 10, "PERU"), _order("2", 10, "COLOMBIA"), _order("3", 10, "")]
        assert set(aggregate_orders(orders, country_filter="", rates=RATES)) == {"1", "2", "3"}

    def test_country_filter_is_substring_of_normalized_country(self):
        orders = [
            _order("1", 10, "Perú"),
            _order("2", 10, "COLOMBIA"),
            _order("3", 10, "PERU - LIMA"),
            _order("4", 10, ""),
        ]
        out = aggregate_orders(orders, country_filter="peru", rates=RATES)
        assert set(out) == {"1", "3"}
        assert all("PERU" in normalize_text(a.country) for a in out.values())

    def test_date_window_inclusive_whole_days(self):
        orders = [
            _order("1", 10, when=datetime(2026, 1, 1, 0, 0)),
            _order("2", 10, when=datetime(2026, 1, 31, 23, 59, 59)),
            _order("3", 10, when=datetime(2026, 2, 1, 0, 0)),
            _order("4", 10, when=datetime(2025, 12, 31, 23, 59)),
            _order("5", 10, when=date(2026, 1, 15)),
        ]
        out = aggregate_orders(orders, date_start=date(2026, 1, 1), date_end=date(2026, 1, 31), rates=RATES)
        assert set(out) == {"1", "2", "5"}

    def test_undated_orders_kept_inside_window(self):
        out = aggregate_orders(
            [_order("1", 10, when=None)],
            date_start=date(2026, 1, 1),
            date_end=date(2026, 1, 2),
            rates=RATES,
        )
        assert "1" in out

    def test_one_bound_means_no_window(self):
        out = aggregate_orders([_order("1", 10, when=date(2020, 1, 1))], date_start=date(2026, 1, 1), rates=RATES)
        assert "1" in out


class TestAggregateMessages:
    def test_counts_per_normalized_id(self):
        msgs = [MessageRecord(None, "Ads-7"), MessageRecord(None, "7"), MessageRecord(None, "8")]
        assert aggregate_messages(msgs) == {"7": 2, "8": 1}

    def test_day_bounds_inclusive(self):
        msgs = [
            MessageRecord(datetime(2026, 1, 1, 0, 1), "1"),
            MessageRecord(datetime(2026, 1, 2, 23, 59), "1"),
            MessageRecord(datetime(2026, 1, 3, 0, 0), "1"),
            MessageRecord(None, "1"),
        ]
        counts = aggregate_messages(msgs, date_start=date(2026, 1, 1), date_end=date(2026, 1, 2))
        assert counts == {"1": 2}

    def test_country_filter(self):
        msgs = [MessageRecord(None, "1", "PERÚ"), MessageRecord(None, "1", "COLOMBIA")]
        assert aggregate_messages(msgs, country_filter="PERU") == {"1": 1}


class TestSummarizeProductSales:
    def _orders(self):
        return [
            _order("1", 100, "PERU", product="Kit Amigurumis Chespirito"),
            _order("2", 8000, "COLOMBIA", product="Kit Amigurumis Chespirito"),
            _order("3", 50, "PERU", product="Otro producto"),
            _order("4", 0, "PERU", product="Kit Amigurumis Chespirito"),
        ]

    def test_groups_by_country(self):
        per_country, matched = summarize_product_sales(
            self._orders(), "kit amigurumis", RATES, DEFAULT_COUNTRY_CURRENCY, DEFAULT_COUNTRY_CURRENCY.keys()
        )
        assert len(matched) == 2
        assert per_country["PERU"]["sales"] == 1
        assert per_country["COLOMBIA"]["total_usd"] == pytest.approx(2.0)

    def test_query_with_country_narrows(self):
        per_country, matched = summarize_product_sales(
            self._orders(),
            "KIT AMIGURUMIS CHESPIRITO - PERU",
            RATES,
            DEFAULT_COUNTRY_CURRENCY,
            DEFAULT_COUNTRY_CURRENCY.keys(),
        )
        # product is contained in the query; only PERU counts
        assert list(per_country) == ["PERU"]
        assert len(matched) == 1

    def test_empty_query(self):
        assert summarize_product_sales(self._orders(), "  ", RATES, {}) == ({}, [])
