"""End-to-end pipeline tests with fake Meta accounts, lookup, sources and rates."""

from __future__ import annotations

from datetime import date, datetime

import pandas as pd
import pytest

from adrecon.cache import CacheStore
from adrecon.config import AppConfig, ConfigError
from adrecon.config_meta_ads import MetaAdsConfig
from adrecon.pipeline import (
    make_rate_provider,
    run_ads_report,
    run_campaign_diagnostic,
    run_product_report,
    run_sales_lookup,
    write_report_outputs,
)
from adrecon.products import ProductRule
from adrecon.rates import ExchangeRateProvider
from adrecon.schema import MessageRecord, OrderRecord
from adrecon.sources.base import SalesSource, SalesSourceError

TODAY = date(2026, 3, 10)


def _insight(ad_id, campaign, spend="100"):
    return {
        "campaign_name": campaign,
        "campaign_id": f"c-{campaign}",
        "adset_name": "Set",
        "adset_id": "s1",
        "ad_name": f"Ad {ad_id}",
        "ad_id": ad_id,
        "spend": spend,
        "impressions": "10000",
        "reach": "9000",
        "unique_inline_link_clicks": "100",
    }


class UpstreamError(Exception):
    def api_error_message(self):
        return "(#17) User request limit reached"


class FakeAccount:
    def __init__(self, insights=None, error=None):
        self.insights = insights or []
        self.error = error

    def get_insights(self, fields=None, params=None):
        if self.error is not None:
            raise self.error
        return list(self.insights)


class FakeLookup:
    def fetch_entity_fields(self, ids, fields):
        return {i: {"effective_status": "ACTIVE", "daily_budget": "1000"} for i in ids}


class FakeRateSource:
    def fetch_latest_rates(self):
        return {"USD": 1.0, "PEN": 3.75, "COP": 4000.0}

    def fetch_historical_rate(self, day, currency):
        raise AssertionError("not used")


class StaticSource(SalesSource):
    def __init__(self, name, orders=(), messages=(), error=None):
        self.name = name
        self._orders = list(orders)
        self._messages = list(messages)
        self._error = error

    def read_orders(self):
        if self._error:
            raise self._error
        return self._orders

    def read_messages(self):
        return self._messages


@pytest.fixture
def cfg():
    c = AppConfig()
    c.retry_api.max_api_retries = 0
    c.products = [
        ProductRule(key="KIT", keywords=["AMIGURUMI"], country="PERU"),
        ProductRule(key="BORDADO", keywords=["BORDADO"], country="COLOMBIA"),
    ]
    return c


@pytest.fixture
def meta_cfg():
    return MetaAdsConfig(access_token="tok", ad_account_ids=["act_1", "act_2"])


def _accounts():
    accounts = {
        "act_1": FakeAccount(
            [
                _insight("1", "Amigurumi PERU"),
                _insight("2", "Amigurumi PERU", spend="50"),
                _insight("3", "Bordado COLOMBIA", spend="10"),
            ]
        ),
        "act_2": FakeAccount(error=UpstreamError("boom")),
    }
    return accounts.__getitem__


def _sources():
    peru = StaticSource(
        "PERÚ",
        orders=[
            OrderRecord(datetime(2026, 3, 10, 9), "Ads-1", 375.0, "Perú", "Kit"),
            OrderRecord(datetime(2026, 3, 5, 12), "2", 75.0, "PERU", "Kit"),
        ],
        messages=[
            MessageRecord(datetime(2026, 3, 10, 8), "1", "PERÚ"),
            MessageRecord(datetime(2026, 3, 4, 8), "ads 2", "PERÚ"),
        ],
    )
    colombia = StaticSource("COLOMBIA", error=SalesSourceError("403"))
    return [peru, colombia]


def _run(cfg, meta_cfg, **kw):
    kw.setdefault("sources", _sources())
    return run_ads_report(
        cfg,
        meta_cfg,
        ad_account_factory=_accounts(),
        lookup=FakeLookup(),
        rate_provider=ExchangeRateProvider(source=FakeRateSource()),
        today=TODAY,
        **kw,
    )


class TestRunAdsReport:
    def test_ranges_and_windows(self, cfg, meta_cfg):
        summary = _run(cfg, meta_cfg, ranges=["TODAY", "LAST_7D"])
        today, week = summary["ranges"]
        assert today["name"] == "TODAY"
        by_id = {r.ad_id: r for r in today["rows"]}
        assert by_id["1"].revenue_usd == pytest.approx(100.0)
        assert by_id["1"].messages == 1
        assert by_id["2"].revenue_usd == 0

        week_ids = {r.ad_id: r for r in week["rows"]}
        assert week_ids["1"].sales == 0
        assert week_ids["2"].revenue_usd == pytest.approx(20.0)
        assert week_ids["2"].messages == 1

    def test_rows_sorted_by_spend_with_total(self, cfg, meta_cfg):
        summary = _run(cfg, meta_cfg, ranges=["TODAY"])
        section = summary["ranges"][0]
        assert [r.ad_id for r in section["rows"]] == ["1", "2", "3"]
        assert section["total"].kind == "TOTAL"
        assert section["total"].spend == pytest.approx(160.0)
        assert summary["rows"][-1] is section["total"]

    def test_errors_collected_and_report_still_built(self, cfg, meta_cfg):
        summary = _run(cfg, meta_cfg, ranges=["TODAY", "YESTERDAY"])
        assert "COLOMBIA: 403" in summary["errors"]
        account_errors = [e for e in summary["errors"] if "act_2" in e]
        assert account_errors == [
            "TODAY - account act_2: (#17) User request limit reached",
            "YESTERDAY - account act_2: (#17) User request limit reached",
        ]
        assert all(s["rows"] for s in summary["ranges"])

    def test_country_filter_applies_to_campaigns(self, cfg, meta_cfg):
        summary = _run(cfg, meta_cfg, ranges=["TODAY"], country_filter="Perú")
        assert {r.ad_id for r in summary["ranges"][0]["rows"]} == {"1", "2"}
        # the COLOMBIA source is skipped, not reported
        assert not any(e.startswith("COLOMBIA") for e in summary["errors"])

    def test_product_filter(self, cfg, meta_cfg):
        summary = _run(cfg, meta_cfg, ranges=["TODAY"], product_filter="bordado")
        assert [r.ad_id for r in summary["ranges"][0]["rows"]] == ["3"]

    def test_enrichment_flows_into_rows(self, cfg, meta_cfg):
        row = _run(cfg, meta_cfg, ranges=["TODAY"])["ranges"][0]["rows"][0]
        assert row.delivery == "ACTIVE"
        assert row.budget == 10.0
        assert row.country == "PERU"

    def test_no_sources_configured_is_config_error(self, cfg, meta_cfg):
        with pytest.raises(ConfigError):
            run_ads_report(cfg, meta_cfg, ad_account_factory=_accounts(), lookup=FakeLookup(), today=TODAY)

    def test_unknown_range_raises(self, cfg, meta_cfg):
        with pytest.raises(ValueError):
            _run(cfg, meta_cfg, ranges=["NEXT_WEEK"])


def test_product_report_grouped_by_rule(cfg, meta_cfg):
    summary = run_product_report(
        cfg,
        meta_cfg,
        ranges=["TODAY"],
        sources=_sources(),
        ad_account_factory=_accounts(),
        lookup=FakeLookup(),
        rate_provider=ExchangeRateProvider(source=FakeRateSource()),
        today=TODAY,
    )
    section = summary["ranges"][0]
    assert [r.product for r in section["rows"]] == ["KIT", "BORDADO"]
    kit = section["rows"][0]
    assert kit.spend == 150.0
    assert kit.ad_count == 2
    assert kit.revenue_usd == pytest.approx(100.0)
    assert section["total"].spend == 160.0


def test_product_report_country_filter_skips_other_rules(cfg, meta_cfg):
    summary = run_product_report(
        cfg,
        meta_cfg,
        ranges=["TODAY"],
        country_filter="COLOMBIA",
        sources=_sources(),
        ad_account_factory=_accounts(),
        lookup=FakeLookup(),
        rate_provider=ExchangeRateProvider(source=FakeRateSource()),
        today=TODAY,
    )
    assert [r.product for r in summary["ranges"][0]["rows"]] == ["BORDADO"]


def test_sales_lookup(cfg):
    result = run_sales_lookup(
        cfg,
        "kit",
        sources=_sources(),
        rate_provider=ExchangeRateProvider(source=FakeRateSource()),
    )
    assert result["sales"] == 2
    assert result["per_country"]["PERU"]["total_usd"] == pytest.approx(120.0)
    assert result["errors"] == ["COLOMBIA: 403"]


def test_sales_lookup_requires_query(cfg):
    with pytest.raises(ConfigError):
        run_sales_lookup(cfg, "  ", sources=[])


def test_write_report_outputs(tmp_path, cfg, meta_cfg):
    summary = _run(cfg, meta_cfg, ranges=["TODAY"])
    paths = write_report_outputs(summary, tmp_path / "out")

    df = pd.read_csv(paths["csv"])
    assert len(df) == 4
    assert list(df["kind"]) == ["DATA", "DATA", "DATA", "TOTAL"]
    assert "spend_with_tax" in df.columns

    md = paths["markdown"].read_text(encoding="utf-8")
    assert "## TODAY" in md
    assert "## Errors" in md
    assert "act_2" in md


def test_make_rate_provider_purges_expired_cache(tmp_path):
    path = tmp_path / "rates.db"
    stale = CacheStore(path, clock=lambda: 0.0)
    stale.set("stale", "1", ttl_seconds=10)
    stale.set("kept", "2")

    cfg = AppConfig()
    cfg.exchange.cache_path = str(path)
    make_rate_provider(cfg)

    assert CacheStore(path).clear() == 1


class CampaignAccount:
    def __init__(self, names=(), error=None):
        self.names = list(names)
        self.error = error

    def get_campaigns(self, fields=None, params=None):
        if self.error is not None:
            raise self.error
        return [{"id": n, "name": n, "effective_status": "PAUSED"} for n in self.names]


def test_campaign_diagnostic(cfg, meta_cfg):
    accounts = {
        "act_1": CampaignAccount(["Amigurumi PERU Enero", "Zapatos"]),
        "act_2": CampaignAccount(error=UpstreamError("boom")),
    }
    rows, errors = run_campaign_diagnostic(
        cfg, meta_cfg, limit=5, ad_account_factory=accounts.__getitem__
    )
    assert [(r["account"], r["product"], r["status"]) for r in rows] == [
        ("act_1", "KIT", "PAUSED"),
        ("act_1", "", "PAUSED"),
    ]
    assert errors == ["account act_2: (#17) User request limit reached"]
