"""Report pipeline: sales sources + Meta Ads insights -> reconciled report rows."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from functools import partial
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from adrecon.aggregator import aggregate_messages, aggregate_orders, summarize_product_sales
from adrecon.config import AppConfig, ConfigError
from adrecon.config_meta_ads import MetaAdsConfig
from adrecon.connectors.meta_ads import (
    GraphEntityLookup,
    MetaAdsConnectorError,
    RetryPolicy,
    enrich_rows,
    fetch_ad_rows,
    fetch_campaigns,
    init_api,
    open_ad_account,
)
from adrecon.normalize import campaign_matches_country, normalize_text
from adrecon.products import ProductRule, diagnose_campaigns
from adrecon.rates import ExchangeRateProvider
from adrecon.reconcile import build_product_report, build_report, totals_row
from adrecon.schema import AdPerformanceRow, MessageRecord, OrderRecord, ReportRow
from adrecon.sources.base import SalesSource, collect_records
from adrecon.sources.csv_source import CsvSalesSource
from adrecon.time_windows import ReportRange, resolve_range

logger = logging.getLogger(__name__)

AdAccountFactory = Callable[[str], object]


def make_rate_provider(cfg: AppConfig) -> ExchangeRateProvider:
    """Rate provider backed by the on-disk cache when it can be opened."""
    cache = None
    try:
        from adrecon.cache import CacheStore

        cache = CacheStore(cfg.exchange.cache_path)
        purged = cache.purge_expired()
        if purged:
            logger.debug("Purged %d expired rate cache entries", purged)
    except Exception as exc:
        logger.warning("Rate cache unavailable (%s); continuing without it", exc)
    return ExchangeRateProvider(cache=cache, config=cfg.exchange)


def build_sales_sources(cfg: AppConfig) -> List[SalesSource]:
    """Instantiate the configured sales sources. Raises ConfigError when none."""
    out: List[SalesSource] = []
    client = None
    for src in cfg.require_sales_sources():
        if src.kind == "csv":
            out.append(CsvSalesSource(src.id, name=src.name))
        elif src.kind == "sheets":
            from adrecon.connectors.google_sheets import SheetsSalesSource, get_client

            # missing credentials are a configuration error, not a per-source one
            client = client or get_client()
            out.append(SheetsSalesSource(src, cfg.sales, client=client))
        else:
            raise ConfigError(f"Unknown sales source kind {src.kind!r} for {src.id}")
    return out


def _meta_clients(
    meta_cfg: MetaAdsConfig,
    ad_account_factory: Optional[AdAccountFactory],
    lookup,
) -> Tuple[AdAccountFactory, object]:
    if ad_account_factory is not None and lookup is not None:
        return ad_account_factory, lookup
    api = init_api(meta_cfg)
    factory = ad_account_factory or (lambda account_id: open_ad_account(account_id, api))
    return factory, lookup or GraphEntityLookup(api)


def fetch_range_ads(
    cfg: AppConfig,
    meta_cfg: MetaAdsConfig,
    report_range: ReportRange,
    ad_account_factory: AdAccountFactory,
    lookup,
    errors: List[str],
) -> List[AdPerformanceRow]:
    """Fetch and enrich ad rows for every account; failures land in *errors*."""
    retry = RetryPolicy.from_config(cfg.retry_api)
    rows: List[AdPerformanceRow] = []

    for account_id in meta_cfg.ad_account_ids:
        try:
            account = ad_account_factory(account_id)
            account_rows, shape_errors = fetch_ad_rows(
                account,
                report_range.window,
                retry_policy=retry,
                page_limit=cfg.meta.page_limit,
            )
        except MetaAdsConnectorError as exc:
            logger.warning("%s - account %s failed: %s", report_range.name, account_id, exc)
            errors.append(f"{report_range.name} - account {account_id}: {exc}")
            continue
        errors.extend(
            f"{report_range.name} - account {account_id}: {e}" for e in shape_errors
        )
        rows.extend(account_rows)

    enrich_rows(
        rows,
        lookup,
        countries=cfg.country_currency.keys(),
        batch_size=cfg.meta.batch_size,
    )
    logger.info("%s: %d ads from %d accounts", report_range.name, len(rows), len(meta_cfg.ad_account_ids))
    return rows


def _filter_ads(
    rows: Sequence[AdPerformanceRow], country_filter: str, product_filter: str
) -> List[AdPerformanceRow]:
    wanted_product = normalize_text(product_filter)
    out = []
    for row in rows:
        if not campaign_matches_country(row.campaign_name, country_filter):
            continue
        if wanted_product and wanted_product not in normalize_text(row.campaign_name):
            continue
        out.append(row)
    return out


def _prepare(
    cfg: AppConfig,
    meta_cfg: MetaAdsConfig,
    ranges: Optional[Sequence[str]],
    country_filter: str,
    sources: Optional[Sequence[SalesSource]],
    rate_provider: Optional[ExchangeRateProvider],
    today: Optional[date],
):
    # configuration problems surface here, before any network call
    if sources is None:
        sources = build_sales_sources(cfg)
    if not meta_cfg.ad_account_ids:
        raise ConfigError("No Meta ad accounts configured.")
    resolved = [resolve_range(name, today) for name in (ranges or cfg.report.ranges)]

    errors: List[str] = []
    orders, messages, source_errors = collect_records(sources, country_filter)
    errors.extend(source_errors)

    provider = rate_provider or make_rate_provider(cfg)
    rates = provider.get_exchange_rates()
    return resolved, orders, messages, rates, provider, errors


def _aggregate_for_range(
    cfg: AppConfig,
    report_range: ReportRange,
    orders: List[OrderRecord],
    messages: List[MessageRecord],
    rates: Dict[str, float],
    country_filter: str,
):
    financials = aggregate_orders(
        orders,
        country_filter=country_filter,
        date_start=report_range.start,
        date_end=report_range.end,
        rates=rates,
        country_currency=cfg.country_currency,
    )
    counts = aggregate_messages(
        messages,
        country_filter=country_filter,
        date_start=report_range.start,
        date_end=report_range.end,
    )
    return financials, counts


def _summary(
    kind: str,
    cfg: AppConfig,
    country_filter: str,
    product_filter: str,
    sections: List[Dict],
    errors: List[str],
    rates: Dict[str, float],
    provider: ExchangeRateProvider,
    orders: List[OrderRecord],
    messages: List[MessageRecord],
) -> Dict:
    rows: List[ReportRow] = []
    for section in sections:
        rows.extend(section["rows"])
        rows.append(section["total"])
    return {
        "kind": kind,
        "generated_at": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC"),
        "country_filter": country_filter,
        "product_filter": product_filter,
        "tax_rate": cfg.report.tax_rate,
        "ranges": sections,
        "rows": rows,
        "errors": errors,
        "rates": rates,
        "cache_stats": provider.stats(),
        "order_count": len(orders),
        "message_count": len(messages),
    }


def run_ads_report(
    cfg: AppConfig,
    meta_cfg: MetaAdsConfig,
    ranges: Optional[Sequence[str]] = None,
    country_filter: str = "",
    product_filter: str = "",
    sources: Optional[Sequence[SalesSource]] = None,
    ad_account_factory: Optional[AdAccountFactory] = None,
    lookup=None,
    rate_provider: Optional[ExchangeRateProvider] = None,
    today: Optional[date] = None,
) -> Dict:
    """Per-ad reconciliation for each range, plus one TOTAL row per range.

    Pipeline per range:
      1. calendar bounds for the range
      2. aggregate orders (USD) and messages per normalized ad id
      3. fetch + enrich ads for every account (failures collected)
      4. keep campaigns matching the country and product filters
      5. build report rows and the range total
    """
    resolved, orders, messages, rates, provider, errors = _prepare(
        cfg, meta_cfg, ranges, country_filter, sources, rate_provider, today
    )
    factory, lookup = _meta_clients(meta_cfg, ad_account_factory, lookup)

    sections: List[Dict] = []
    for report_range in resolved:
        financials, counts = _aggregate_for_range(
            cfg, report_range, orders, messages, rates, country_filter
        )
        ads = fetch_range_ads(cfg, meta_cfg, report_range, factory, lookup, errors)
        ads = _filter_ads(ads, country_filter, product_filter)
        rows = build_report(
            ads, financials, counts, range_name=report_range.name, tax_rate=cfg.report.tax_rate
        )
        rows.sort(key=lambda r: r.spend, reverse=True)
        sections.append(
            {
                "name": report_range.name,
                "window": report_range.window.describe(),
                "start": report_range.start.isoformat(),
                "end": report_range.end.isoformat(),
                "rows": rows,
                "total": totals_row(rows, range_name=report_range.name),
            }
        )

    return _summary(
        "ads", cfg, country_filter, product_filter, sections, errors, rates, provider, orders, messages
    )


def _rules_for_country(rules: Sequence[ProductRule], country_filter: str) -> List[ProductRule]:
    wanted = normalize_text(country_filter)
    if not wanted:
        return list(rules)
    return [r for r in rules if not r.country or r.country == wanted]


def run_product_report(
    cfg: AppConfig,
    meta_cfg: MetaAdsConfig,
    ranges: Optional[Sequence[str]] = None,
    country_filter: str = "",
    sources: Optional[Sequence[SalesSource]] = None,
    ad_account_factory: Optional[AdAccountFactory] = None,
    lookup=None,
    rate_provider: Optional[ExchangeRateProvider] = None,
    today: Optional[date] = None,
) -> Dict:
    """Like :func:`run_ads_report` but grouped per configured product rule."""
    rules = _rules_for_country(cfg.require_products(), country_filter)
    resolved, orders, messages, rates, provider, errors = _prepare(
        cfg, meta_cfg, ranges, country_filter, sources, rate_provider, today
    )
    factory, lookup = _meta_clients(meta_cfg, ad_account_factory, lookup)

    sections: List[Dict] = []
    for report_range in resolved:
        financials, counts = _aggregate_for_range(
            cfg, report_range, orders, messages, rates, country_filter
        )
        ads = fetch_range_ads(cfg, meta_cfg, report_range, factory, lookup, errors)
        ads = _filter_ads(ads, country_filter, "")
        rows = build_product_report(
            ads,
            financials,
            counts,
            rules,
            range_name=report_range.name,
            tax_rate=cfg.report.tax_rate,
        )
        sections.append(
            {
                "name": report_range.name,
                "window": report_range.window.describe(),
                "start": report_range.start.isoformat(),
                "end": report_range.end.isoformat(),
                "rows": rows,
                "total": totals_row(rows, range_name=report_range.name, label="TOTAL"),
            }
        )

    return _summary(
        "products", cfg, country_filter, "", sections, errors, rates, provider, orders, messages
    )


def run_sales_lookup(
    cfg: AppConfig,
    query: str,
    sources: Optional[Sequence[SalesSource]] = None,
    rate_provider: Optional[ExchangeRateProvider] = None,
) -> Dict:
    """Sales totals per country for a free-text product name."""
    if not normalize_text(query):
        raise ConfigError("A product name is required.")
    if sources is None:
        sources = build_sales_sources(cfg)
    orders, _messages, errors = collect_records(sources)
    provider = rate_provider or make_rate_provider(cfg)
    per_country, matched = summarize_product_sales(
        orders,
        query,
        provider.get_exchange_rates(),
        cfg.country_currency,
        known_countries=cfg.country_currency.keys(),
    )
    return {
        "query": query,
        "per_country": per_country,
        "sales": len(matched),
        "total_usd": sum(v["total_usd"] for v in per_country.values()),
        "errors": errors,
    }


def pull_ad_rows(
    cfg: AppConfig,
    meta_cfg: MetaAdsConfig,
    range_name: str,
    ad_account_factory: Optional[AdAccountFactory] = None,
    lookup=None,
    today: Optional[date] = None,
) -> Tuple[List[AdPerformanceRow], List[str]]:
    """Raw enriched ad rows for one range, without sales data."""
    report_range = resolve_range(range_name, today)
    factory, lookup = _meta_clients(meta_cfg, ad_account_factory, lookup)
    errors: List[str] = []
    rows = fetch_range_ads(cfg, meta_cfg, report_range, factory, lookup, errors)
    return rows, errors


def run_campaign_diagnostic(
    cfg: AppConfig,
    meta_cfg: MetaAdsConfig,
    limit: int = 25,
    ad_account_factory: Optional[AdAccountFactory] = None,
) -> Tuple[List[Dict], List[str]]:
    """Sample each account's campaigns and show which product rule each one hits."""
    if ad_account_factory is None:
        ad_account_factory = partial(open_ad_account, api=init_api(meta_cfg))
    retry = RetryPolicy.from_config(cfg.retry_api)

    rows: List[Dict] = []
    errors: List[str] = []
    for account_id in meta_cfg.ad_account_ids:
        try:
            campaigns = fetch_campaigns(ad_account_factory(account_id), limit, retry)
        except MetaAdsConnectorError as exc:
            errors.append(f"account {account_id}: {exc}")
            continue
        names = [str(c.get("name", "") or "") for c in campaigns]
        for campaign, match in zip(campaigns, diagnose_campaigns(names, cfg.products)):
            match["account"] = account_id
            match["status"] = str(campaign.get("effective_status", "") or "UNKNOWN")
            rows.append(match)
    return rows, errors


# ─────────────────────────────────────────────────────────────────────────────
# Outputs
# ─────────────────────────────────────────────────────────────────────────────


def report_frame(rows: Sequence[ReportRow]) -> pd.DataFrame:
    return pd.DataFrame([r.to_dict() for r in rows])


def write_report_outputs(summary: Dict, output_dir) -> Dict[str, Path]:
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    csv_path = output_dir / "report.csv"
    report_frame(summary["rows"]).to_csv(csv_path, index=False)

    md_path = output_dir / "report.md"
    md_path.write_text(_format_report(summary), encoding="utf-8")
    return {"csv": csv_path, "markdown": md_path}


def _money(v: float) -> str:
    return f"${v:,.2f}"


def _format_row(r: ReportRow, label: str) -> str:
    return (
        f"| {label} | {r.delivery or '-'} | {_money(r.spend_with_tax)} | "
        f"{_money(r.revenue_usd)} | {r.roas:.2f} | {_money(r.profit)} | "
        f"{r.roi * 100:.1f}% | {r.unique_clicks:,} | {r.messages:,} | {r.sales:,} | "
        f"{_money(r.cost_per_sale)} |"
    )


def _format_report(summary: Dict) -> str:
    title = "Product Report" if summary.get("kind") == "products" else "Ads Report"
    lines = [
        f"# Ad Revenue Reconciliation: {title}",
        f"**Date:** {summary.get('generated_at', '')}",
        "",
        "## Summary",
        f"- Country filter: {summary.get('country_filter') or 'all'}",
    ]
    if summary.get("product_filter"):
        lines.append(f"- Product filter: {summary['product_filter']}")
    lines += [
        f"- Tax rate: {summary.get('tax_rate', 0) * 100:.0f}%",
        f"- Orders read: {summary.get('order_count', 0)}",
        f"- Messages read: {summary.get('message_count', 0)}",
        f"- Errors: {len(summary.get('errors', []))}",
        "",
    ]

    # ── Exchange rates ────────────────────────────────────────────────────────
    rates = summary.get("rates") or {}
    if rates:
        shown = ", ".join(f"{k}={v:g}" for k, v in sorted(rates.items()) if k in {"PEN", "COP", "MXN", "CLP", "ARS"})
        lines += ["## Exchange Rates (per USD)", f"- {shown or 'USD only'}", ""]

    cstats = summary.get("cache_stats") or {}
    if cstats:
        lines += [
            "## Cache Stats",
            f"- Cache hits: {cstats.get('hits', 0)}",
            f"- Cache misses: {cstats.get('misses', 0)}",
            f"- Hit rate: {cstats.get('hit_rate', 0) * 100:.1f}%",
            "",
        ]

    # ── Per range ─────────────────────────────────────────────────────────────
    header = (
        "| Item | Delivery | Spend+Tax | Revenue USD | ROAS | Profit | ROI | "
        "Clicks | Messages | Sales | Cost/Sale |"
    )
    for section in summary.get("ranges", []):
        lines.append(f"## {section['name']} ({section['start']} → {section['end']})")
        lines.append("")
        if not section["rows"]:
            lines.append("No ads in this range.")
            lines.append("")
            continue
        lines.append(header)
        lines.append("|" + "---|" * 11)
        for r in section["rows"]:
            label = r.product if summary.get("kind") == "products" else f"{r.ad_name} (`{r.ad_id}`)"
            lines.append(_format_row(r, label))
        total = section["total"]
        lines.append(_format_row(total, f"**{total.campaign}**"))
        lines.append("")

    if summary.get("errors"):
        lines.append("## Errors")
        lines.extend(f"- {e}" for e in summary["errors"])
        lines.append("")

    return "\n".join(lines)
