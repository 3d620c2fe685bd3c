"""Join ad performance with sales/messages and derive financial metrics."""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from adrecon.normalize import normalize_ad_id
from adrecon.products import ProductRule, classify_campaign
from adrecon.schema import (
    DEFAULT_TAX_RATE,
    AdPerformanceRow,
    AggregatedFinancials,
    ReportRow,
)

SUMMABLE = (
    "budget",
    "spend",
    "revenue_usd",
    "impressions",
    "reach",
    "unique_clicks",
    "messages",
    "sales",
)


def report_row_for_ad(
    ad: AdPerformanceRow,
    financials: Mapping[str, AggregatedFinancials],
    message_counts: Mapping[str, int],
    range_name: str = "",
    tax_rate: float = DEFAULT_TAX_RATE,
) -> ReportRow:
    key = normalize_ad_id(ad.ad_id) if ad.ad_id else ""
    fin = financials.get(key) if key else None
    row = ReportRow(
        kind="DATA",
        range_name=range_name,
        campaign=ad.campaign_name,
        ad_set=ad.adset_name,
        ad_name=ad.ad_name,
        ad_id=ad.ad_id,
        country=ad.country,
        delivery=ad.delivery.value,
        rate=fin.rate if fin else None,
        ad_count=1,
        budget=ad.budget,
        spend=ad.spend,
        revenue_usd=fin.total_usd if fin else 0.0,
        impressions=ad.impressions,
        reach=ad.reach,
        unique_clicks=ad.unique_clicks,
        messages=int(message_counts.get(key, 0)) if key else 0,
        sales=fin.sale_count if fin else 0,
        tax_rate=tax_rate,
    )
    return row.recompute_metrics()


def build_report(
    ad_rows: Iterable[AdPerformanceRow],
    financials: Mapping[str, AggregatedFinancials],
    message_counts: Mapping[str, int],
    range_name: str = "",
    tax_rate: float = DEFAULT_TAX_RATE,
) -> List[ReportRow]:
    """One report row per ad; missing sales/messages count as zero."""
    return [
        report_row_for_ad(ad, financials, message_counts, range_name, tax_rate)
        for ad in ad_rows
    ]


def sum_rows(
    rows: Sequence[ReportRow],
    template: Optional[ReportRow] = None,
    tax_rate: Optional[float] = None,
) -> ReportRow:
    """Sum base metrics of *rows* into a new row and recompute every ratio.

    Ratios are never averaged: a ratio of the sums is what the group reports.
    """
    out = template or ReportRow()
    if tax_rate is not None:
        out.tax_rate = tax_rate
    elif rows:
        out.tax_rate = rows[0].tax_rate
    for name in SUMMABLE:
        setattr(out, name, sum(getattr(r, name) for r in rows))
    out.ad_count = sum(r.ad_count for r in rows)
    return out.recompute_metrics()


def totals_row(
    rows: Sequence[ReportRow],
    range_name: str = "",
    label: str = "",
) -> ReportRow:
    data = [r for r in rows if r.kind == "DATA"]
    template = ReportRow(
        kind="TOTAL",
        range_name=range_name,
        campaign=label or f"({len(data)} rows)",
    )
    return sum_rows(data, template=template)


def build_product_report(
    ad_rows: Iterable[AdPerformanceRow],
    financials: Mapping[str, AggregatedFinancials],
    message_counts: Mapping[str, int],
    rules: Sequence[ProductRule],
    range_name: str = "",
    tax_rate: float = DEFAULT_TAX_RATE,
) -> List[ReportRow]:
    """Aggregate ads per product rule (first matching rule wins).

    Ads whose campaign matches no rule are left out. Output follows rule
    order and contains only products with at least one matching ad.
    """
    grouped: Dict[str, List[ReportRow]] = {}
    for ad in ad_rows:
        key = classify_campaign(ad.campaign_name, rules)
        if key is None:
            continue
        grouped.setdefault(key, []).append(
            report_row_for_ad(ad, financials, message_counts, range_name, tax_rate)
        )

    out: List[ReportRow] = []
    for rule in rules:
        members = grouped.pop(rule.key, None)
        if not members:
            continue
        template = ReportRow(
            kind="DATA",
            range_name=range_name,
            product=rule.key,
            country=rule.country,
        )
        out.append(sum_rows(members, template=template, tax_rate=tax_rate))
    return out
