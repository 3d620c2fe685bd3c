"""Internal schema for ad performance, sales records and report rows."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, Literal, Optional

RowKind = Literal["DATA", "TOTAL"]

DEFAULT_TAX_RATE = 0.18


class EntityStatus(str, Enum):
    """Effective status of an ad, ad set or campaign."""

    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    OTHER = "OTHER"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Any) -> "EntityStatus":
        s = str(value or "").strip().upper()
        if not s:
            return cls.UNKNOWN
        if s == "ACTIVE":
            return cls.ACTIVE
        if s in {"PAUSED", "CAMPAIGN_PAUSED", "ADSET_PAUSED"}:
            return cls.PAUSED
        if s == "UNKNOWN":
            return cls.UNKNOWN
        return cls.OTHER


class DeliveryState(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"


def _ratio(num: float, den: float) -> float:
    return (num / den) if den > 0 else 0.0


@dataclass
class AdPerformanceRow:
    ad_id: str
    ad_name: str = ""
    campaign_id: str = ""
    campaign_name: str = ""
    adset_id: str = ""
    adset_name: str = ""

    spend: float = 0.0
    impressions: int = 0
    reach: int = 0
    unique_clicks: int = 0

    date_start: Optional[str] = None
    date_end: Optional[str] = None

    # enrichment
    ad_status: EntityStatus = EntityStatus.UNKNOWN
    adset_status: EntityStatus = EntityStatus.UNKNOWN
    campaign_status: EntityStatus = EntityStatus.UNKNOWN
    budget: float = 0.0
    country: str = "N/A"

    @property
    def delivery(self) -> DeliveryState:
        statuses = (self.ad_status, self.adset_status, self.campaign_status)
        if all(s is EntityStatus.ACTIVE for s in statuses):
            return DeliveryState.ACTIVE
        return DeliveryState.PAUSED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ad_id": self.ad_id,
            "ad_name": self.ad_name,
            "campaign_id": self.campaign_id,
            "campaign_name": self.campaign_name,
            "adset_id": self.adset_id,
            "adset_name": self.adset_name,
            "spend": self.spend,
            "impressions": self.impressions,
            "reach": self.reach,
            "unique_clicks": self.unique_clicks,
            "date_start": self.date_start,
            "date_end": self.date_end,
            "ad_status": self.ad_status.value,
            "adset_status": self.adset_status.value,
            "campaign_status": self.campaign_status.value,
            "delivery": self.delivery.value,
            "budget": self.budget,
            "country": self.country,
        }


@dataclass(frozen=True)
class OrderRecord:
    order_date: Optional[date]
    raw_ad_id: str
    amount: float
    country: str = ""
    product: str = ""


@dataclass(frozen=True)
class MessageRecord:
    event_date: Optional[date]
    raw_ad_id: str
    country: str = ""


@dataclass
class AggregatedFinancials:
    total_usd: float = 0.0
    total_local: float = 0.0
    currency: str = "USD"
    rate: float = 1.0
    sale_count: int = 0
    country: str = ""


@dataclass
class ReportRow:
    kind: RowKind = "DATA"
    range_name: str = ""
    campaign: str = ""
    ad_set: str = ""
    ad_name: str = ""
    ad_id: str = ""
    product: str = ""
    country: str = ""
    delivery: str = ""
    rate: Optional[float] = None
    ad_count: int = 0

    # base metrics (summable)
    budget: float = 0.0
    spend: float = 0.0
    revenue_usd: float = 0.0
    impressions: int = 0
    reach: int = 0
    unique_clicks: int = 0
    messages: int = 0
    sales: int = 0

    tax_rate: float = DEFAULT_TAX_RATE

    # derived
    tax: float = 0.0
    spend_with_tax: float = 0.0
    roas: float = 0.0
    profit: float = 0.0
    roi: float = 0.0
    cost_per_click: float = 0.0
    message_rate: float = 0.0
    cost_per_message: float = 0.0
    conversion_rate: float = 0.0
    cost_per_sale: float = 0.0
    cpm: float = 0.0

    def recompute_metrics(self) -> "ReportRow":
        self.tax = self.spend * self.tax_rate
        self.spend_with_tax = self.spend + self.tax
        gross = self.spend_with_tax
        self.roas = _ratio(self.revenue_usd, gross)
        self.profit = self.revenue_usd - gross
        self.roi = _ratio(self.profit, gross)
        self.cost_per_click = _ratio(gross, self.unique_clicks)
        self.message_rate = _ratio(self.messages, self.unique_clicks)
        self.cost_per_message = _ratio(gross, self.messages)
        self.conversion_rate = _ratio(self.sales, self.messages)
        self.cost_per_sale = _ratio(gross, self.sales)
        self.cpm = _ratio(self.spend, self.impressions) * 1000
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "range": self.range_name,
            "campaign": self.campaign,
            "ad_set": self.ad_set,
            "ad_name": self.ad_name,
            "ad_id": self.ad_id,
            "product": self.product,
            "country": self.country,
            "delivery": self.delivery,
            "budget": self.budget,
            "spend": self.spend,
            "tax": self.tax,
            "spend_with_tax": self.spend_with_tax,
            "revenue_usd": self.revenue_usd,
            "roas": self.roas,
            "profit": self.profit,
            "roi": self.roi,
            "impressions": self.impressions,
            "reach": self.reach,
            "unique_clicks": self.unique_clicks,
            "cost_per_click": self.cost_per_click,
            "messages": self.messages,
            "message_rate": self.message_rate,
            "cost_per_message": self.cost_per_message,
            "sales": self.sales,
            "conversion_rate": self.conversion_rate,
            "cost_per_sale": self.cost_per_sale,
            "cpm": self.cpm,
            "rate": self.rate,
        }


def _day(value: Optional[str]) -> Optional[date]:
    # Ad Library timestamps look like 2026-01-05T08:00:00+0000
    try:
        return date.fromisoformat(str(value)[:10]) if value else None
    except ValueError:
        return None


@dataclass
class AdLibraryAd:
    """One public ad from Meta's Ad Library."""

    id: str
    page_name: str = ""
    page_id: str = ""
    snapshot_url: str = ""
    start_time: Optional[str] = None
    stop_time: Optional[str] = None

    @property
    def active(self) -> bool:
        return not self.stop_time

    @property
    def days_active(self) -> Optional[int]:
        start, stop = _day(self.start_time), _day(self.stop_time)
        if start is None or stop is None:
            return None
        return (stop - start).days

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "page_name": self.page_name,
            "page_id": self.page_id,
            "status": "ACTIVE" if self.active else "FINISHED",
            "start": self.start_time or "",
            "stop": self.stop_time or "",
            "days_active": self.days_active,
            "snapshot_url": self.snapshot_url,
        }
