"""Load and validate config.yaml."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

import yaml

from adrecon.normalize import normalize_text
from adrecon.products import ProductRule, load_product_rules


class ConfigError(ValueError):
    """Raised when the configuration cannot support the requested operation."""


DEFAULT_COUNTRY_CURRENCY: Dict[str, str] = {
    "PERU": "PEN",
    "COLOMBIA": "COP",
    "MEXICO": "MXN",
    "CHILE": "CLP",
    "ARGENTINA": "ARS",
    "ECUADOR": "USD",
    "PANAMA": "USD",
    "ESTADOS UNIDOS": "USD",
}

DEFAULT_RANGES = [
    "TODAY",
    "YESTERDAY",
    "LAST_3D",
    "LAST_5D",
    "LAST_7D",
    "LAST_30D",
    "MAXIMUM",
]


@dataclass
class ReportConfig:
    tax_rate: float = 0.18  # IGV
    output_dir: str = "output"
    ranges: List[str] = field(default_factory=lambda: list(DEFAULT_RANGES))


@dataclass
class ExchangeConfig:
    latest_url: str = "https://api.exchangerate-api.com/v4/latest/USD"
    historical_url: str = "https://api.frankfurter.app"
    ttl_seconds: int = 21600  # 6h
    historical_ttl_seconds: int = 86400  # 24h
    timeout_seconds: float = 30.0
    cache_path: str = "cache/rates.db"
    fallback_rates: Dict[str, float] = field(
        default_factory=lambda: {"PEN": 3.75, "COP": 4100.0, "MXN": 17.5, "USD": 1.0}
    )


@dataclass
class SourceConfig:
    """One external sales/messages spreadsheet (or a local CSV directory)."""

    id: str
    name: str = ""
    kind: str = "sheets"  # sheets | csv


@dataclass
class OrderColumns:
    """1-based column positions in the orders worksheet."""

    date: int = 3
    amount: int = 4
    post_id: int = 5
    product: int = 10
    country: int = 11


@dataclass
class MessageColumns:
    date: int = 1
    post_id: int = 5


@dataclass
class SalesConfig:
    sources: List[SourceConfig] = field(default_factory=list)
    orders_worksheet: str = "Compras"
    messages_worksheet: str = "Mensajes"
    order_columns: OrderColumns = field(default_factory=OrderColumns)
    message_columns: MessageColumns = field(default_factory=MessageColumns)


@dataclass
class MetaConfig:
    accounts: List[str] = field(default_factory=list)
    api_version: str = "v22.0"
    batch_size: int = 50
    page_limit: int = 500


@dataclass
class RetryConfig:
    """Exponential-backoff settings for Graph API calls."""

    max_api_retries: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 20.0
    jitter_seconds: float = 0.5


@dataclass
class AppConfig:
    report: ReportConfig = field(default_factory=ReportConfig)
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    sales: SalesConfig = field(default_factory=SalesConfig)
    meta: MetaConfig = field(default_factory=MetaConfig)
    retry_api: RetryConfig = field(default_factory=RetryConfig)
    country_currency: Dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_COUNTRY_CURRENCY)
    )
    products: List[ProductRule] = field(default_factory=list)

    def require_sales_sources(self) -> List[SourceConfig]:
        if not self.sales.sources:
            raise ConfigError(
                "No sales spreadsheets configured. Add entries under sales.sources "
                "in config.yaml."
            )
        return self.sales.sources

    def require_products(self) -> List[ProductRule]:
        if not self.products:
            raise ConfigError(
                "No products configured. Add entries under products in config.yaml."
            )
        return self.products


def _load_sources(raw) -> List[SourceConfig]:
    out: List[SourceConfig] = []
    for idx, item in enumerate(raw or []):
        # bare ids are accepted and given a generic name
        if isinstance(item, str):
            item = {"id": item}
        sid = str(item.get("id", "") or "").strip()
        if not sid:
            raise ConfigError(f"sales.sources[{idx}] is missing an id.")
        out.append(
            SourceConfig(
                id=sid,
                name=str(item.get("name") or f"Sheet {idx + 1}"),
                kind=str(item.get("kind", "sheets")).strip().lower(),
            )
        )
    return out


def _load_sales(raw: dict) -> SalesConfig:
    raw = dict(raw or {})
    return SalesConfig(
        sources=_load_sources(raw.pop("sources", [])),
        order_columns=OrderColumns(**raw.pop("order_columns", {})),
        message_columns=MessageColumns(**raw.pop("message_columns", {})),
        **raw,
    )


def _load_country_currency(raw) -> Dict[str, str]:
    if not raw:
        return dict(DEFAULT_COUNTRY_CURRENCY)
    return {normalize_text(k): str(v).strip().upper() for k, v in raw.items()}


def load_config(path: str | Path = "config.yaml") -> AppConfig:
    """Load config from YAML file, falling back to defaults."""
    p = Path(path)
    raw: dict = {}
    if p.exists():
        with open(p, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    try:
        cfg = AppConfig(
            report=ReportConfig(**raw.get("report", {})),
            exchange=ExchangeConfig(**raw.get("exchange", {})),
            sales=_load_sales(raw.get("sales", {})),
            meta=MetaConfig(**raw.get("meta", {})),
            retry_api=RetryConfig(**raw.get("retry_api", {})),
            country_currency=_load_country_currency(raw.get("country_currency")),
            products=load_product_rules(raw.get("products")),
        )
    except TypeError as exc:
        raise ConfigError(f"Invalid config file {p}: {exc}") from exc

    if cfg.report.tax_rate < 0:
        raise ConfigError("report.tax_rate must be >= 0.")
    if "USD" not in cfg.exchange.fallback_rates:
        cfg.exchange.fallback_rates["USD"] = 1.0
    return cfg
