"""Meta Ads connector: ad-level insights plus batched status/budget enrichment."""

from __future__ import annotations

import logging
import random
import re
import time
from collections.abc import Mapping
from itertools import islice
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from adrecon.config import RetryConfig
from adrecon.config_meta_ads import MetaAdsConfig
from adrecon.normalize import country_from_campaign
from adrecon.schema import AdLibraryAd, AdPerformanceRow, EntityStatus
from adrecon.time_windows import TimeWindow

logger = logging.getLogger(__name__)

INSIGHT_FIELDS = [
    "campaign_name",
    "campaign_id",
    "adset_name",
    "adset_id",
    "ad_name",
    "ad_id",
    "spend",
    "impressions",
    "reach",
    "unique_inline_link_clicks",
    "date_start",
    "date_stop",
]

AD_FIELDS = ["effective_status"]
ADSET_FIELDS = ["effective_status", "daily_budget", "lifetime_budget"]
CAMPAIGN_FIELDS = ["effective_status"]

LIFETIME_FIELDS = [
    "ad_id",
    "ad_name",
    "campaign_name",
    "adset_name",
    "spend",
    "impressions",
    "reach",
    "unique_inline_link_clicks",
    "date_start",
    "date_stop",
]
AD_LIBRARY_FIELDS = [
    "id",
    "page_id",
    "page_name",
    "ad_snapshot_url",
    "ad_delivery_start_time",
    "ad_delivery_stop_time",
]
CAMPAIGN_LIST_FIELDS = ["id", "name", "effective_status"]
PAGE_FIELDS = ["id", "name", "access_token"]

BATCH_SIZE = 50


class MetaAdsConnectorError(RuntimeError):
    pass


class InsightShapeError(ValueError):
    pass


@dataclass
class RetryPolicy:
    max_retries: int = 3
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 20.0
    jitter_seconds: float = 0.5

    @classmethod
    def from_config(cls, cfg: RetryConfig) -> "RetryPolicy":
        return cls(
            max_retries=cfg.max_api_retries,
            backoff_base_seconds=cfg.backoff_base_seconds,
            backoff_max_seconds=cfg.backoff_max_seconds,
            jitter_seconds=cfg.jitter_seconds,
        )


def _safe_float(v, default: float = 0.0) -> float:
    try:
        return float(v)
    except Exception:
        return default


def _safe_int(v, default: int = 0) -> int:
    try:
        return int(float(v))
    except Exception:
        return default


def map_insight_to_row(insight) -> AdPerformanceRow:
    if not isinstance(insight, dict):
        raise InsightShapeError(f"Insight is not an object: {type(insight).__name__}")
    ad_id = str(insight.get("ad_id", "") or "").strip()
    if not ad_id:
        raise InsightShapeError("Insight row has no ad_id")

    return AdPerformanceRow(
        ad_id=ad_id,
        ad_name=str(insight.get("ad_name", "") or ""),
        campaign_id=str(insight.get("campaign_id", "") or ""),
        campaign_name=str(insight.get("campaign_name", "") or ""),
        adset_id=str(insight.get("adset_id", "") or ""),
        adset_name=str(insight.get("adset_name", "") or ""),
        spend=_safe_float(insight.get("spend", 0.0)),
        impressions=_safe_int(insight.get("impressions", 0)),
        reach=_safe_int(insight.get("reach", 0)),
        unique_clicks=_safe_int(insight.get("unique_inline_link_clicks", 0)),
        date_start=str(insight.get("date_start", "") or "") or None,
        date_end=str(insight.get("date_stop", "") or "") or None,
    )


def _upstream_message(exc: Exception) -> str:
    getter = getattr(exc, "api_error_message", None)
    if callable(getter):
        msg = getter()
        if msg:
            return str(msg)
    return str(exc) or exc.__class__.__name__


def _is_retryable_error(exc: Exception) -> bool:
    s = str(exc).lower()
    return any(
        k in s
        for k in ["rate", "too many", "tempor", "limit", "429", "17", "32", "613"]
    )


def _fetch_with_retry(node, fields, params, retry: RetryPolicy, method: str = "get_insights"):
    attempt = 0
    while True:
        try:
            return getattr(node, method)(fields=fields, params=params)
        except Exception as exc:
            if attempt >= retry.max_retries or not _is_retryable_error(exc):
                raise
            sleep_s = min(
                retry.backoff_base_seconds * (2**attempt), retry.backoff_max_seconds
            )
            sleep_s += random.uniform(0, retry.jitter_seconds)
            logger.info("Retrying %s in %.1fs after: %s", method, sleep_s, exc)
            time.sleep(sleep_s)
            attempt += 1


def init_api(cfg: MetaAdsConfig):
    """Initialize the Graph API session for *cfg*; returns the SDK api object."""
    try:
        from facebook_business.api import FacebookAdsApi
    except Exception as exc:  # pragma: no cover
        raise MetaAdsConnectorError(
            "facebook_business SDK missing. Install `facebook-business` and retry."
        ) from exc

    try:
        return FacebookAdsApi.init(
            app_id=cfg.app_id,
            app_secret=cfg.app_secret,
            access_token=cfg.access_token,
            api_version=cfg.api_version,
        )
    except Exception as exc:
        raise MetaAdsConnectorError(
            f"Failed to initialize Meta Ads API: {_upstream_message(exc)}"
        ) from exc


def open_ad_account(account_id: str, api=None):
    from facebook_business.adobjects.adaccount import AdAccount

    return AdAccount(account_id, api=api)


def fetch_ad_rows(
    ad_account,
    window: TimeWindow,
    retry_policy: Optional[RetryPolicy] = None,
    page_limit: int = 500,
) -> Tuple[List[AdPerformanceRow], List[str]]:
    """Pull ad-level insights for one account and one window.

    Returns ``(rows, errors)``: malformed rows are skipped and described in
    *errors*. Request failures raise :class:`MetaAdsConnectorError` with the
    upstream message.
    """
    params = {"level": "ad", "limit": page_limit}
    params.update(window.to_params())
    retry = retry_policy or RetryPolicy()

    try:
        cursor = _fetch_with_retry(ad_account, INSIGHT_FIELDS, params, retry)
        raw = [dict(i) if isinstance(i, Mapping) else i for i in cursor]
    except Exception as exc:
        raise MetaAdsConnectorError(_upstream_message(exc)) from exc

    rows: List[AdPerformanceRow] = []
    errors: List[str] = []
    for idx, insight in enumerate(raw):
        try:
            rows.append(map_insight_to_row(insight))
        except InsightShapeError as exc:
            errors.append(f"insight #{idx}: {exc}")
    return rows, errors


# ─────────────────────────────────────────────────────────────────────────────
# Enrichment (batched entity lookups)
# ─────────────────────────────────────────────────────────────────────────────


class GraphEntityLookup:
    """Resolve node fields through Graph API batch requests.

    ``fetch_entity_fields`` returns ``{id: fields}``; ids whose lookup failed
    map to ``None``.
    """

    def __init__(self, api) -> None:
        self._api = api

    def fetch_entity_fields(
        self, ids: Sequence[str], fields: Sequence[str]
    ) -> Dict[str, Optional[dict]]:
        from facebook_business.api import FacebookRequest

        results: Dict[str, Optional[dict]] = {i: None for i in ids}
        batch = self._api.new_batch()

        for entity_id in ids:
            def _ok(response, _id=entity_id):
                try:
                    results[_id] = response.json()
                except Exception:
                    results[_id] = None

            def _fail(response, _id=entity_id):
                logger.debug("Lookup failed for %s: %s", _id, response.error())
                results[_id] = None

            request = FacebookRequest(
                node_id=entity_id, method="GET", endpoint="/", api=self._api
            )
            request.add_fields(list(fields))
            request.add_to_batch(batch, success=_ok, failure=_fail)

        try:
            batch.execute()
        except Exception as exc:
            logger.warning("Batch lookup of %d ids failed: %s", len(ids), exc)
        return results


def _chunks(items: List[str], size: int) -> Iterable[List[str]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


def _lookup_all(
    lookup, ids: Iterable[str], fields: Sequence[str], batch_size: int
) -> Dict[str, Optional[dict]]:
    unique = list(dict.fromkeys(i for i in ids if i))
    out: Dict[str, Optional[dict]] = {}
    for chunk in _chunks(unique, batch_size):
        try:
            out.update(lookup.fetch_entity_fields(chunk, fields))
        except Exception as exc:
            logger.warning("Entity lookup chunk failed, marking UNKNOWN: %s", exc)
            out.update({i: None for i in chunk})
    return out


def _status(data: Optional[dict]) -> EntityStatus:
    if not isinstance(data, dict):
        return EntityStatus.UNKNOWN
    return EntityStatus.parse(data.get("effective_status"))


def _budget(data: Optional[dict]) -> float:
    if not isinstance(data, dict):
        return 0.0
    for key in ("daily_budget", "lifetime_budget"):
        value = _safe_float(data.get(key), 0.0)
        if value:
            return value / 100.0
    return 0.0


def enrich_rows(
    rows: List[AdPerformanceRow],
    lookup,
    countries: Iterable[str] = (),
    batch_size: int = BATCH_SIZE,
) -> List[AdPerformanceRow]:
    """Fill statuses, ad set budget and campaign country in place."""
    countries = list(countries)
    if not rows:
        return rows

    ads = _lookup_all(lookup, (r.ad_id for r in rows), AD_FIELDS, batch_size)
    adsets = _lookup_all(lookup, (r.adset_id for r in rows), ADSET_FIELDS, batch_size)
    camps = _lookup_all(
        lookup, (r.campaign_id for r in rows), CAMPAIGN_FIELDS, batch_size
    )

    for row in rows:
        row.ad_status = _status(ads.get(row.ad_id))
        adset = adsets.get(row.adset_id)
        row.adset_status = _status(adset)
        row.budget = _budget(adset)
        row.campaign_status = _status(camps.get(row.campaign_id))
        row.country = country_from_campaign(row.campaign_name, countries)
    return rows


# ─────────────────────────────────────────────────────────────────────────────
# One-off lookups (single ad, Ad Library, campaigns, pages)
# ─────────────────────────────────────────────────────────────────────────────


def _records(cursor) -> List[dict]:
    return [dict(i) for i in cursor if isinstance(i, Mapping)]


def open_ad(ad_id: str, api=None):
    from facebook_business.adobjects.ad import Ad

    return Ad(ad_id, api=api)


def fetch_ad_lifetime(
    ad_id: str, ad, retry_policy: Optional[RetryPolicy] = None
) -> Optional[AdPerformanceRow]:
    """Lifetime (``date_preset=maximum``) insights for one ad, or None when empty."""
    retry = retry_policy or RetryPolicy()
    try:
        raw = _records(
            _fetch_with_retry(ad, LIFETIME_FIELDS, {"date_preset": "maximum"}, retry)
        )
    except Exception as exc:
        raise MetaAdsConnectorError(_upstream_message(exc)) from exc
    if not raw:
        return None

    insight = raw[0]
    insight["ad_id"] = str(insight.get("ad_id") or ad_id)
    try:
        return map_insight_to_row(insight)
    except InsightShapeError as exc:
        raise MetaAdsConnectorError(f"Ad {ad_id}: {exc}") from exc


def map_library_ad(data: dict) -> AdLibraryAd:
    return AdLibraryAd(
        id=str(data.get("id", "") or ""),
        page_id=str(data.get("page_id", "") or ""),
        page_name=str(data.get("page_name", "") or ""),
        snapshot_url=str(data.get("ad_snapshot_url", "") or ""),
        start_time=data.get("ad_delivery_start_time") or None,
        stop_time=data.get("ad_delivery_stop_time") or None,
    )


def search_ad_library(
    api, search_terms: str, country: str, limit: int = 50
) -> List[AdLibraryAd]:
    """Search Meta's public Ad Library (``/ads_archive``) in one country.

    Raises ``ValueError`` on a blank term or a country that is not a 2-letter
    code, :class:`MetaAdsConnectorError` when the request fails.
    """
    term = str(search_terms or "").strip()
    code = str(country or "").strip().upper()
    if not term:
        raise ValueError("A search term is required.")
    if not re.fullmatch(r"[A-Z]{2}", code):
        raise ValueError(f"Country must be a 2-letter code, got {country!r}")

    params = {
        "search_terms": term,
        "ad_reached_countries": [code],
        "ad_type": "ALL",
        "fields": ",".join(AD_LIBRARY_FIELDS),
        "limit": limit,
    }
    try:
        payload = api.call("GET", ("ads_archive",), params=params).json()
    except Exception as exc:
        raise MetaAdsConnectorError(f"Ad Library search failed: {_upstream_message(exc)}") from exc

    data = payload.get("data") if isinstance(payload, dict) else None
    return [map_library_ad(d) for d in data or [] if isinstance(d, dict)]


def fetch_campaigns(
    ad_account, limit: int = 25, retry_policy: Optional[RetryPolicy] = None
) -> List[dict]:
    """First *limit* campaigns of an account as ``{id, name, effective_status}``."""
    retry = retry_policy or RetryPolicy()
    try:
        cursor = _fetch_with_retry(
            ad_account, CAMPAIGN_LIST_FIELDS, {"limit": limit}, retry, method="get_campaigns"
        )
        return _records(islice(cursor, limit))
    except Exception as exc:
        raise MetaAdsConnectorError(_upstream_message(exc)) from exc


def open_user(api=None):
    from facebook_business.adobjects.user import User

    return User(fbid="me", api=api)


def open_page(page_id: str, api=None):
    from facebook_business.adobjects.page import Page

    return Page(page_id, api=api)


def list_pages(user) -> List[dict]:
    """Facebook Pages the token can act for, as ``{id, name, has_access}``."""
    try:
        pages = _records(user.get_accounts(fields=PAGE_FIELDS))
    except Exception as exc:
        raise MetaAdsConnectorError(f"Cannot list pages: {_upstream_message(exc)}") from exc
    return [
        {
            "id": str(p.get("id", "") or ""),
            "name": str(p.get("name", "") or ""),
            "has_access": bool(p.get("access_token")),
        }
        for p in pages
    ]


def check_page(page_id: str, page) -> dict:
    """Read a page's id and name; raises MetaAdsConnectorError if it is not reachable."""
    try:
        data = page.api_get(fields=["id", "name"])
    except Exception as exc:
        raise MetaAdsConnectorError(
            f"Page ID {page_id} is not valid or not accessible: {_upstream_message(exc)}"
        ) from exc
    data = dict(data) if isinstance(data, Mapping) else {}
    return {"id": str(data.get("id") or page_id), "name": str(data.get("name", "") or "")}
