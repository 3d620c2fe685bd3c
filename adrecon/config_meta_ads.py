"""Configuration loader/validator for Meta Ads credentials (BYO token)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from dotenv import load_dotenv


class MetaAdsConfigError(ValueError):
    pass


@dataclass
class MetaAdsConfig:
    access_token: str
    ad_account_ids: List[str] = field(default_factory=list)
    app_id: Optional[str] = None
    app_secret: Optional[str] = None
    api_version: Optional[str] = None


def _clean(v) -> str:
    return str(v or "").strip()


def _split_accounts(raw: str) -> List[str]:
    return [x.strip() for x in raw.split(",") if x.strip()]


def load_meta_ads_config(
    accounts: Optional[Iterable[str]] = None,
    api_version: Optional[str] = None,
) -> MetaAdsConfig:
    """Read the token from the environment and merge ad accounts.

    Accounts come from ``META_AD_ACCOUNT_IDS`` (comma separated) followed by
    *accounts* from config.yaml; duplicates are dropped, order is kept.
    """
    load_dotenv()
    token = _clean(os.environ.get("META_ACCESS_TOKEN"))
    app_id = _clean(os.environ.get("META_APP_ID")) or None
    app_secret = _clean(os.environ.get("META_APP_SECRET")) or None

    if not token:
        raise MetaAdsConfigError(
            "META_ACCESS_TOKEN is missing. Set it in environment or .env."
        )

    merged: List[str] = []
    for acc in _split_accounts(_clean(os.environ.get("META_AD_ACCOUNT_IDS"))) + [
        _clean(a) for a in (accounts or [])
    ]:
        if acc and acc not in merged:
            merged.append(acc)

    if not merged:
        raise MetaAdsConfigError(
            "No ad accounts configured. Set META_AD_ACCOUNT_IDS or meta.accounts "
            "(format act_<id>)."
        )
    bad = [a for a in merged if not a.startswith("act_")]
    if bad:
        raise MetaAdsConfigError(
            f"Ad account ids must be in format act_<id>: {', '.join(bad)}"
        )

    return MetaAdsConfig(
        access_token=token,
        ad_account_ids=merged,
        app_id=app_id,
        app_secret=app_secret,
        api_version=api_version,
    )
