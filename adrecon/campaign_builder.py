"""Create a click-to-WhatsApp campaign (campaign, ad set, creative, ad)."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, List
from urllib.parse import quote

import yaml

logger = logging.getLogger(__name__)

DEFAULT_WELCOME = "Hola, quiero más información"
VALID_STATUSES = {"ACTIVE", "PAUSED"}
VALID_GENDERS = {"ALL", "MALE", "FEMALE"}


class CampaignSpecError(ValueError):
    pass


class CampaignCreationError(RuntimeError):
    def __init__(self, step: str, message: str, created: Dict[str, str] | None = None):
        super().__init__(f"Error creating {step}: {message}")
        self.step = step
        self.created = dict(created or {})


@dataclass
class WhatsAppCampaignSpec:
    name: str = ""
    daily_budget: float = 10.0
    status: str = "PAUSED"
    whatsapp_number: str = ""
    page_id: str = ""
    countries: str = "PE"
    age_min: int = 18
    age_max: int = 65
    gender: str = "ALL"
    ad_name: str = ""
    primary_text: str = ""
    call_to_action: str = "WHATSAPP_MESSAGE"
    welcome_message: str = ""
    media_url: str = ""

    def country_codes(self) -> List[str]:
        return [c.strip().upper() for c in str(self.countries or "").split(",") if c.strip()]


def load_campaign_spec(path: str | Path) -> WhatsAppCampaignSpec:
    p = Path(path)
    if not p.exists():
        raise CampaignSpecError(f"Campaign spec not found: {p}")
    with open(p, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise CampaignSpecError("Campaign spec must be a mapping.")

    known = {f.name for f in fields(WhatsAppCampaignSpec)}
    unknown = sorted(set(raw) - known)
    if unknown:
        raise CampaignSpecError(f"Unknown campaign spec keys: {', '.join(unknown)}")
    if isinstance(raw.get("countries"), list):
        raw["countries"] = ",".join(str(c) for c in raw["countries"])
    return WhatsAppCampaignSpec(**raw)


def _number(spec: WhatsAppCampaignSpec, attr: str, kind):
    value = getattr(spec, attr)
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise CampaignSpecError(f"{attr} must be a number, got {value!r}") from None


def validate_spec(spec: WhatsAppCampaignSpec) -> WhatsAppCampaignSpec:
    """Check required fields and value ranges; raises CampaignSpecError."""
    required = {
        "name": "campaign name",
        "page_id": "Facebook page id",
        "whatsapp_number": "WhatsApp number",
        "ad_name": "ad name",
        "primary_text": "primary text",
    }
    missing = [label for attr, label in required.items() if not str(getattr(spec, attr) or "").strip()]
    if missing:
        raise CampaignSpecError(f"Missing required fields: {', '.join(missing)}")

    codes = spec.country_codes()
    if not codes:
        raise CampaignSpecError("At least one country code is required (e.g. PE,CO,MX).")
    bad = [c for c in codes if not re.fullmatch(r"[A-Z]{2}", c)]
    if bad:
        raise CampaignSpecError(
            f"Country codes must be exactly 2 letters: {', '.join(bad)}"
        )

    if spec.status.upper() not in VALID_STATUSES:
        raise CampaignSpecError(f"status must be one of {sorted(VALID_STATUSES)}")
    if spec.gender.upper() not in VALID_GENDERS:
        raise CampaignSpecError(f"gender must be one of {sorted(VALID_GENDERS)}")
    budget = _number(spec, "daily_budget", float)
    age_min = _number(spec, "age_min", int)
    age_max = _number(spec, "age_max", int)
    if budget <= 0:
        raise CampaignSpecError("daily_budget must be > 0.")
    if not 13 <= age_min <= age_max <= 65:
        raise CampaignSpecError("Ages must satisfy 13 <= age_min <= age_max <= 65.")
    return spec


# ── payloads ──────────────────────────────────────────────────────────────────


def whatsapp_link(spec: WhatsAppCampaignSpec) -> str:
    number = re.sub(r"[+\s]", "", str(spec.whatsapp_number))
    welcome = spec.welcome_message or DEFAULT_WELCOME
    return f"https://wa.me/{number}?text={quote(welcome, safe='')}"


def campaign_params(spec: WhatsAppCampaignSpec) -> Dict:
    return {
        "name": spec.name,
        "objective": "OUTCOME_ENGAGEMENT",
        "status": spec.status.upper(),
        "special_ad_categories": [],
    }


def ad_set_params(spec: WhatsAppCampaignSpec, campaign_id: str) -> Dict:
    targeting: Dict = {
        "geo_locations": {"countries": spec.country_codes()},
        "age_min": int(spec.age_min),
        "age_max": int(spec.age_max),
    }
    gender = spec.gender.upper()
    if gender != "ALL":
        targeting["genders"] = [1] if gender == "MALE" else [2]

    return {
        "name": f"{spec.name} - AdSet",
        "campaign_id": campaign_id,
        "daily_budget": int(round(float(spec.daily_budget) * 100)),  # minor units
        "billing_event": "IMPRESSIONS",
        "optimization_goal": "CONVERSATIONS",
        "bid_strategy": "LOWEST_COST_WITHOUT_CAP",
        "targeting": targeting,
        "status": spec.status.upper(),
        "promoted_object": {"page_id": str(spec.page_id)},
    }


def creative_params(spec: WhatsAppCampaignSpec) -> Dict:
    link = whatsapp_link(spec)
    link_data: Dict = {
        "message": spec.primary_text,
        "link": link,
        "call_to_action": {"type": spec.call_to_action, "value": {"link": link}},
    }
    media = str(spec.media_url or "").strip()
    if media:
        if ".mp4" in media or "video" in media:
            link_data["video_id"] = media
        else:
            link_data["picture"] = media

    return {
        "name": spec.ad_name,
        "object_story_spec": {"page_id": str(spec.page_id), "link_data": link_data},
        "degrees_of_freedom_spec": {
            "creative_features_spec": {
                "standard_enhancements": {"enroll_status": "OPT_OUT"}
            }
        },
    }


def ad_params(spec: WhatsAppCampaignSpec, adset_id: str, creative_id: str) -> Dict:
    return {
        "name": spec.ad_name,
        "adset_id": adset_id,
        "creative": {"creative_id": creative_id},
        "status": spec.status.upper(),
    }


def _created_id(result) -> str:
    try:
        return str(result["id"])
    except (KeyError, TypeError) as exc:
        raise ValueError(f"response has no id: {result!r}") from exc


def create_whatsapp_campaign(spec: WhatsAppCampaignSpec, ad_account) -> Dict[str, str]:
    """Create every object in order; returns their ids.

    A failing step raises :class:`CampaignCreationError`; ``created`` on the
    error lists what already exists in the account.
    """
    validate_spec(spec)
    created: Dict[str, str] = {}

    steps = [
        ("campaign", "campaign_id", lambda: ad_account.create_campaign(params=campaign_params(spec))),
        (
            "ad set",
            "adset_id",
            lambda: ad_account.create_ad_set(params=ad_set_params(spec, created["campaign_id"])),
        ),
        ("creative", "creative_id", lambda: ad_account.create_ad_creative(params=creative_params(spec))),
        (
            "ad",
            "ad_id",
            lambda: ad_account.create_ad(
                params=ad_params(spec, created["adset_id"], created["creative_id"])
            ),
        ),
    ]
    for step, key, call in steps:
        try:
            created[key] = _created_id(call())
        except Exception as exc:
            getter = getattr(exc, "api_error_message", None)
            message = (getter() if callable(getter) else None) or str(exc)
            raise CampaignCreationError(step, message, created) from exc
        logger.info("Created %s %s", step, created[key])

    return created
