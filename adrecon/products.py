"""Ordered product rules: map a campaign name to a configured product key."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from adrecon.normalize import normalize_text


@dataclass(frozen=True)
class ProductRule:
    key: str
    keywords: List[str] = field(default_factory=list)
    country: str = ""

    def __post_init__(self) -> None:
        # frozen: normalize through object.__setattr__
        object.__setattr__(self, "key", normalize_text(self.key))
        object.__setattr__(
            self, "keywords", [k for k in (normalize_text(k) for k in self.keywords) if k]
        )
        object.__setattr__(self, "country", normalize_text(self.country))

    def matches(self, campaign_name: str) -> bool:
        name = normalize_text(campaign_name)
        if not name:
            return False
        if self.country and self.country not in name:
            return False
        return any(kw and kw in name for kw in self.keywords)


def classify_campaign(
    campaign_name: str, rules: Sequence[ProductRule]
) -> Optional[str]:
    """Return the key of the first rule matching *campaign_name*, else None.

    Rules are evaluated in list order; an earlier rule always wins over a
    later one that would also match.
    """
    for rule in rules:
        if rule.matches(campaign_name):
            return rule.key
    return None


def diagnose_campaigns(
    campaign_names: Sequence[str], rules: Sequence[ProductRule]
) -> List[Dict[str, Any]]:
    """Show which product rules match each campaign name.

    ``product`` is the rule that wins (first match); ``also_matches`` lists
    later rules that would match too and are therefore shadowed.
    """
    out: List[Dict[str, Any]] = []
    for name in campaign_names:
        keys = [rule.key for rule in rules if rule.matches(name)]
        out.append(
            {
                "campaign": name,
                "product": keys[0] if keys else "",
                "also_matches": keys[1:],
            }
        )
    return out


def _make_rule(key: Any, body: Dict[str, Any]) -> ProductRule:
    keywords = body.get("keywords", body.get("palabrasClave", [])) or []
    if isinstance(keywords, str):
        keywords = keywords.split(",")
    country = body.get("country", body.get("pais", "")) or ""
    return ProductRule(key=str(key or ""), keywords=list(keywords), country=str(country))


def load_product_rules(raw: Any) -> List[ProductRule]:
    """Build rules from config.

    Accepts either a list of ``{key, keywords, country}`` dicts or a mapping
    ``{key: {keywords, country}}``; mapping order is kept as rule order.
    """
    if not raw:
        return []
    if isinstance(raw, dict):
        return [_make_rule(k, v or {}) for k, v in raw.items()]
    rules: List[ProductRule] = []
    for item in raw:
        if isinstance(item, ProductRule):
            rules.append(item)
            continue
        rules.append(_make_rule(item.get("key", ""), item))
    return [r for r in rules if r.key]
