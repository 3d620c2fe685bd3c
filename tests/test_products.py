"""Tests for ordered product rules."""

from __future__ import annotations

from adrecon.products import (
    ProductRule,
    classify_campaign,
    diagnose_campaigns,
    load_product_rules,
)


def _rules():
    return load_product_rules(
        [
            {"key": "Kit Amigurumis", "keywords": ["amigurumi"], "country": "Perú"},
            {"key": "Crochet", "keywords": ["crochet", "amigurumi"]},
            {"key": "Bordado", "keywords": "bordado, punto cruz", "country": "Colombia"},
        ]
    )


class TestProductRule:
    def test_requires_country_and_keyword(self):
        rule = ProductRule(key="KIT", keywords=["AMIGURUMI"], country="PERU")
        assert rule.matches("Campaña Amigurumi - Perú")
        assert not rule.matches("Campaña Amigurumi - Chile")
        assert not rule.matches("Campaña Tejido - Perú")

    def test_no_country_means_any_country(self):
        rule = ProductRule(key="KIT", keywords=["AMIGURUMI"])
        assert rule.matches("amigurumi chile")

    def test_empty_name_never_matches(self):
        assert not ProductRule(key="K", keywords=["X"]).matches("")

    def test_fields_are_normalized_on_construction(self):
        rule = ProductRule(key="kit", keywords=["amigurumí", " "], country="perú")
        assert rule.key == "KIT"
        assert rule.keywords == ["AMIGURUMI"]
        assert rule.country == "PERU"
        assert rule.matches("Campaña Amigurumi - Perú")


class TestClassifyCampaign:
    def test_first_matching_rule_wins(self):
        rules = _rules()
        assert classify_campaign("AMIGURUMI PERU ENERO", rules) == "KIT AMIGURUMIS"
        # rule 1 needs PERU, so rule 2 picks it up
        assert classify_campaign("AMIGURUMI CHILE ENERO", rules) == "CROCHET"

    def test_order_matters(self):
        rules = list(reversed(_rules()))
        assert classify_campaign("AMIGURUMI PERU ENERO", rules) == "CROCHET"

    def test_no_match_returns_none(self):
        assert classify_campaign("ZAPATOS MEXICO", _rules()) is None

    def test_keyword_string_split(self):
        assert classify_campaign("Punto Cruz Colombia", _rules()) == "BORDADO"


def test_diagnose_campaigns_reports_winner_and_shadowed_rules():
    out = diagnose_campaigns(["AMIGURUMI PERU ENERO", "Zapatos Mexico"], _rules())
    assert out[0] == {
        "campaign": "AMIGURUMI PERU ENERO",
        "product": "KIT AMIGURUMIS",
        "also_matches": ["CROCHET"],
    }
    assert out[1]["product"] == ""
    assert out[1]["also_matches"] == []


class TestLoadProductRules:
    def test_mapping_keeps_order_and_legacy_keys(self):
        rules = load_product_rules(
            {
                "B": {"palabrasClave": ["beta"], "pais": "México"},
                "A": {"keywords": ["alpha"]},
            }
        )
        assert [r.key for r in rules] == ["B", "A"]
        assert rules[0].country == "MEXICO"
        assert rules[0].keywords == ["BETA"]

    def test_empty_keys_dropped(self):
        assert load_product_rules([{"key": "", "keywords": ["x"]}]) == []

    def test_none(self):
        assert load_product_rules(None) == []
