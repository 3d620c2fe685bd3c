"""CLI smoke tests with click's CliRunner."""

from __future__ import annotations

from unittest.mock import patch

from click.testing import CliRunner

from adrecon.cli import cli
from adrecon.rates import ExchangeRateProvider


class FakeRateSource:
    def fetch_latest_rates(self):
        return {"USD": 1.0, "PEN": 3.7}

    def fetch_historical_rate(self, day, currency):
        return 3.65


def _provider(_cfg):
    return ExchangeRateProvider(source=FakeRateSource())


def test_rates_show(tmp_path):
    with patch("adrecon.cli.make_rate_provider", _provider):
        result = CliRunner().invoke(
            cli, ["rates", "show", "--currency", "PEN", "--config", str(tmp_path / "none.yaml")]
        )
    assert result.exit_code == 0, result.output
    assert "PEN: 3.7" in result.output


def test_rates_show_historical(tmp_path):
    with patch("adrecon.cli.make_rate_provider", _provider):
        result = CliRunner().invoke(
            cli,
            ["rates", "show", "--date", "2026-01-31", "--currency", "pen", "--config", str(tmp_path / "x.yaml")],
        )
    assert result.exit_code == 0, result.output
    assert "1 USD = 3.65 PEN on 2026-01-31" in result.output


def test_report_without_token_fails_cleanly(tmp_path):
    with patch("adrecon.config_meta_ads.load_dotenv"):
        with patch.dict("os.environ", {}, clear=True):
            result = CliRunner().invoke(cli, ["report", "--config", str(tmp_path / "none.yaml")])
    assert result.exit_code == 1
    assert "META_ACCESS_TOKEN" in result.output


def test_campaign_dry_run(tmp_path):
    spec = tmp_path / "c.yaml"
    spec.write_text(
        "name: Promo\npage_id: '1'\ncountries: PE\nwhatsapp_number: '+51 9'\n"
        "ad_name: A\nprimary_text: T\n",
        encoding="utf-8",
    )
    result = CliRunner().invoke(cli, ["campaign", "create", "--spec", str(spec), "--dry-run"])
    assert result.exit_code == 0, result.output
    assert "Spec valid: Promo (PE)" in result.output


def test_campaign_invalid_spec(tmp_path):
    spec = tmp_path / "c.yaml"
    spec.write_text("name: Promo\n", encoding="utf-8")
    result = CliRunner().invoke(cli, ["campaign", "create", "--spec", str(spec), "--dry-run"])
    assert result.exit_code == 1
    assert "Missing required fields" in result.output


def test_campaign_non_numeric_budget(tmp_path):
    spec = tmp_path / "c.yaml"
    spec.write_text(
        "name: Promo\npage_id: '1'\ncountries: PE\nwhatsapp_number: '+51 9'\n"
        "ad_name: A\nprimary_text: T\ndaily_budget: diez\n",
        encoding="utf-8",
    )
    result = CliRunner().invoke(cli, ["campaign", "create", "--spec", str(spec), "--dry-run"])
    assert result.exit_code == 1
    assert "daily_budget must be a number" in result.output


META_ENV = {"META_ACCESS_TOKEN": "tok", "META_AD_ACCOUNT_IDS": "act_1"}


def test_campaign_diagnose(tmp_path):
    rows = [
        {"account": "act_1", "campaign": "Amigurumi PERU", "status": "ACTIVE", "product": "KIT", "also_matches": []},
        {"account": "act_1", "campaign": "Zapatos", "status": "PAUSED", "product": "", "also_matches": []},
    ]
    with patch("adrecon.config_meta_ads.load_dotenv"), patch.dict("os.environ", META_ENV, clear=True):
        with patch("adrecon.cli.run_campaign_diagnostic", return_value=(rows, [])):
            result = CliRunner().invoke(
                cli, ["campaign", "diagnose", "--config", str(tmp_path / "none.yaml")]
            )
    assert result.exit_code == 0, result.output
    assert "Amigurumi PERU [ACTIVE] -> KIT" in result.output
    assert "2 campaigns checked, 1 unmatched" in result.output


def test_meta_ads_library_rejects_bad_country(tmp_path):
    with patch("adrecon.config_meta_ads.load_dotenv"), patch.dict("os.environ", META_ENV, clear=True):
        with patch("adrecon.cli.init_api"):
            result = CliRunner().invoke(
                cli,
                ["meta-ads", "library", "amigurumi", "--country", "PERU", "--config", str(tmp_path / "x.yaml")],
            )
    assert result.exit_code == 1
    assert "2-letter code" in result.output
