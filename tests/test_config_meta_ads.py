"""Tests for Meta Ads config validation."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from adrecon.config_meta_ads import MetaAdsConfigError, load_meta_ads_config


@pytest.fixture(autouse=True)
def _no_dotenv():
    with patch("adrecon.config_meta_ads.load_dotenv"):
        yield


def test_load_meta_ads_config_success():
    env = {
        "META_ACCESS_TOKEN": "tok",
        "META_AD_ACCOUNT_IDS": "act_123, act_456",
    }
    with patch.dict("os.environ", env, clear=True):
        cfg = load_meta_ads_config(accounts=["act_456", "act_789"], api_version="v22.0")
    assert cfg.ad_account_ids == ["act_123", "act_456", "act_789"]
    assert cfg.access_token == "tok"
    assert cfg.api_version == "v22.0"
    assert cfg.app_id is None


def test_missing_token_raises():
    with patch.dict("os.environ", {"META_AD_ACCOUNT_IDS": "act_1"}, clear=True):
        with pytest.raises(MetaAdsConfigError):
            load_meta_ads_config()


def test_no_accounts_raises():
    with patch.dict("os.environ", {"META_ACCESS_TOKEN": "tok"}, clear=True):
        with pytest.raises(MetaAdsConfigError):
            load_meta_ads_config()


def test_invalid_account_format_raises():
    env = {
        "META_ACCESS_TOKEN": "tok",
        "META_AD_ACCOUNT_IDS": "123",
    }
    with patch.dict("os.environ", env, clear=True):
        with pytest.raises(MetaAdsConfigError):
            load_meta_ads_config()
