from pathlib import Path

import pytest

from config.sync_config import (
    CANONICAL_PROVIDER_ORDER,
    build_config,
    get_config,
    reload_config,
    set_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("CACHE_EXPIRY_HOURS", "FETCH_TIMEOUT_SECONDS", "SYNC_LOG_LEVEL",
                 "PROVIDER_API_BASE_URL", "SOURCE_SYNC_CONFIG"):
        monkeypatch.delenv(name, raising=False)
    yield
    set_config(None)


def test_defaults_without_yaml():
    config = build_config()
    assert config.canonical_order == CANONICAL_PROVIDER_ORDER
    assert config.cache_expiry_hours == 24
    assert config.get_provider("daft").cache_table == "daft_properties"
    assert config.get_provider("myhome").created_date_fields == ["CreatedOnDate"]
    assert config.get_provider("myhome").modified_date_fields == ["ModifiedOnDate"]
    assert config.is_image_field("Pictures")
    assert config.is_date_field("Last Modified")
    assert config.is_long_text_field("Full Description")
    assert not config.is_long_text_field("Price")


def test_provider_tokens_and_aliases():
    config = build_config()
    assert config.provider_for_token(" Acquaint ") == "acquaint_crm"
    assert config.provider_for_token("acquaint_crm") == "acquaint_crm"
    assert config.provider_for_token("4pm") == "propertydrive"
    assert config.provider_for_token("zoopla") is None
    assert config.provider_for_token("") is None


def test_unknown_provider_raises():
    with pytest.raises(ValueError):
        build_config().get_provider("zoopla")


def test_yaml_sections_override_defaults():
    config = build_config({
        "cache": {"expiry_hours": 6},
        "providers": {"daft": {"display_name": "Daft.ie", "aliases": ["DAFT", "daftie"]}},
        "reconciliation": {"image_fields": ["Photos"]},
        "rate_limiting": {"pause_every_properties": 10},
    })
    assert config.cache_expiry_hours == 6
    assert config.get_provider("daft").display_name == "Daft.ie"
    assert config.provider_for_token("daftie") == "daft"
    assert config.is_image_field("Photos")
    assert not config.is_image_field("Pictures")
    assert config.pause_every_properties == 10


def test_invalid_canonical_order_is_ignored():
    config = build_config({"reconciliation": {"canonical_order": ["daft", "zoopla"]}})
    assert config.canonical_order == CANONICAL_PROVIDER_ORDER

    config = build_config({"reconciliation": {"canonical_order": ["daft", "myhome", "acquaint_crm", "propertydrive"]}})
    assert config.canonical_order == ["daft", "myhome", "acquaint_crm", "propertydrive"]


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("CACHE_EXPIRY_HOURS", "12")
    monkeypatch.setenv("FETCH_TIMEOUT_SECONDS", "5")
    monkeypatch.setenv("PROVIDER_API_BASE_URL", "https://proxy.example.test/api/")
    monkeypatch.setenv("SYNC_LOG_LEVEL", "DEBUG")

    config = build_config({"cache": {"expiry_hours": 48}})
    assert config.cache_expiry_hours == 12
    assert config.fetch_timeout_seconds == 5
    assert config.api_base_url == "https://proxy.example.test/api"
    assert config.log_level == "DEBUG"


def test_bundled_yaml_loads():
    config = reload_config()
    assert config is get_config()
    assert config.canonical_order == CANONICAL_PROVIDER_ORDER
    assert "{prefix}" in config.acquaint_feed_url


def test_config_path_from_environment(monkeypatch, tmp_path):
    path = tmp_path / "custom.yaml"
    path.write_text("cache:\n  expiry_hours: 2\nschedule:\n  full_sync_frequency_hours: 6\n")
    monkeypatch.setenv("SOURCE_SYNC_CONFIG", str(path))

    config = reload_config()
    assert config.cache_expiry_hours == 2
    assert config.full_sync_frequency_hours == 6


def test_missing_config_file_uses_defaults(monkeypatch, tmp_path):
    monkeypatch.setenv("SOURCE_SYNC_CONFIG", str(Path(tmp_path) / "absent.yaml"))
    assert reload_config().cache_expiry_hours == 24
