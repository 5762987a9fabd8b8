import pytest
from pydantic import ValidationError

from stocker.config import DashboardConfig, DefaultsConfig, HotkeyConfig, load_config


def test_defaults():
    config = DashboardConfig()
    assert config.refresh_rates.tick_rate_ms == 100
    assert config.refresh_rates.frame_rate_interval_ms == 1000
    assert config.hotkeys.stock_symbol == "s"
    assert config.defaults.symbol == "TSLA"
    assert config.defaults.indicator is None


def test_load_config_from_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "refresh_rates:\n"
        "  tick_rate_ms: 50\n"
        "hotkeys:\n"
        "  time_frame: f\n"
        "defaults:\n"
        "  symbol: ' msft '\n"
        "  indicator: EMA(20)\n"
    )
    config = load_config(path)
    assert config.refresh_rates.tick_rate_ms == 50
    assert config.refresh_rates.fetch_workers == 2
    assert config.hotkeys.time_frame == "f"
    assert config.hotkeys.indicator == "i"
    assert config.defaults.symbol == "MSFT"
    assert config.defaults.indicator == "EMA(20)"


def test_missing_default_config_uses_defaults(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    assert load_config() == DashboardConfig()


def test_default_config_path_is_used_when_present(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "config.yaml").write_text("defaults:\n  time_frame: 1Y\n")
    assert load_config().defaults.time_frame == "1Y"


def test_empty_yaml_is_default(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_config(path) == DashboardConfig()


def test_yaml_must_be_a_mapping(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ValueError):
        load_config(path)


def test_hotkeys_must_be_distinct():
    with pytest.raises(ValidationError):
        HotkeyConfig(stock_symbol="t")


def test_hotkeys_cannot_shadow_main_view_keys():
    with pytest.raises(ValidationError):
        HotkeyConfig(indicator="q")


def test_invalid_values_fail_fast():
    with pytest.raises(ValidationError):
        DefaultsConfig(symbol="  ")
    with pytest.raises(ValidationError):
        DashboardConfig(refresh_rates={"tick_rate_ms": 0})
