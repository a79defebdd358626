"""Tests for configuration loading, presets and validation."""

import pytest

from signal_engine.config import (
    AppConfig,
    ConfigError,
    FLASH_MOVE_PRESETS,
    FlashMoveConfig,
    apply_env_overrides,
    flash_preset,
    load_config,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("PRIVATE_KEY", "FUNDER_ADDRESS", "LIVE_TRADING", "FLASH_PRESET",
                 "FLASH_BASE_TRADE_SIZE", "LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_defaults(self):
        config = AppConfig.from_dict({})

        assert config.connection.max_reconnect_attempts == 10
        assert config.arbitrage.max_combined_cost == 0.995
        assert config.flash.velocity_threshold == 0.03
        assert config.execution.live_trading is False

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(str(tmp_path / "nope.yaml"))
        assert config.flash.base_trade_size == 50.0


class TestPresets:
    def test_preset_is_a_copy(self):
        preset = flash_preset("aggressive")
        preset.base_trade_size = 1.0
        assert FLASH_MOVE_PRESETS["aggressive"].base_trade_size == 100.0

    def test_unknown_preset(self):
        with pytest.raises(ConfigError):
            flash_preset("yolo")

    def test_section_overrides_preset(self):
        config = AppConfig.from_dict({"flash": {"preset": "conservative", "base_trade_size": 30.0}})

        assert config.flash.preferred_strategy == "conservative"
        assert config.flash.max_concurrent_trades == 1
        assert config.flash.base_trade_size == 30.0

    def test_all_presets_valid(self):
        for name in FLASH_MOVE_PRESETS:
            flash_preset(name).validate()


class TestValidation:
    def test_unknown_key_rejected(self):
        with pytest.raises(ConfigError, match="velocity_treshold"):
            AppConfig.from_dict({"flash": {"velocity_treshold": 0.1}})

    def test_base_size_below_floor(self):
        with pytest.raises(ConfigError, match="below the minimum"):
            FlashMoveConfig(base_trade_size=5.0, min_position_size=10.0).validate()

    def test_unknown_strategy(self):
        with pytest.raises(ConfigError):
            FlashMoveConfig(preferred_strategy="reckless").validate()

    def test_concurrency_at_least_one(self):
        with pytest.raises(ConfigError):
            FlashMoveConfig(max_concurrent_trades=0).validate()


class TestLoadConfig:
    def test_yaml_sections(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "connection:\n"
            "  max_reconnect_attempts: 4\n"
            "arbitrage:\n"
            "  min_roi_default: 1.0\n"
            "database:\n"
            "  path: /tmp/test.db\n"
        )

        config = load_config(str(path))

        assert config.connection.max_reconnect_attempts == 4
        assert config.arbitrage.min_roi_default == 1.0
        assert config.database.path == "/tmp/test.db"

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(str(path)).flash.enabled is True


class TestEnvOverrides:
    def test_credentials_and_mode(self, monkeypatch):
        monkeypatch.setenv("PRIVATE_KEY", "0xabc")
        monkeypatch.setenv("FUNDER_ADDRESS", "0xfunder")
        monkeypatch.setenv("LIVE_TRADING", "true")

        raw = apply_env_overrides({"execution": {"max_order_usd": 25}})

        assert raw["execution"] == {
            "max_order_usd": 25,
            "private_key": "0xabc",
            "funder": "0xfunder",
            "live_trading": True,
        }

    def test_flash_overrides(self, monkeypatch):
        monkeypatch.setenv("FLASH_PRESET", "aggressive")
        monkeypatch.setenv("FLASH_BASE_TRADE_SIZE", "75")

        config = AppConfig.from_dict(apply_env_overrides({}))

        assert config.flash.preferred_strategy == "aggressive"
        assert config.flash.base_trade_size == 75.0

    def test_bad_number(self, monkeypatch):
        monkeypatch.setenv("FLASH_BASE_TRADE_SIZE", "lots")
        with pytest.raises(ConfigError):
            apply_env_overrides({})

    def test_input_not_mutated(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        raw = {"logging": {"level": "INFO"}}
        apply_env_overrides(raw)
        assert raw == {"logging": {"level": "INFO"}}
