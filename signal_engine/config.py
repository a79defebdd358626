"""
Configuration for the signal engine.

Values come from (lowest to highest precedence) the dataclass defaults,
a YAML file, and environment variables (optionally loaded from .env).
"""

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from loguru import logger


class ConfigError(ValueError):
    """Raised for configuration values the engine cannot run with"""


STRATEGIES = ("aggressive", "conservative", "adaptive")


@dataclass
class ConnectionConfig:
    ws_url: str = "wss://ws-subscriptions-clob.polymarket.com/ws/market"
    heartbeat_interval: float = 10.0  # seconds between "PING" frames
    base_reconnect_delay: float = 1.0
    max_reconnect_delay: float = 30.0
    max_reconnect_attempts: int = 10
    close_timeout: float = 5.0


@dataclass
class ArbitrageConfig:
    enabled: bool = True
    min_combined_cost: float = 0.01  # below this is a pricing glitch
    max_combined_cost: float = 0.995
    min_roi_crypto: float = 0.25  # percent
    min_roi_default: float = 0.4  # percent
    roi_hysteresis: float = 0.1  # percentage points
    opportunity_ttl_seconds: float = 120.0


@dataclass
class FlashMoveConfig:
    enabled: bool = True

    # Detection thresholds
    velocity_threshold: float = 0.03
    momentum_threshold: float = 0.02
    volume_spike_multiplier: float = 3.0
    micro_tick_threshold: float = 0.01
    micro_window_seconds: float = 0.5
    window_seconds: float = 60.0
    history_size: int = 100
    volume_history_size: int = 20
    cooldown_seconds: float = 30.0
    confidence_full_samples: int = 6

    # Execution parameters
    base_trade_size: float = 50.0
    min_position_size: float = 10.0
    max_slippage_percent: float = 0.02
    stop_loss_percent: float = 0.10
    take_profit_percent: float = 0.20

    # Risk management
    max_concurrent_trades: int = 3
    preferred_strategy: str = "adaptive"
    enable_volatility_kill_switch: bool = True
    max_position_age_seconds: float = 300.0
    cleanup_interval_seconds: float = 60.0

    def validate(self) -> "FlashMoveConfig":
        if self.preferred_strategy not in STRATEGIES:
            raise ConfigError(f"Unknown strategy '{self.preferred_strategy}', expected one of {STRATEGIES}")
        if self.base_trade_size < self.min_position_size:
            raise ConfigError(
                f"base_trade_size ${self.base_trade_size:.2f} is below the "
                f"minimum position size ${self.min_position_size:.2f}"
            )
        if self.max_concurrent_trades < 1:
            raise ConfigError("max_concurrent_trades must be at least 1")
        if self.velocity_threshold <= 0:
            raise ConfigError("velocity_threshold must be positive")
        return self


FLASH_MOVE_PRESETS = {
    "default": FlashMoveConfig(),
    "conservative": FlashMoveConfig(
        velocity_threshold=0.05,
        momentum_threshold=0.03,
        volume_spike_multiplier=4.0,
        base_trade_size=25.0,
        max_slippage_percent=0.01,
        stop_loss_percent=0.05,
        take_profit_percent=0.15,
        max_concurrent_trades=1,
        preferred_strategy="conservative",
    ),
    "aggressive": FlashMoveConfig(
        velocity_threshold=0.02,
        momentum_threshold=0.015,
        volume_spike_multiplier=2.0,
        base_trade_size=100.0,
        max_slippage_percent=0.03,
        stop_loss_percent=0.15,
        take_profit_percent=0.30,
        max_concurrent_trades=5,
        preferred_strategy="aggressive",
    ),
}


def flash_preset(name: str) -> FlashMoveConfig:
    """Return a fresh copy of a named preset"""
    if name not in FLASH_MOVE_PRESETS:
        raise ConfigError(f"Unknown flash preset '{name}', expected one of {sorted(FLASH_MOVE_PRESETS)}")
    return replace(FLASH_MOVE_PRESETS[name])


@dataclass
class PollerConfig:
    enabled: bool = True
    clob_url: str = "https://clob.polymarket.com"
    interval_seconds: float = 5.0
    batch_size: int = 20
    batch_delay: float = 0.25
    request_timeout: float = 10.0


@dataclass
class ExecutionConfig:
    live_trading: bool = False  # paper executor unless explicitly enabled
    private_key: Optional[str] = None
    funder: Optional[str] = None
    max_order_usd: float = 100.0


@dataclass
class DatabaseConfig:
    enabled: bool = True
    path: str = "signal_engine.db"


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class AppConfig:
    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    arbitrage: ArbitrageConfig = field(default_factory=ArbitrageConfig)
    flash: FlashMoveConfig = field(default_factory=FlashMoveConfig)
    poller: PollerConfig = field(default_factory=PollerConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "AppConfig":
        data = data or {}

        flash_data = dict(data.get("flash") or {})
        base_flash = flash_preset(flash_data.pop("preset", "default"))

        return cls(
            connection=_build(ConnectionConfig, data.get("connection")),
            arbitrage=_build(ArbitrageConfig, data.get("arbitrage")),
            flash=_build(FlashMoveConfig, flash_data, base=base_flash).validate(),
            poller=_build(PollerConfig, data.get("poller")),
            execution=_build(ExecutionConfig, data.get("execution")),
            database=_build(DatabaseConfig, data.get("database")),
            logging=_build(LoggingConfig, data.get("logging")),
        )


def _build(cls, section: Optional[dict], base=None):
    """Instantiate a config dataclass from a YAML section, rejecting unknown keys"""
    section = section or {}
    known = {f.name for f in fields(cls)}
    unknown = set(section) - known
    if unknown:
        raise ConfigError(f"Unknown {cls.__name__} keys: {', '.join(sorted(unknown))}")
    if base is not None:
        return replace(base, **section)
    return cls(**section)


def load_config(config_path: str = "config.yaml") -> AppConfig:
    """Load configuration from YAML and apply environment overrides"""
    load_dotenv()

    raw: dict = {}
    config_file = Path(config_path)
    if config_file.exists():
        with open(config_file) as f:
            raw = yaml.safe_load(f) or {}
    else:
        logger.warning(f"Config file not found: {config_path}, using defaults")

    raw = apply_env_overrides(raw)
    return AppConfig.from_dict(raw)


def apply_env_overrides(raw: dict) -> dict:
    """Apply environment variable overrides to the raw config dict"""
    raw = dict(raw)
    execution = dict(raw.get("execution") or {})
    flash = dict(raw.get("flash") or {})
    log = dict(raw.get("logging") or {})

    if os.getenv("PRIVATE_KEY"):
        execution["private_key"] = os.getenv("PRIVATE_KEY")
    if os.getenv("FUNDER_ADDRESS"):
        execution["funder"] = os.getenv("FUNDER_ADDRESS")
    if os.getenv("LIVE_TRADING"):
        execution["live_trading"] = os.getenv("LIVE_TRADING", "").lower() in ("1", "true", "yes")

    if os.getenv("FLASH_PRESET"):
        flash["preset"] = os.getenv("FLASH_PRESET")
    if os.getenv("FLASH_BASE_TRADE_SIZE"):
        try:
            flash["base_trade_size"] = float(os.getenv("FLASH_BASE_TRADE_SIZE"))
        except ValueError:
            raise ConfigError(f"FLASH_BASE_TRADE_SIZE is not a number: {os.getenv('FLASH_BASE_TRADE_SIZE')!r}")

    if os.getenv("LOG_LEVEL"):
        log["level"] = os.getenv("LOG_LEVEL")

    raw["execution"] = execution
    raw["flash"] = flash
    raw["logging"] = log
    return raw
