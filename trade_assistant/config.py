"""
Pydantic-based configuration system for trade-assistant.

Loads configuration from YAML files with environment variable overrides.
Usage:
    from trade_assistant.config import load_config
    config = load_config("config/local.yaml")
"""

import os
from pathlib import Path
from typing import Any, Dict, List, Literal

import yaml
from pydantic import BaseModel, Field

# ── Sub-configs ─────────────────────────────────────────────────────────────


class ExchangeConfig(BaseModel):
    """Exchange REST access (Binance spot API)."""

    network: Literal["testnet", "mainnet"] = Field(
        default="testnet", description="Which Binance environment to talk to"
    )
    testnet_url: str = "https://testnet.binance.vision"
    mainnet_url: str = "https://api.binance.com"
    requests_per_minute: int = Field(default=1200, description="Sliding-window request budget")
    max_retries: int = 3
    retry_base_delay: float = Field(default=1.0, description="Seconds, doubled per attempt")
    trade_fetch_limit: int = Field(default=500, description="Fills fetched per symbol per sync")
    recv_window: int = Field(default=10000, description="Signed request validity in ms")

    @property
    def base_url(self) -> str:
        return self.testnet_url if self.network == "testnet" else self.mainnet_url


class DatabaseConfig(BaseModel):
    """SQLite journal location."""

    path: str = "data/trades.db"


class AIConfig(BaseModel):
    """Generative text service used for trade reviews."""

    model: str = "gemini-1.5-flash"
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    max_tokens: int = 2048
    default_temperature: float = 0.7
    timeout: float = 60.0


class SecurityConfig(BaseModel):
    """Credential encryption settings."""

    min_secret_length: int = Field(
        default=16, description="Minimum length of ENCRYPTION_SECRET"
    )


class RiskConfig(BaseModel):
    """Default risk limits created for new users."""

    default_max_daily_loss: float = Field(default=100.0, description="USDT")
    default_max_weekly_loss: float = Field(default=500.0, description="USDT")
    default_max_daily_trades: int = 10
    default_max_consecutive_losses: int = 3
    warning_ratio: float = Field(
        default=0.8, description="Warn when a rule reaches this fraction of its limit"
    )
    consecutive_lookback: int = Field(
        default=20, description="Closed trades inspected for a losing streak"
    )


class JournalConfig(BaseModel):
    """Trade note limits and the pick-lists offered for annotation."""

    max_note_length: int = 2000
    max_tags_per_trade: int = 10
    available_setups: List[str] = [
        "Breakout",
        "Support/Resistance",
        "Trend Following",
        "Mean Reversion",
        "Scalp",
        "Swing",
        "Other",
    ]
    available_timeframes: List[str] = ["1m", "5m", "15m", "30m", "1h", "4h", "1D"]
    available_error_types: List[str] = [
        "FOMO",
        "Revenge Trading",
        "No Stop Loss",
        "Too Large Position",
        "Against Trend",
        "Poor Entry",
        "Poor Exit",
        "Emotional",
        "None",
    ]


class SyncConfig(BaseModel):
    """Manual and automatic trade sync."""

    default_symbols: List[str] = ["BTCUSDT", "ETHUSDT"]
    auto_sync_fallback_symbols: List[str] = ["BTCUSDT", "ETHUSDT", "BNBUSDT"]
    default_interval_minutes: int = 15
    recent_symbol_limit: int = Field(
        default=20, description="Recent trades scanned for auto-sync symbols"
    )
    scheduler_poll_seconds: int = 60


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    file: str = "logs/trade_assistant.log"
    rotation: str = "10 MB"
    retention: str = "30 days"


# ── Root Config ─────────────────────────────────────────────────────────────


class AppConfig(BaseModel):
    """Root configuration for trade-assistant."""

    exchange: ExchangeConfig = ExchangeConfig()
    database: DatabaseConfig = DatabaseConfig()
    ai: AIConfig = AIConfig()
    security: SecurityConfig = SecurityConfig()
    risk: RiskConfig = RiskConfig()
    journal: JournalConfig = JournalConfig()
    sync: SyncConfig = SyncConfig()
    logging: LoggingConfig = LoggingConfig()


# ── Config Loading ──────────────────────────────────────────────────────────

# Environment variable -> (section, key)
ENV_OVERRIDES: Dict[str, tuple[str, str]] = {
    "BINANCE_NETWORK": ("exchange", "network"),
    "TRADE_ASSISTANT_DB": ("database", "path"),
    "GEMINI_MODEL": ("ai", "model"),
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into base dict."""
    merged = base.copy()
    for key, value in override.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _apply_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay the environment variables listed in ENV_OVERRIDES."""
    overrides: Dict[str, Any] = {}
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            overrides.setdefault(section, {})[key] = value
    return _deep_merge(data, overrides)


def load_config(
    config_path: str | Path | None = None,
    default_path: str | Path | None = None,
) -> AppConfig:
    """Load configuration from YAML, merging with defaults.

    Args:
        config_path: Path to a deployment-specific config. Optional.
        default_path: Path to default config. Auto-detected if None.

    Returns:
        Fully resolved AppConfig instance.
    """
    # Auto-detect default config location
    if default_path is None:
        if config_path is not None:
            default_path = Path(config_path).parent / "default.yaml"
        else:
            default_path = Path("config") / "default.yaml"

    base_data: Dict[str, Any] = {}
    if Path(default_path).exists():
        with open(default_path, "r", encoding="utf-8") as f:
            base_data = yaml.safe_load(f) or {}

    override_data: Dict[str, Any] = {}
    if config_path is not None and Path(config_path).exists():
        with open(config_path, "r", encoding="utf-8") as f:
            override_data = yaml.safe_load(f) or {}

    # Deployment config overrides defaults, environment overrides both
    merged = _apply_env_overrides(_deep_merge(base_data, override_data))

    return AppConfig(**merged)
