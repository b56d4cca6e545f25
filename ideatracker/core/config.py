"""YAML config loader with pydantic validation."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from dotenv import load_dotenv


# Load .env file
load_dotenv()


# ── Config Models ────────────────────────────────────────────────────────────


class StoreConfig(BaseModel):
    db_path: str = "data/ideas/ideas.db"


class ResolverConfig(BaseModel):
    """Outcome sweep scheduling and resolution policy."""

    enabled: bool = True
    interval_seconds: int = 300
    sweep_timeout_seconds: float = 240.0
    lease_ttl_seconds: float = 290.0
    max_quote_workers: int = 8
    # Expiry exit within this band of entry resolves as auto_breakeven.
    breakeven_band_pct: float = 0.5
    # Stop touches losing less than this resolve as auto_breakeven. 0 disables.
    stop_breakeven_threshold_pct: float = 0.0
    # How far past entry a quote may be and still count as a fill.
    entry_fill_tolerance_pct: float = 0.5
    # Age limit for ideas that carry no exit_by deadline.
    max_open_days: int = 7


class CalibrationConfig(BaseModel):
    bucket_width: int = 10
    calibrated_threshold: float = 10.0
    well_calibrated_max_error: float = 15.0
    needs_adjustment_max_error: float = 25.0
    # Expired ideas losing at least this much count as losses.
    expired_loss_threshold_pct: float = 3.0
    min_decisive_trades: int = 10


class IntelligenceConfig(BaseModel):
    min_symbol_trades: int = 5
    top_n: int = 10
    refresh_on_resolution: bool = True


class QuotesConfig(BaseModel):
    provider: str = "alpaca"
    feed: str = "iex"
    cache_ttl_seconds: float = 30.0
    max_retries: int = 3


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: str = "data/logs/ideatracker.log"
    json_format: bool = True


class AlpacaConfig(BaseModel):
    api_key: str = ""
    secret_key: str = ""

    @classmethod
    def from_env(cls) -> AlpacaConfig:
        return cls(
            api_key=os.getenv("ALPACA_API_KEY", ""),
            secret_key=os.getenv("ALPACA_SECRET_KEY", ""),
        )


class Settings(BaseModel):
    """Top-level application settings."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    resolver: ResolverConfig = Field(default_factory=ResolverConfig)
    calibration: CalibrationConfig = Field(default_factory=CalibrationConfig)
    intelligence: IntelligenceConfig = Field(default_factory=IntelligenceConfig)
    quotes: QuotesConfig = Field(default_factory=QuotesConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    alpaca: AlpacaConfig = Field(default_factory=AlpacaConfig)


# ── Loader ───────────────────────────────────────────────────────────────────


def load_yaml(path: Path | str) -> dict[str, Any]:
    """Load a YAML file and return the parsed dict."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path, "r") as f:
        data = yaml.safe_load(f)
    return data or {}


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML, overlay Alpaca creds from env."""
    if config_path is None:
        config_path = os.getenv("IDEATRACKER_CONFIG", "config/settings.yaml")

    path = Path(config_path)
    if path.exists():
        raw = load_yaml(path)
    else:
        raw = {}

    settings = Settings(**raw)

    # Always overlay Alpaca creds from environment
    settings.alpaca = AlpacaConfig.from_env()

    return settings
