from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

DEFAULT_CONFIG_PATH = Path("config.yaml")
# quit, pan backward, pan forward, reset
RESERVED_KEYS = frozenset("qhl0")


class RefreshConfig(BaseModel):
    """Configuration for all refresh rates and timing intervals"""
    tick_rate_ms: int = Field(default=100, ge=10, le=1000, description="Milliseconds between ticks")
    frame_rate_interval_ms: int = Field(default=1000, ge=100, description="Milliseconds between frame time reports")
    fetch_workers: int = Field(default=2, ge=1, le=8, description="Threads fetching market data")


class HotkeyConfig(BaseModel):
    """Keys toggling each overlay"""
    stock_symbol: str = Field(default="s", min_length=1, max_length=1)
    time_frame: str = Field(default="t", min_length=1, max_length=1)
    indicator: str = Field(default="i", min_length=1, max_length=1)

    @model_validator(mode="after")
    def check_distinct(self):
        keys = [self.stock_symbol, self.time_frame, self.indicator]
        if len(set(keys)) != len(keys):
            raise ValueError(f"hotkeys must be distinct, got {keys}")
        reserved = set(keys) & RESERVED_KEYS
        if reserved:
            raise ValueError(f"keys {sorted(reserved)} are reserved for the main view")
        return self


class DefaultsConfig(BaseModel):
    """Startup values used when the command line does not set them"""
    symbol: str = "TSLA"
    time_frame: str = "1M"
    indicator: Optional[str] = None

    @field_validator("symbol")
    @classmethod
    def check_symbol(cls, value: str) -> str:
        value = value.strip().upper()
        if not value:
            raise ValueError("symbol must not be empty")
        return value


class DashboardConfig(BaseModel):
    refresh_rates: RefreshConfig = Field(default_factory=RefreshConfig)
    hotkeys: HotkeyConfig = Field(default_factory=HotkeyConfig)
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)


def load_config(config_path: Optional[Union[str, Path]] = None) -> DashboardConfig:
    """Load config from a YAML file.

    Without an explicit path, `config.yaml` in the working directory is used if
    it exists, otherwise the built-in defaults.
    """
    if config_path is None:
        if not DEFAULT_CONFIG_PATH.exists():
            return DashboardConfig()
        config_path = DEFAULT_CONFIG_PATH

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}
    if not isinstance(config, dict):
        raise ValueError(f"{config_path} must contain a mapping")
    return DashboardConfig(**config)
