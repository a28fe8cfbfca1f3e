"""
Central configuration management using Pydantic settings.

Provides type-safe configuration with validation, environment variable
support (``.env``, ``__`` as nested delimiter, e.g. ``BACKTEST__INITIAL_CAPITAL``)
and YAML configuration file loading.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from quant_backtester.backtest.costs import create_commission_model, create_slippage_model
from quant_backtester.core.exceptions import ConfigParseError, InvalidConfigError, MissingConfigError
from quant_backtester.monitoring.logger import LogFormat, setup_logging

if TYPE_CHECKING:
    from quant_backtester.backtest.engine import BacktestConfig


# Base paths
CONFIG_DIR = Path(__file__).resolve().parent
DEFAULT_CONFIG_FILE = CONFIG_DIR / "backtest.yaml"


class BacktestSettings(BaseModel):
    """Backtest run configuration settings."""

    symbols: list[str] = Field(default_factory=list, description="Symbols to replay")
    start_date: datetime | None = Field(default=None, description="First bar included")
    end_date: datetime | None = Field(default=None, description="Last bar included")
    initial_capital: Decimal = Field(default=Decimal("100000"), gt=0, description="Starting cash")
    position_size_pct: Decimal = Field(default=Decimal("0.95"), gt=0, le=1, description="Cash fraction per entry")
    allow_pyramiding: bool = Field(default=False, description="Allow adding to open positions")
    min_confidence: float = Field(default=0.0, ge=0.0, le=1.0, description="Minimum signal confidence")
    close_positions_at_end: bool = Field(default=True, description="Liquidate at the last bar")
    history_window: int = Field(default=500, ge=1, description="Bars of history passed to the strategy")
    avg_volume_lookback_days: int = Field(default=20, ge=1, description="Average volume lookback")
    periods_per_year: int = Field(default=252, ge=1, description="Annualization factor")

    @field_validator("symbols")
    @classmethod
    def validate_symbols(cls, v: list[str]) -> list[str]:
        """Normalize symbols."""
        return [s.upper().strip() for s in v if s.strip()]


class ExecutionSettings(BaseModel):
    """Execution model configuration settings."""

    commission: dict[str, Any] = Field(default_factory=lambda: {"kind": "zero"}, description="Commission model")
    slippage: dict[str, Any] = Field(default_factory=lambda: {"kind": "none"}, description="Slippage model")
    fill_on_close: bool = Field(default=True, description="Fill market orders at the close")
    reject_partial_fills: bool = Field(default=True, description="Reject orders above the volume cap")
    max_order_size_pct: Decimal = Field(default=Decimal("0.10"), gt=0, le=1, description="Max fraction of bar volume")


class LoggingSettings(BaseModel):
    """Logging configuration settings."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format (json or text)")
    file_path: Path | None = Field(default=None, description="Log file path")
    max_bytes: int = Field(default=10 * 1024 * 1024, description="Rotate the log file at this size")
    backup_count: int = Field(default=5, description="Rotated files to keep")


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    app_name: str = "Quant Backtester"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = Field(default="development", description="Environment (development, research, ci)")

    backtest: BacktestSettings = Field(default_factory=BacktestSettings)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def load_yaml_config(cls, config_path: Path) -> dict[str, Any]:
        """Load configuration from a YAML file.

        Raises:
            ConfigParseError: If the file is not valid YAML or not a mapping.
        """
        if not config_path.exists():
            return {}
        try:
            with open(config_path, "r") as f:
                config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigParseError(f"Invalid YAML in {config_path}: {e}", config_file=str(config_path)) from e
        if not isinstance(config, dict):
            raise ConfigParseError(
                f"Expected a mapping at the top of {config_path}",
                config_file=str(config_path),
            )
        return config

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> "Settings":
        """Create settings from a YAML file layered over the environment.

        Values in the file win over environment variables and defaults.

        Raises:
            ConfigParseError: If the file cannot be parsed.
            InvalidConfigError: If a value fails validation.
        """
        path = Path(config_path) if config_path else DEFAULT_CONFIG_FILE
        config = cls.load_yaml_config(path)
        try:
            return cls(**config)
        except ValidationError as e:
            raise InvalidConfigError(
                f"Invalid configuration in {path}: {e}",
                config_key=".".join(str(p) for p in e.errors()[0]["loc"]) if e.errors() else None,
            ) from e

    def to_backtest_config(self) -> "BacktestConfig":
        """Build the engine configuration.

        Raises:
            MissingConfigError: If symbols or dates are not configured.
            InvalidConfigError: If a cost model or value is invalid.
        """
        from quant_backtester.backtest.engine import BacktestConfig

        bt = self.backtest
        if not bt.symbols:
            raise MissingConfigError("No symbols configured", config_key="backtest.symbols")
        if bt.start_date is None or bt.end_date is None:
            raise MissingConfigError("Start and end dates are required", config_key="backtest.start_date")

        return BacktestConfig(
            symbols=bt.symbols,
            start_date=bt.start_date,
            end_date=bt.end_date,
            initial_capital=bt.initial_capital,
            commission_model=create_commission_model(self.execution.commission),
            slippage_model=create_slippage_model(self.execution.slippage),
            fill_on_close=self.execution.fill_on_close,
            reject_partial_fills=self.execution.reject_partial_fills,
            max_order_size_pct=self.execution.max_order_size_pct,
            position_size_pct=bt.position_size_pct,
            allow_pyramiding=bt.allow_pyramiding,
            min_confidence=bt.min_confidence,
            close_positions_at_end=bt.close_positions_at_end,
            history_window=bt.history_window,
            avg_volume_lookback_days=bt.avg_volume_lookback_days,
            periods_per_year=bt.periods_per_year,
        )

    def configure_logging(self) -> None:
        """Install the configured log handlers on the root logger."""
        setup_logging(
            level=self.logging.level,
            log_format=LogFormat(self.logging.format.lower()),
            log_file=self.logging.file_path,
            max_bytes=self.logging.max_bytes,
            backup_count=self.logging.backup_count,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings loaded from the environment and ``backtest.yaml``."""
    return Settings.from_yaml(DEFAULT_CONFIG_FILE)
