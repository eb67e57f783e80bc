"""
Unified Configuration Settings - Single Source of Truth
=======================
All application configuration using Pydantic Settings.
"""

from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from enum import Enum


class LogLevel(str, Enum):
    """Logging levels"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


# Bars per year for each supported timeframe (24/7 markets)
PERIODS_PER_YEAR = {
    "1m": 525600,
    "5m": 105120,
    "15m": 35040,
    "30m": 17520,
    "1h": 8760,
    "4h": 2190,
    "1d": 365,
    "1w": 52,
}


# === LOGGING CONFIGURATION ===

class LoggingSettings(BaseSettings):
    """Logging configuration"""
    level: LogLevel = Field(default=LogLevel.INFO)
    file_enabled: bool = Field(default=False)
    console_enabled: bool = Field(default=True)
    structured_logging: bool = Field(default=True)
    log_dir: str = Field(default="logs")
    max_file_size_mb: int = Field(default=100)
    backup_count: int = Field(default=5)

    class Config:
        env_prefix = "LOG_"


# === BACKTEST CONFIGURATION ===

class BacktestSettings(BaseSettings):
    """Backtest configuration"""
    max_workers: int = Field(default=4, ge=1, description="Worker threads for parameter sweeps")
    close_positions_on_finish: bool = Field(
        default=True,
        description="Liquidate any open position at the last close so it counts as a trade"
    )
    var_alpha: float = Field(default=0.05, gt=0, lt=0.5, description="Tail level for VaR / CVaR")
    monte_carlo_simulations: int = Field(default=1000, ge=1, description="Resampled trade sequences per simulation")
    monte_carlo_confidence: float = Field(default=0.95, gt=0, lt=1)

    class Config:
        env_prefix = "BACKTEST_"


# === STRATEGY DEFAULTS ===

class StrategyDefaultsSettings(BaseSettings):
    """Global parameters given to newly created strategies"""
    symbol: str = Field(default="BTCUSDT", min_length=1)
    timeframe: str = Field(default="1h")
    initial_capital: float = Field(default=10000.0, gt=0)
    commission: float = Field(default=0.001, ge=0, le=0.1)
    slippage: float = Field(default=0.0, ge=0, le=0.1)

    @field_validator('timeframe')
    @classmethod
    def validate_timeframe(cls, v):
        if v not in PERIODS_PER_YEAR:
            raise ValueError(f"Unsupported timeframe '{v}'. Expected one of: {list(PERIODS_PER_YEAR)}")
        return v

    class Config:
        env_prefix = "STRATEGY_"


class AppSettings(BaseSettings):
    """Main application settings - Single Source of Truth"""

    app_name: str = Field(default="Strategy Lab")
    version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)

    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    backtest: BacktestSettings = Field(default_factory=BacktestSettings)
    strategy_defaults: StrategyDefaultsSettings = Field(default_factory=StrategyDefaultsSettings)

    class Config:
        env_file = ".env"
        env_nested_delimiter = "__"  # Allows BACKTEST__MAX_WORKERS=8
        case_sensitive = False
        extra = "ignore"
