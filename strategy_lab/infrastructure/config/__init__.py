"""
Infrastructure Configuration - Unified Configuration System
==========================================================
Single source of truth for all application configuration.

- AppSettings is the single source of truth
- Settings are created once by the caller and passed down explicitly
"""

from .settings import (
    AppSettings, LoggingSettings, BacktestSettings, StrategyDefaultsSettings,
    LogLevel, PERIODS_PER_YEAR
)
from .config_loader import load_app_settings_from_json, get_settings_from_working_directory

__all__ = [
    'AppSettings', 'LoggingSettings', 'BacktestSettings', 'StrategyDefaultsSettings',
    'LogLevel', 'PERIODS_PER_YEAR',
    'load_app_settings_from_json', 'get_settings_from_working_directory'
]
