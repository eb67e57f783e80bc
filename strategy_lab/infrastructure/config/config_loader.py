"""
Configuration Loader - Bridge Between JSON Config and AppSettings
================================================================
Loads configuration from a JSON file and maps it onto AppSettings.
"""

import json
import os
import sys
from pathlib import Path
from typing import Any

from .settings import AppSettings, LogLevel, StrategyDefaultsSettings


def _resolve_env_vars(data: Any) -> Any:
    """Replace "${VAR}" string values with the environment variable value."""
    if isinstance(data, dict):
        return {k: _resolve_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars(i) for i in data]
    elif isinstance(data, str) and data.startswith("${") and data.endswith("}"):
        return os.getenv(data[2:-1], "")
    return data


def load_app_settings_from_json(config_path: str = "config/config.json") -> AppSettings:
    """
    Load AppSettings from JSON configuration file.

    Sections that are absent keep their environment/default values.

    Args:
        config_path: Path to config.json file

    Returns:
        Configured AppSettings instance
    """
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        print(f"[WARNING] Failed to load JSON config from {config_path}: {e}", file=sys.stderr)
        print("[INFO] Using default AppSettings configuration", file=sys.stderr)
        return AppSettings()

    resolved_data = _resolve_env_vars(config_data)
    settings = AppSettings()

    # Map logging configuration
    if 'logging' in resolved_data:
        logging_config = resolved_data['logging']

        json_level = str(logging_config.get('level', 'INFO')).upper()
        if json_level in LogLevel.__members__:
            settings.logging.level = LogLevel[json_level]

        for key in ('file_enabled', 'console_enabled', 'structured_logging'):
            if key in logging_config:
                setattr(settings.logging, key, bool(logging_config[key]))

        # Use JSON file path if specified
        if 'file' in logging_config:
            log_path = Path(logging_config['file'])
            settings.logging.log_dir = str(log_path.parent)
            settings.logging.file_enabled = True
        elif 'log_dir' in logging_config:
            settings.logging.log_dir = logging_config['log_dir']

    # Map backtest configuration
    if 'backtest' in resolved_data:
        backtest_config = resolved_data['backtest']

        if 'max_workers' in backtest_config:
            settings.backtest.max_workers = max(1, int(backtest_config['max_workers']))
        if 'close_positions_on_finish' in backtest_config:
            settings.backtest.close_positions_on_finish = bool(backtest_config['close_positions_on_finish'])
        if 'var_alpha' in backtest_config:
            settings.backtest.var_alpha = float(backtest_config['var_alpha'])
        if 'monte_carlo_simulations' in backtest_config:
            settings.backtest.monte_carlo_simulations = max(1, int(backtest_config['monte_carlo_simulations']))

    # Map defaults for new strategies
    if 'strategy_defaults' in resolved_data:
        defaults = resolved_data['strategy_defaults']
        merged = settings.strategy_defaults.model_dump()
        merged.update({k: v for k, v in defaults.items() if k in merged})
        # Re-validate so bad timeframes or negative capital are rejected here
        settings.strategy_defaults = StrategyDefaultsSettings(**merged)

    return settings


def get_settings_from_working_directory() -> AppSettings:
    """
    Load settings from config.json relative to the current working directory.

    Returns:
        Configured AppSettings instance
    """
    possible_paths = [
        "config/config.json",
        "../config/config.json",
    ]

    for config_path in possible_paths:
        if Path(config_path).exists():
            return load_app_settings_from_json(config_path)

    return AppSettings()
