import json
import logging
import math
import os
import sys
import threading
from logging.handlers import RotatingFileHandler
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional

# One StructuredLogger per name; logging.getLogger() is a singleton, so a second
# instance would stack a second set of handlers on it.
_logger_cache: Dict[str, 'StructuredLogger'] = {}
_cache_lock = threading.RLock()


class CustomJsonEncoder(json.JSONEncoder):
    """JSON encoder for Decimal, Enum and datetime."""
    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        if hasattr(obj, 'name') and hasattr(obj, 'value'):  # Enum-like
            return obj.value
        if isinstance(obj, type):
            return obj.__name__
        return super().default(obj)


class JsonFormatter(logging.Formatter):
    """Formats log records into a JSON string. Non-finite floats become strings ("inf", "nan")."""

    def _sanitize_value(self, v: Any) -> Any:
        if isinstance(v, dict):
            return self._sanitize_dict(v)
        if isinstance(v, (list, tuple)):
            return [self._sanitize_value(item) for item in v]
        if isinstance(v, float) and not math.isfinite(v):
            return str(v)
        return v

    def _sanitize_dict(self, d: dict) -> dict:
        return {str(k): self._sanitize_value(v) for k, v in d.items()}

    def format(self, record: logging.LogRecord) -> str:
        if isinstance(record.msg, dict):
            message_dict = self._sanitize_dict(record.msg)
        else:
            message_dict = {"message": record.getMessage()}

        log_object = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "funcName": record.funcName,
            "lineno": record.lineno,
            **message_dict,
        }
        if record.exc_info:
            log_object["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_object, cls=CustomJsonEncoder)


class StructuredLogger:
    """
    Thin wrapper over logging.Logger that emits (event_type, data) pairs.

    Usage:
        logger = get_logger(__name__)
        logger.info("backtest.completed", {"total_trades": 12})
    """

    def __init__(self, name: str, config: Any, filename: Optional[str] = None):
        self.logger = logging.getLogger(name)
        level = getattr(config.level, 'value', config.level)
        self.logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
        self.logger.propagate = False

        console_enabled = getattr(config, 'console_enabled', True)
        file_enabled = getattr(config, 'file_enabled', False)
        structured = getattr(config, 'structured_logging', True)
        log_dir = getattr(config, 'log_dir', 'logs')

        if filename:
            log_file = str(Path(log_dir) / filename)
        elif file_enabled:
            log_file = str(Path(log_dir) / f"{name}.jsonl")
        else:
            log_file = None

        self._setup_console_handler(console_enabled, structured)
        self._setup_file_handler(
            log_file,
            getattr(config, 'max_file_size_mb', 100),
            getattr(config, 'backup_count', 5),
            structured,
        )

    @staticmethod
    def _formatter(structured: bool) -> logging.Formatter:
        if structured:
            return JsonFormatter()
        return logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    def _setup_console_handler(self, enabled: bool, structured: bool):
        """Attach a stdout handler unless one is already attached."""
        if not enabled:
            return

        for existing_handler in self.logger.handlers:
            if isinstance(existing_handler, logging.StreamHandler) and \
                    getattr(existing_handler, 'stream', None) is sys.stdout:
                return

        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(self._formatter(structured))
        self.logger.addHandler(handler)

    def _setup_file_handler(self, log_file: Optional[str], max_size_mb: int,
                            backup_count: int, structured: bool):
        """Attach a rotating file handler unless one for the same file exists."""
        if not log_file:
            return

        log_file_normalized = os.path.abspath(log_file)
        for existing_handler in self.logger.handlers:
            if isinstance(existing_handler, RotatingFileHandler) and \
                    os.path.abspath(existing_handler.baseFilename) == log_file_normalized:
                return

        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        handler = RotatingFileHandler(
            log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
            encoding='utf-8'
        )
        handler.setFormatter(self._formatter(structured))
        self.logger.addHandler(handler)

    def _log(self, level: int, event_type: str, data: Dict[str, Any], exc_info=False):
        if not self.logger.isEnabledFor(level):
            return
        self.logger.log(level, {"event_type": event_type, "data": data}, exc_info=exc_info)

    def info(self, event_type: str, data: Dict[str, Any] = None):
        self._log(logging.INFO, event_type, data or {})

    def warning(self, event_type: str, data: Dict[str, Any] = None):
        self._log(logging.WARNING, event_type, data or {})

    def error(self, event_type: str, data: Dict[str, Any] = None, exc_info=False):
        """
        Log an error event.

        Args:
            event_type: Type of error event
            data: Optional error context data
            exc_info: Include exception info (default: False)
        """
        self._log(logging.ERROR, event_type, data or {}, exc_info=exc_info)

    def debug(self, event_type: str, data: Dict[str, Any] = None):
        self._log(logging.DEBUG, event_type, data or {})


def get_logger(name: str) -> StructuredLogger:
    """
    Get a cached structured logger instance for the given name.

    The first call for a name builds the logger from the working-directory
    settings; later calls return the cached instance.

    Args:
        name: Logger name (typically __name__ of calling module)

    Returns:
        Cached StructuredLogger instance (singleton per name)
    """
    if name in _logger_cache:
        return _logger_cache[name]

    with _cache_lock:
        if name in _logger_cache:
            return _logger_cache[name]

        from ..infrastructure.config.config_loader import get_settings_from_working_directory
        try:
            settings = get_settings_from_working_directory()
            logger = StructuredLogger(name, settings.logging)
        except Exception as e:
            # Fallback must still be a StructuredLogger so .info(event_type, data) works
            print(f"WARNING: Failed to load config for logger '{name}': {e}", file=sys.stderr)

            class FallbackConfig:
                level = "INFO"
                console_enabled = True
                file_enabled = False
                structured_logging = True
                log_dir = "logs"

            logger = StructuredLogger(name, FallbackConfig())

        _logger_cache[name] = logger
        return logger
