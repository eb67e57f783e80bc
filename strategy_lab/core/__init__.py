"""
Core module for strategy lab: structured logging and the exception taxonomy.
"""

from .logger import StructuredLogger, get_logger
from .exceptions import (
    StrategyEngineError,
    StrategyGraphError,
    UnknownComponentKind,
    InvalidParameter,
    DuplicateNode,
    UnknownNode,
    UnknownPort,
    UnknownConnection,
    PortTypeMismatch,
    PortAlreadyBound,
    CycleDetected,
    StrategyValidationFailed,
    BacktestCancelled,
    StrategySerializationError,
    MarketDataError,
)

__all__ = [
    'StructuredLogger', 'get_logger',
    'StrategyEngineError', 'StrategyGraphError', 'UnknownComponentKind', 'InvalidParameter',
    'DuplicateNode', 'UnknownNode', 'UnknownPort', 'UnknownConnection', 'PortTypeMismatch',
    'PortAlreadyBound', 'CycleDetected', 'StrategyValidationFailed', 'BacktestCancelled',
    'StrategySerializationError', 'MarketDataError',
]
