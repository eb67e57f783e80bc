"""
Incremental Indicator System
============================
O(1) indicator calculations with ring buffers and incremental accumulators.

Module structure:
- incremental_base: Base classes, RingBuffer, accumulators
- incremental_indicators: SMA, EMA, RSI, Bollinger, MACD implementations

Usage:
    from strategy_lab.domain.services.indicators import create_incremental_indicator

    rsi = create_incremental_indicator("rsi", "rsi_1", period=14)
    value = rsi.update(50000.0)  # None until warmed up
"""

from .incremental_base import (
    RingBuffer,
    IncrementalIndicator,
    WindowBasedIndicator,
    ExponentialIndicator,
)

from .incremental_indicators import (
    IncrementalSMA,
    IncrementalEMA,
    IncrementalRSI,
    IncrementalBollinger,
    IncrementalMACD,
    create_incremental_indicator
)

__all__ = [
    # Base classes
    'RingBuffer',
    'IncrementalIndicator',
    'WindowBasedIndicator',
    'ExponentialIndicator',
    # Concrete indicators
    'IncrementalSMA',
    'IncrementalEMA',
    'IncrementalRSI',
    'IncrementalBollinger',
    'IncrementalMACD',
    # Factory
    'create_incremental_indicator'
]
