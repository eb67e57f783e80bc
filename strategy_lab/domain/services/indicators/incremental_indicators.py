"""
Concrete Incremental Indicator Implementations
==============================================
O(1) indicator updates without full recalculations.

Implemented:
- SMA (Simple Moving Average)
- EMA (Exponential Moving Average)
- RSI (Relative Strength Index, Wilder smoothing)
- Bollinger Bands
- MACD (Moving Average Convergence Divergence)

All indicators return None until their warm-up window is complete.
"""

import math
from typing import Any, Dict, Optional
from .incremental_base import (
    IncrementalIndicator,
    ExponentialIndicator,
    WindowBasedIndicator,
)


# ============================================================================
# SMA - Simple Moving Average
# ============================================================================

class IncrementalSMA(WindowBasedIndicator):
    """
    Incremental SMA using ring buffer.

    Formula: SMA = sum(last N prices) / N

    Complexity: O(1) per update
    - Ring buffer auto-ejects oldest value
    - Maintains running sum

    Memory: O(N) - stores last N values
    """

    def __init__(self, indicator_id: str, period: int):
        super().__init__(indicator_id, window_size=period)
        self.sum = 0.0
        self.period = period

    def update(self, value: float) -> Optional[float]:
        self.samples += 1

        # If buffer full, subtract oldest value
        if self.buffer.is_full():
            self.sum -= self.buffer.oldest()

        self.buffer.append(value)
        self.sum += value

        if self.buffer.is_full():
            self._initialized = True
        return self.get_value()

    def get_value(self) -> Optional[float]:
        """Get current SMA value"""
        if self.is_ready():
            return self.sum / self.period
        return None

    def reset(self):
        super().reset()
        self.sum = 0.0


# ============================================================================
# EMA - Exponential Moving Average
# ============================================================================

class IncrementalEMA(ExponentialIndicator):
    """
    Incremental EMA calculation.

    Formula: EMA(t) = α * Price(t) + (1 - α) * EMA(t-1)
    Where: α = 2 / (period + 1), seeded with SMA(period)

    Example:
        ema = IncrementalEMA("ema_1", period=20)
        ema.update(50000.0)
    """

    def update(self, value: float) -> Optional[float]:
        return self._update_ema(value)

    def get_value(self) -> Optional[float]:
        """Get current EMA value"""
        return self.ema_value


# ============================================================================
# RSI - Relative Strength Index
# ============================================================================

class IncrementalRSI(IncrementalIndicator):
    """
    Incremental RSI with Wilder's smoothing.

    The first average gain/loss is the simple mean of the first `period`
    changes, so the first value appears at sample period + 1.

    Formula: RSI = 100 - (100 / (1 + RS)), RS = avg_gain / avg_loss
    """

    def __init__(self, indicator_id: str, period: int = 14,
                 oversold: float = 30.0, overbought: float = 70.0):
        super().__init__(indicator_id)
        if period <= 0:
            raise ValueError("period must be positive")
        self.period = period
        self.oversold = oversold
        self.overbought = overbought
        self.previous_price: Optional[float] = None
        self.avg_gain: Optional[float] = None
        self.avg_loss: Optional[float] = None
        self._changes = 0
        self._gain_sum = 0.0
        self._loss_sum = 0.0

    def update(self, value: float) -> Optional[float]:
        self.samples += 1

        # Need previous price to calculate change
        if self.previous_price is None:
            self.previous_price = value
            return None

        change = value - self.previous_price
        gain = max(change, 0.0)
        loss = max(-change, 0.0)
        self.previous_price = value

        if self.avg_gain is None:
            self._changes += 1
            self._gain_sum += gain
            self._loss_sum += loss
            if self._changes == self.period:
                self.avg_gain = self._gain_sum / self.period
                self.avg_loss = self._loss_sum / self.period
                self._initialized = True
        else:
            # Wilder's smoothing
            self.avg_gain = (self.avg_gain * (self.period - 1) + gain) / self.period
            self.avg_loss = (self.avg_loss * (self.period - 1) + loss) / self.period

        return self.get_value()

    def get_value(self) -> Optional[float]:
        """Get current RSI value (0-100)"""
        if not self._initialized:
            return None

        if self.avg_loss == 0:
            return 100.0 if self.avg_gain > 0 else 50.0

        rs = self.avg_gain / self.avg_loss
        return 100.0 - (100.0 / (1.0 + rs))

    def outputs(self) -> Dict[str, Any]:
        value = self.get_value()
        if value is None:
            return {"value": None, "oversoldSignal": None, "overboughtSignal": None}
        return {
            "value": value,
            "oversoldSignal": value < self.oversold,
            "overboughtSignal": value > self.overbought,
        }

    def reset(self):
        self.previous_price = None
        self.avg_gain = None
        self.avg_loss = None
        self._changes = 0
        self._gain_sum = 0.0
        self._loss_sum = 0.0
        self.samples = 0
        self._initialized = False


# ============================================================================
# BOLLINGER BANDS
# ============================================================================

class IncrementalBollinger(WindowBasedIndicator):
    """
    Bollinger Bands over a ring buffer.

    middle = SMA(n), σ = population standard deviation of the window,
    upper/lower = middle ± k·σ.
    """

    def __init__(self, indicator_id: str, period: int = 20, std_dev: float = 2.0):
        super().__init__(indicator_id, window_size=period)
        self.period = period
        self.std_dev = std_dev

    def update(self, value: float) -> Optional[float]:
        self.samples += 1
        self.buffer.append(value)
        if self.buffer.is_full():
            self._initialized = True
        return self.get_value()

    def get_value(self) -> Optional[float]:
        """Middle band"""
        if not self.is_ready():
            return None
        return sum(self.buffer.buffer) / self.period

    def outputs(self) -> Dict[str, Any]:
        middle = self.get_value()
        if middle is None:
            return {"upper": None, "middle": None, "lower": None}

        # Window is bounded by period; recomputing keeps σ exact
        variance = sum((x - middle) ** 2 for x in self.buffer.buffer) / self.period
        width = self.std_dev * math.sqrt(variance)
        return {"upper": middle + width, "middle": middle, "lower": middle - width}


# ============================================================================
# MACD
# ============================================================================

class IncrementalMACD(IncrementalIndicator):
    """
    MACD from three SMA-seeded EMAs.

    macdLine = EMA_fast - EMA_slow, signalLine = EMA_signal(macdLine),
    histogram = macdLine - signalLine. All three outputs become defined
    together once the signal line is defined.
    """

    def __init__(self, indicator_id: str, fast_period: int = 12,
                 slow_period: int = 26, signal_period: int = 9):
        super().__init__(indicator_id)
        if fast_period >= slow_period:
            raise ValueError("fast_period must be smaller than slow_period")
        self.fast = IncrementalEMA(f"{indicator_id}.fast", fast_period)
        self.slow = IncrementalEMA(f"{indicator_id}.slow", slow_period)
        self.signal = IncrementalEMA(f"{indicator_id}.signal", signal_period)
        self.macd_line: Optional[float] = None

    def update(self, value: float) -> Optional[float]:
        self.samples += 1
        fast = self.fast.update(value)
        slow = self.slow.update(value)
        if fast is None or slow is None:
            return None

        self.macd_line = fast - slow
        if self.signal.update(self.macd_line) is not None:
            self._initialized = True
        return self.get_value()

    def get_value(self) -> Optional[float]:
        """MACD line (None until the signal line is defined)"""
        return self.macd_line if self._initialized else None

    def outputs(self) -> Dict[str, Any]:
        if not self._initialized:
            return {"macdLine": None, "signalLine": None, "histogram": None}
        signal_line = self.signal.get_value()
        return {
            "macdLine": self.macd_line,
            "signalLine": signal_line,
            "histogram": self.macd_line - signal_line,
        }

    def reset(self):
        self.fast.reset()
        self.slow.reset()
        self.signal.reset()
        self.macd_line = None
        self.samples = 0
        self._initialized = False


# ============================================================================
# FACTORY - Create indicators by catalog kind
# ============================================================================

def create_incremental_indicator(
    indicator_type: str,
    indicator_id: str,
    **params
) -> IncrementalIndicator:
    """
    Factory function to create incremental indicators.

    Args:
        indicator_type: Catalog kind: "sma", "ema", "rsi", "bollinger", "macd"
        indicator_id: Unique ID
        **params: Catalog parameters of the node

    Returns:
        Incremental indicator instance

    Example:
        rsi = create_incremental_indicator("rsi", "rsi_1", period=14, oversold=30, overbought=70)
    """
    indicator_type = indicator_type.lower()

    if indicator_type == "sma":
        return IncrementalSMA(indicator_id, params.get('period', 20))

    elif indicator_type == "ema":
        return IncrementalEMA(indicator_id, params.get('period', 12))

    elif indicator_type == "rsi":
        return IncrementalRSI(
            indicator_id,
            params.get('period', 14),
            oversold=params.get('oversold', 30.0),
            overbought=params.get('overbought', 70.0),
        )

    elif indicator_type == "bollinger":
        return IncrementalBollinger(indicator_id, params.get('period', 20), params.get('stdDev', 2.0))

    elif indicator_type == "macd":
        return IncrementalMACD(
            indicator_id,
            params.get('fastPeriod', 12),
            params.get('slowPeriod', 26),
            params.get('signalPeriod', 9),
        )

    else:
        raise ValueError(f"Unknown indicator type: {indicator_type}")


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    'IncrementalSMA',
    'IncrementalEMA',
    'IncrementalRSI',
    'IncrementalBollinger',
    'IncrementalMACD',
    'create_incremental_indicator'
]
