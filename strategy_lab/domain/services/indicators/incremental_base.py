"""
Incremental Indicator Infrastructure
====================================
Base classes and utilities for O(1) incremental indicator calculations.

- Ring buffers for window-based indicators
- Incremental accumulators (EMA seeding, Wilder averages)
- No full recalculations on each bar
"""

from abc import ABC, abstractmethod
from collections import deque
from typing import Optional, List, Any, Dict


# ============================================================================
# RING BUFFER - Fixed-size FIFO buffer for window-based indicators
# ============================================================================

class RingBuffer:
    """
    Fixed-size ring buffer with O(1) append and access.

    Use case: Store last N values for moving averages, windows, etc.
    """

    def __init__(self, maxlen: int):
        """
        Initialize ring buffer with fixed size.

        Args:
            maxlen: Maximum number of elements (automatically ejects oldest)
        """
        if maxlen <= 0:
            raise ValueError("maxlen must be positive")

        self.maxlen = maxlen
        self.buffer = deque(maxlen=maxlen)  # O(1) append with auto-eject

    def append(self, value: Any):
        """Append value (O(1) - auto-ejects oldest if full)"""
        self.buffer.append(value)

    def oldest(self) -> Any:
        """Oldest element (O(1)); IndexError when empty"""
        return self.buffer[0]

    def get_all(self) -> List[Any]:
        """Get all values as list (oldest to newest)"""
        return list(self.buffer)

    def is_full(self) -> bool:
        """Check if buffer is at capacity"""
        return len(self.buffer) == self.maxlen

    def size(self) -> int:
        """Current number of elements"""
        return len(self.buffer)

    def clear(self):
        """Remove all elements"""
        self.buffer.clear()

    def __len__(self):
        return len(self.buffer)

    def __repr__(self):
        return f"RingBuffer(maxlen={self.maxlen}, size={len(self.buffer)})"


# ============================================================================
# BASE CLASS - IncrementalIndicator
# ============================================================================

class IncrementalIndicator(ABC):
    """
    Abstract base class for incremental indicators.

    Key principles:
    1. O(1) update complexity where the math allows it
    2. Maintains internal state between bars
    3. Returns None until enough samples have been seen (warm-up)

    Subclasses must implement:
    - update(value): Feed the next sample
    - get_value(): Get current primary value
    - reset(): Reset to initial state
    """

    def __init__(self, indicator_id: str):
        """
        Args:
            indicator_id: Unique identifier (the owning node id)
        """
        self.indicator_id = indicator_id
        self.samples = 0
        self._initialized = False

    @abstractmethod
    def update(self, value: float) -> Optional[float]:
        """
        Update indicator with the next sample.

        Returns:
            Updated primary value (or None if not ready)
        """
        pass

    @abstractmethod
    def get_value(self) -> Optional[float]:
        """
        Get current indicator value.

        Returns:
            Current value or None if not initialized
        """
        pass

    @abstractmethod
    def reset(self):
        """Reset indicator to initial state"""
        pass

    def is_ready(self) -> bool:
        """Check if indicator has enough data to produce valid values"""
        return self._initialized

    def outputs(self) -> Dict[str, Any]:
        """Current values keyed by output port name (override for multi-output)"""
        return {"value": self.get_value()}

    def __repr__(self):
        return f"{self.__class__.__name__}(id={self.indicator_id}, value={self.get_value()})"


# ============================================================================
# HELPER - Window-Based Indicator Base
# ============================================================================

class WindowBasedIndicator(IncrementalIndicator):
    """
    Base class for indicators that need a window of historical values.
    Uses RingBuffer internally.

    Examples: SMA, Bollinger Bands
    """

    def __init__(self, indicator_id: str, window_size: int):
        """
        Args:
            window_size: Number of periods for the window
        """
        super().__init__(indicator_id)

        if window_size <= 0:
            raise ValueError("window_size must be positive")

        self.window_size = window_size
        self.buffer = RingBuffer(window_size)

    def is_ready(self) -> bool:
        """Ready when buffer is full"""
        return self.buffer.is_full()

    def reset(self):
        """Reset buffer"""
        self.buffer.clear()
        self.samples = 0
        self._initialized = False


# ============================================================================
# HELPER - Exponential Moving Average Base
# ============================================================================

class ExponentialIndicator(IncrementalIndicator):
    """
    Base class for exponential indicators (EMA, MACD).
    Seeded with the simple mean of the first `period` samples.

    Formula: new_value = alpha * current + (1 - alpha) * previous
    """

    def __init__(self, indicator_id: str, period: int):
        """
        Args:
            period: EMA period (e.g., 20 for EMA-20)
        """
        super().__init__(indicator_id)

        if period <= 0:
            raise ValueError("period must be positive")

        self.period = period
        self.alpha = 2.0 / (period + 1)  # Standard EMA alpha
        self.ema_value: Optional[float] = None
        self._seed_sum = 0.0

    def is_ready(self) -> bool:
        return self.ema_value is not None

    def reset(self):
        """Reset EMA"""
        self.ema_value = None
        self._seed_sum = 0.0
        self.samples = 0
        self._initialized = False

    def _update_ema(self, new_value: float) -> Optional[float]:
        """
        Update EMA with new value (O(1)).

        Returns:
            Updated EMA value, None during the seeding window
        """
        self.samples += 1

        if self.ema_value is None:
            self._seed_sum += new_value
            if self.samples == self.period:
                self.ema_value = self._seed_sum / self.period
                self._initialized = True
        else:
            self.ema_value = self.alpha * new_value + (1 - self.alpha) * self.ema_value

        return self.ema_value


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    'RingBuffer',
    'IncrementalIndicator',
    'WindowBasedIndicator',
    'ExponentialIndicator',
]
