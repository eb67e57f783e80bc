"""
Market data test fixtures.

Provides bar series builders for evaluator and backtest tests:
- Flat / trending OHLCV bars with hourly spacing
- An oversold dip followed by a rally (RSI drops below 30 exactly once)
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence
import pytest

START = datetime(2024, 1, 1, tzinfo=timezone.utc)
HOUR = timedelta(hours=1)

# 15 falling closes (RSI(14) = 0 on the 15th) then a steady rally
OVERSOLD_THEN_RALLY = [100.0 - i for i in range(15)] + [96.0 + 5 * i for i in range(10)]


def make_bars(closes: Sequence[float],
              opens: Optional[Sequence[float]] = None,
              highs: Optional[Sequence[float]] = None,
              lows: Optional[Sequence[float]] = None,
              start: datetime = START,
              step: timedelta = HOUR,
              spread: float = 0.5) -> List[dict]:
    """Build raw bar dicts; open defaults to close, high/low to +/- spread around the body."""
    bars = []
    for i, close in enumerate(closes):
        open_ = opens[i] if opens is not None else close
        high = highs[i] if highs is not None else max(open_, close) + spread
        low = lows[i] if lows is not None else min(open_, close) - spread
        bars.append({
            "time": (start + i * step).isoformat(),
            "open": open_,
            "high": high,
            "low": low,
            "close": close,
            "volume": 1000.0,
        })
    return bars


@pytest.fixture
def oversold_bars():
    """Bars where RSI(14) is below 30 on index 14 only"""
    return make_bars(OVERSOLD_THEN_RALLY)


@pytest.fixture
def flat_bars():
    """Thirty bars at a constant price"""
    return make_bars([100.0] * 30)


@pytest.fixture
def trending_bars():
    """Sixty bars of a gently oscillating uptrend"""
    closes = [100.0 + i * 0.5 + (3.0 if i % 4 == 0 else -2.0 if i % 4 == 2 else 0.0) for i in range(60)]
    return make_bars(closes)
