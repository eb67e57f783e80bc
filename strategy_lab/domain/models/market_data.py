"""
Market Data Models - Core market data structures
===============================================
OHLCV bars and helpers for validating a bar series before evaluation.
"""

from pydantic import BaseModel, Field, ConfigDict, TypeAdapter, ValidationError, field_validator, model_validator
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional, Union

from ...core.exceptions import MarketDataError

TimeLike = Union[datetime, str, int, float]

_datetime_adapter = TypeAdapter(datetime)


def _coerce_epoch(v: Any) -> Any:
    # Epoch values are always seconds here; pydantic would guess ms for large ints
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return datetime.fromtimestamp(v, tz=timezone.utc)
    return v


def _as_utc(v: datetime) -> datetime:
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


class Bar(BaseModel):
    """One OHLCV bar. `time` accepts ISO-8601 strings or epoch seconds."""

    model_config = ConfigDict(frozen=True)

    time: datetime = Field(..., description="Bar open time (UTC)")
    open: float = Field(..., gt=0)
    high: float = Field(..., gt=0)
    low: float = Field(..., gt=0)
    close: float = Field(..., gt=0)
    volume: float = Field(default=0.0, ge=0)

    @field_validator('time', mode='before')
    @classmethod
    def parse_epoch(cls, v):
        return _coerce_epoch(v)

    @field_validator('time')
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @model_validator(mode='after')
    def check_range(self):
        if self.high < self.low:
            raise ValueError(f"high ({self.high}) is below low ({self.low})")
        return self

    def get_field(self, name: str) -> float:
        """Bar field by name ("open", "high", "low", "close", "volume")"""
        return getattr(self, name)


def to_datetime(value: Optional[TimeLike]) -> Optional[datetime]:
    """Parse a range boundary the same way bar times are parsed."""
    if value is None:
        return None
    try:
        return _as_utc(_datetime_adapter.validate_python(_coerce_epoch(value)))
    except ValidationError as e:
        raise MarketDataError(f"Invalid time value {value!r}: {e.errors()[0]['msg']}") from e


def parse_bars(raw_bars: Iterable[Union[Bar, dict]]) -> List[Bar]:
    """
    Validate a bar series.

    Args:
        raw_bars: Bars or dicts with time/open/high/low/close/volume

    Returns:
        List of Bar, strictly ascending by time

    Raises:
        MarketDataError: malformed bar or non-ascending times
    """
    bars: List[Bar] = []
    for index, raw in enumerate(raw_bars):
        if isinstance(raw, Bar):
            bar = raw
        else:
            try:
                bar = Bar.model_validate(raw)
            except ValidationError as e:
                raise MarketDataError(f"Malformed bar at index {index}: {e}") from e

        if bars and bar.time <= bars[-1].time:
            raise MarketDataError(
                f"Bars must be strictly ascending by time: index {index} "
                f"({bar.time.isoformat()}) is not after {bars[-1].time.isoformat()}"
            )
        bars.append(bar)
    return bars


def filter_bars(bars: List[Bar], start: Optional[TimeLike] = None,
                end: Optional[TimeLike] = None) -> List[Bar]:
    """Bars within the inclusive [start, end] range."""
    start_dt = to_datetime(start)
    end_dt = to_datetime(end)
    return [
        bar for bar in bars
        if (start_dt is None or bar.time >= start_dt) and (end_dt is None or bar.time <= end_dt)
    ]


__all__ = ['Bar', 'TimeLike', 'parse_bars', 'filter_bars', 'to_datetime']
