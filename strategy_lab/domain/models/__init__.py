"""
Domain Models - Core Business Entities
======================================
Pure data models representing business concepts.
"""

from .market_data import Bar, TimeLike, parse_bars, filter_bars, to_datetime
from .signals import SignalEvent, RiskLevel, RiskRule, OrderSide, OrderType

__all__ = [
    # Market data
    'Bar', 'TimeLike', 'parse_bars', 'filter_bars', 'to_datetime',
    # Signals
    'SignalEvent', 'RiskLevel', 'RiskRule', 'OrderSide', 'OrderType',
]
