"""
Shared test fixtures for the test suite.

This module provides common test data and fixtures used across multiple test files.
"""

from tests.fixtures.market_data import *
from tests.fixtures.strategies import *

__all__ = [
    # Market data fixtures
    'oversold_bars',
    'flat_bars',
    'trending_bars',

    # Strategy fixtures
    'rsi_document',
    'protected_document',
    'legacy_document',
]
