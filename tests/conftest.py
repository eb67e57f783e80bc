"""
Pytest configuration shared by unit and API tests.
"""

import pytest

from strategy_lab.strategy_graph.serializer import StrategySerializer
from tests.fixtures import *  # noqa: F401,F403


@pytest.fixture
def serializer():
    return StrategySerializer()


@pytest.fixture
def rsi_strategy(serializer, rsi_document):
    return serializer.from_dict(rsi_document)


@pytest.fixture
def protected_strategy(serializer, protected_document):
    return serializer.from_dict(protected_document)
