"""
Tests for the Strategy Graph Model
==================================
Node/connection mutations, structural errors and the DAG invariant.
"""

import random
import re

import pytest

from strategy_lab.core.exceptions import (
    CycleDetected,
    DuplicateNode,
    InvalidParameter,
    PortAlreadyBound,
    PortTypeMismatch,
    UnknownComponentKind,
    UnknownConnection,
    UnknownNode,
    UnknownPort,
)
from strategy_lab.strategy_graph.graph import StrategyGraph, StrategyParameters
from strategy_lab.strategy_graph.node_catalog import MarketField


@pytest.fixture
def graph():
    return StrategyGraph(strategy_id="strategy_test", name="Test")


class TestAddNode:

    def test_generated_id_format(self, graph):
        node_id = graph.add_node("sma")
        assert re.fullmatch(r"sma_[0-9a-f]{8}", node_id)
        assert graph.get_node(node_id).parameters == {"period": 20}

    def test_explicit_id(self, graph):
        assert graph.add_node("ema", {"period": 5}, node_id="ema_fast") == "ema_fast"
        assert graph.get_node("ema_fast").parameters["period"] == 5

    def test_duplicate_id(self, graph):
        graph.add_node("sma", node_id="n1")
        with pytest.raises(DuplicateNode):
            graph.add_node("ema", node_id="n1")
        assert graph.get_node("n1").kind == "sma"

    def test_unknown_kind_leaves_graph_unchanged(self, graph):
        with pytest.raises(UnknownComponentKind):
            graph.add_node("ichimoku")
        assert len(graph) == 0

    def test_invalid_parameter_carries_node_id(self, graph):
        with pytest.raises(InvalidParameter) as exc_info:
            graph.add_node("sma", {"period": 0}, node_id="bad")
        assert exc_info.value.node_id == "bad"
        assert not graph.has_node("bad")

    def test_input_default_override(self, graph):
        graph.add_node("sma", node_id="s", input_defaults={"price": "high"})
        assert graph.get_node("s").input_default("price") == MarketField.HIGH

    def test_input_default_unknown_port(self, graph):
        with pytest.raises(UnknownPort):
            graph.add_node("sma", input_defaults={"source": "close"})


class TestConnect:

    def test_connect_returns_id(self, graph):
        graph.add_node("rsi", node_id="rsi")
        graph.add_node("threshold", node_id="th")
        connection_id = graph.connect(("rsi", "value"), ("th", "value"))
        assert connection_id == "rsi.value->th.value"
        assert graph.input_source("th", "value") == ("rsi", "value")
        assert [c.id for c in graph.outgoing("rsi")] == [connection_id]

    def test_unknown_node(self, graph):
        graph.add_node("rsi", node_id="rsi")
        with pytest.raises(UnknownNode):
            graph.connect(("rsi", "value"), ("missing", "value"))

    def test_unknown_port(self, graph):
        graph.add_node("rsi", node_id="rsi")
        graph.add_node("threshold", node_id="th")
        with pytest.raises(UnknownPort) as exc_info:
            graph.connect(("rsi", "signal"), ("th", "value"))
        assert exc_info.value.node_id == "rsi"

    def test_type_mismatch(self, graph):
        graph.add_node("sma", node_id="sma")
        graph.add_node("buy_order", node_id="buy")
        with pytest.raises(PortTypeMismatch):
            graph.connect(("sma", "value"), ("buy", "signal"))
        assert graph.connections == []

    def test_input_accepts_one_connection(self, graph):
        graph.add_node("sma", node_id="a")
        graph.add_node("sma", node_id="b")
        graph.add_node("threshold", node_id="th")
        first = graph.connect(("a", "value"), ("th", "value"))
        with pytest.raises(PortAlreadyBound) as exc_info:
            graph.connect(("b", "value"), ("th", "value"))
        assert exc_info.value.existing_connection_id == first

    def test_fan_out_allowed(self, graph):
        graph.add_node("sma", node_id="a")
        graph.add_node("threshold", node_id="t1")
        graph.add_node("threshold", node_id="t2")
        graph.connect(("a", "value"), ("t1", "value"))
        graph.connect(("a", "value"), ("t2", "value"))
        assert len(graph.outgoing("a")) == 2

    def test_cycle_rejected(self, graph):
        graph.add_node("and_gate", node_id="g1")
        graph.add_node("or_gate", node_id="g2")
        graph.connect(("g1", "signal"), ("g2", "signal1"))
        with pytest.raises(CycleDetected) as exc_info:
            graph.connect(("g2", "signal"), ("g1", "signal1"))
        assert exc_info.value.connection_id == "g2.signal->g1.signal1"
        assert len(graph.connections) == 1

    def test_self_loop_rejected(self, graph):
        graph.add_node("and_gate", node_id="g")
        with pytest.raises(CycleDetected):
            graph.connect(("g", "signal"), ("g", "signal1"))


class TestRemoval:

    def test_remove_node_cascades(self, graph):
        graph.add_node("rsi", node_id="rsi")
        graph.add_node("threshold", node_id="th")
        graph.add_node("buy_order", node_id="buy")
        graph.connect(("rsi", "value"), ("th", "value"))
        graph.connect(("th", "signal"), ("buy", "signal"))

        graph.remove_node("th")

        assert graph.connections == []
        assert graph.outgoing("rsi") == []
        assert graph.input_source("buy", "signal") is None

    def test_remove_unknown_node(self, graph):
        with pytest.raises(UnknownNode):
            graph.remove_node("nope")

    def test_disconnect(self, graph):
        graph.add_node("rsi", node_id="rsi")
        graph.add_node("threshold", node_id="th")
        connection_id = graph.connect(("rsi", "value"), ("th", "value"))
        graph.disconnect(connection_id)
        assert graph.incoming("th") == []
        with pytest.raises(UnknownConnection):
            graph.disconnect(connection_id)

    def test_reset(self, graph):
        graph.add_node("sma")
        graph.reset()
        assert len(graph) == 0 and graph.connections == []


class TestParameters:

    def test_patch_merges(self, graph):
        graph.add_node("rsi", node_id="rsi")
        assert graph.set_parameters("rsi", {"oversold": 25.0})["period"] == 14

    def test_invalid_patch_keeps_old_values(self, graph):
        graph.add_node("macd", node_id="m")
        with pytest.raises(InvalidParameter):
            graph.set_parameters("m", {"slowPeriod": 5})
        assert graph.get_node("m").parameters["slowPeriod"] == 26

    def test_set_input_default_and_reset(self, graph):
        graph.add_node("threshold", node_id="th")
        graph.set_input_default("th", "value", "volume")
        assert graph.get_node("th").input_default("value") == MarketField.VOLUME
        graph.set_input_default("th", "value", None)
        assert graph.get_node("th").input_default("value") is None

    def test_strategy_parameters_validated(self, graph):
        graph.set_strategy_parameters(timeframe="4h", commission=0.002)
        assert graph.parameters.periods_per_year == 2190
        with pytest.raises(InvalidParameter):
            graph.set_strategy_parameters(timeframe="2h")
        with pytest.raises(InvalidParameter):
            StrategyParameters(initial_capital=0)

    def test_unknown_strategy_parameter(self, graph):
        with pytest.raises(InvalidParameter) as exc_info:
            graph.set_strategy_parameters(leverage=10)
        assert exc_info.value.parameter == "leverage"
        assert graph.parameters == StrategyParameters()


class TestCopy:

    def test_copy_is_independent(self, graph):
        graph.add_node("sma", node_id="s")
        clone = graph.copy()
        assert clone == graph
        clone.set_parameters("s", {"period": 3})
        assert graph.get_node("s").parameters["period"] == 20
        assert clone != graph


def _has_cycle(graph: StrategyGraph) -> bool:
    adjacency = {node_id: [] for node_id in graph.node_ids}
    for connection in graph.connections:
        adjacency[connection.source_node].append(connection.target_node)
    state = {}

    def visit(node_id):
        state[node_id] = "active"
        for neighbor in adjacency[node_id]:
            if state.get(neighbor) == "active":
                return True
            if neighbor not in state and visit(neighbor):
                return True
        state[node_id] = "done"
        return False

    return any(node_id not in state and visit(node_id) for node_id in adjacency)


def test_random_mutations_keep_graph_acyclic():
    """Random connect attempts between boolean gates never leave a cycle behind"""
    rng = random.Random(42)
    graph = StrategyGraph()
    gates = [graph.add_node(rng.choice(["and_gate", "or_gate"]), node_id=f"g{i}") for i in range(12)]

    accepted = 0
    for _ in range(300):
        source, target = rng.choice(gates), rng.choice(gates)
        port = rng.choice(["signal1", "signal2"])
        try:
            graph.connect((source, "signal"), (target, port))
            accepted += 1
        except (CycleDetected, PortAlreadyBound):
            pass
        assert not _has_cycle(graph)

    assert accepted > 0
    for node_id in gates:
        assert len(graph.incoming(node_id)) <= 2
