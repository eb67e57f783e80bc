"""
Tests for StrategySerializer and SchemaRegistry
===============================================
Document round trips, all-or-nothing loading and legacy migration.
"""

import json

import pytest

from strategy_lab.core.exceptions import StrategySerializationError
from strategy_lab.strategy_graph.graph import StrategyGraph, StrategyParameters
from strategy_lab.strategy_graph.node_catalog import MarketField
from strategy_lab.strategy_graph.schema_registry import (
    CURRENT_VERSION,
    LEGACY_VERSION,
    SchemaRegistry,
)
from strategy_lab.strategy_graph.serializer import StrategySerializer


class TestRoundTrip:

    def test_document_round_trip(self, serializer, rsi_document):
        graph = serializer.from_dict(rsi_document)
        reloaded = serializer.deserialize(serializer.serialize(graph))
        assert reloaded == graph
        assert serializer.to_dict(reloaded) == serializer.to_dict(graph)

    def test_to_dict_shape(self, serializer, rsi_strategy):
        data = serializer.to_dict(rsi_strategy)
        assert data["version"] == CURRENT_VERSION
        assert data["components"][0] == {
            "id": "rsi_1", "kind": "rsi",
            "parameters": {"period": 14, "oversold": 30.0, "overbought": 70.0},
        }
        assert data["connections"][0] == {
            "from": "rsi_1", "output": "value", "to": "threshold_1", "input": "value",
        }
        assert data["parameters"]["initialCapital"] == 10000.0

    def test_input_defaults_preserved(self, serializer, protected_document):
        graph = serializer.from_dict(protected_document)
        assert graph.get_node("always").input_default("value") == MarketField.CLOSE
        data = serializer.to_dict(graph)
        assert data["components"][0]["inputs"] == {"value": "close"}

    def test_file_round_trip(self, serializer, rsi_strategy, tmp_path):
        path = tmp_path / "strategy.json"
        serializer.save_to_file(rsi_strategy, str(path))
        assert serializer.load_from_file(str(path)) == rsi_strategy

    def test_missing_parameters_use_defaults(self):
        serializer = StrategySerializer(StrategyParameters(symbol="SOLUSDT", timeframe="15m"))
        graph = serializer.from_dict({"version": CURRENT_VERSION, "components": [], "connections": []})
        assert graph.parameters.symbol == "SOLUSDT"
        assert graph.parameters.timeframe == "15m"
        assert graph.id.startswith("strategy_")


class TestLoadFailures:
    """Loading is all-or-nothing"""

    def test_not_json(self, serializer):
        with pytest.raises(StrategySerializationError):
            serializer.deserialize("{not json")

    def test_not_an_object(self, serializer):
        with pytest.raises(StrategySerializationError):
            serializer.deserialize("[1, 2, 3]")

    def test_unknown_version(self, serializer, rsi_document):
        rsi_document["version"] = "7.0.0"
        with pytest.raises(StrategySerializationError, match="Unknown schema version"):
            serializer.from_dict(rsi_document)

    def test_non_string_version(self, serializer, rsi_document):
        rsi_document["version"] = ["1.0.0"]
        with pytest.raises(StrategySerializationError, match="must be a string"):
            serializer.from_dict(rsi_document)

    def test_unknown_kind(self, serializer, rsi_document):
        rsi_document["components"][0]["kind"] = "supertrend"
        with pytest.raises(StrategySerializationError, match="Unknown component kind"):
            serializer.from_dict(rsi_document)

    def test_bad_parameter(self, serializer, rsi_document):
        rsi_document["components"][0]["parameters"]["period"] = -1
        with pytest.raises(StrategySerializationError):
            serializer.from_dict(rsi_document)

    def test_dangling_connection(self, serializer, rsi_document):
        rsi_document["connections"][0]["from"] = "ghost"
        with pytest.raises(StrategySerializationError):
            serializer.from_dict(rsi_document)

    def test_cycle(self, serializer):
        document = {
            "version": CURRENT_VERSION,
            "components": [
                {"id": "a", "kind": "and_gate"},
                {"id": "b", "kind": "or_gate"},
            ],
            "connections": [
                {"from": "a", "output": "signal", "to": "b", "input": "signal1"},
                {"from": "b", "output": "signal", "to": "a", "input": "signal1"},
            ],
        }
        with pytest.raises(StrategySerializationError, match="cycle"):
            serializer.from_dict(document)

    def test_missing_connection_field(self, serializer, rsi_document):
        del rsi_document["connections"][0]["output"]
        with pytest.raises(StrategySerializationError):
            serializer.from_dict(rsi_document)

    def test_bad_strategy_parameters(self, serializer, rsi_document):
        rsi_document["parameters"]["timeframe"] = "3h"
        with pytest.raises(StrategySerializationError):
            serializer.from_dict(rsi_document)

    def test_input_document_not_mutated(self, serializer, legacy_document):
        snapshot = json.dumps(legacy_document, sort_keys=True)
        serializer.from_dict(legacy_document)
        assert json.dumps(legacy_document, sort_keys=True) == snapshot


class TestLegacyMigration:

    def test_legacy_export_loads(self, serializer, legacy_document):
        graph = serializer.from_dict(legacy_document)
        assert [node.kind for node in graph.nodes] == ["rsi", "buy_order"]
        assert graph.input_source("buy_1", "signal") == ("rsi_1", "oversoldSignal")
        assert graph.parameters.symbol == "ETHUSDT"
        assert graph.parameters.timeframe == "4h"
        assert graph.parameters.initial_capital == 5000.0

    def test_migrated_document_is_current(self, legacy_document):
        registry = SchemaRegistry()
        migrated = registry.migrate_document(legacy_document)
        assert migrated["version"] == CURRENT_VERSION
        assert "backtest" not in migrated
        assert migrated["components"][0] == {
            "id": "rsi_1", "kind": "rsi",
            "parameters": {"period": 14, "oversold": 30, "overbought": 70},
        }

    def test_legacy_ui_defaults_fill_omitted_parameters(self, serializer, legacy_document):
        legacy_document["components"].insert(1, {
            "id": "threshold_1", "type": "condition", "name": "Threshold",
            "parameters": {"threshold": 20}, "inputs": ["value"], "outputs": ["threshold_signal"],
        })
        del legacy_document["components"][2]["parameters"]["quantity"]

        graph = serializer.from_dict(legacy_document)

        assert graph.get_node("threshold_1").parameters["operator"] == "above"
        assert graph.get_node("threshold_1").parameters["threshold"] == 20
        assert graph.get_node("buy_1").parameters["quantity"] == 100.0

    def test_current_document_keeps_catalog_defaults(self, serializer, rsi_document):
        del rsi_document["components"][2]["parameters"]["quantity"]
        graph = serializer.from_dict(rsi_document)
        assert graph.get_node("buy_1").parameters["quantity"] == 1.0

    def test_current_document_passes_through(self, rsi_document):
        assert SchemaRegistry().migrate_document(rsi_document) is rsi_document

    def test_version_info(self):
        registry = SchemaRegistry()
        assert registry.is_valid_version(LEGACY_VERSION)
        assert registry.get_version_info()["is_current"] is True
        assert [v["version"] for v in registry.list_versions()] == [LEGACY_VERSION, CURRENT_VERSION]


def test_empty_graph_round_trip(serializer):
    graph = StrategyGraph(strategy_id="strategy_empty", name="Empty")
    assert serializer.from_dict(serializer.to_dict(graph)) == graph
