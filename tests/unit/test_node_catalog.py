"""
Tests for the Component Catalog
===============================
Verifies component definitions, parameter schemas and input default parsing.
"""

import pytest

from strategy_lab.core.exceptions import InvalidParameter, UnknownComponentKind
from strategy_lab.strategy_graph.node_catalog import (
    COMPONENT_CATALOG,
    ComponentKind,
    DataType,
    MarketField,
    ParameterRef,
    catalog_as_dict,
    get_component_definition,
    get_components_by_kind,
    list_components,
    lookup,
    parse_input_default,
)


class TestCatalogContents:
    """Catalog lists every builder component"""

    def test_all_kinds_present(self):
        assert set(list_components()) == {
            "sma", "ema", "rsi", "bollinger", "macd",
            "crossover", "threshold", "and_gate", "or_gate",
            "buy_order", "sell_order",
            "stop_loss", "take_profit",
        }

    def test_components_grouped_by_kind(self):
        assert [c.name for c in get_components_by_kind(ComponentKind.ACTION)] == ["buy_order", "sell_order"]
        assert [c.name for c in get_components_by_kind(ComponentKind.RISK)] == ["stop_loss", "take_profit"]

    def test_catalog_is_read_only(self):
        with pytest.raises(TypeError):
            COMPONENT_CATALOG["custom"] = COMPONENT_CATALOG["sma"]

    def test_lookup_unknown_kind(self):
        with pytest.raises(UnknownComponentKind) as exc_info:
            lookup("vwap")
        assert exc_info.value.kind == "vwap"
        assert get_component_definition("vwap") is None

    def test_actions_have_no_outputs(self):
        for component in get_components_by_kind(ComponentKind.ACTION):
            assert component.outputs == ()

    def test_rsi_ports(self):
        rsi = lookup("rsi")
        assert rsi.get_output_port("value").data_type == DataType.NUMERIC
        assert rsi.get_output_port("oversoldSignal").data_type == DataType.BOOLEAN
        assert rsi.get_input_port("price").default == MarketField.CLOSE

    def test_threshold_reference_defaults_to_parameter(self):
        threshold = lookup("threshold")
        assert threshold.get_input_port("reference").default == ParameterRef("threshold")
        assert threshold.get_input_port("value").default is None

    def test_catalog_as_dict(self):
        data = catalog_as_dict()
        assert set(data) == {"indicator", "condition", "action", "risk"}
        sma = data["indicator"][0]
        assert sma["name"] == "sma"
        assert sma["title"] == "Simple Moving Average"
        assert sma["inputs"][0] == {
            "name": "price", "valueType": "numeric", "default": "close",
            "description": "Price series (defaults to bar close)",
        }


class TestParameterValidation:
    """Parameter schema coercion and bounds"""

    def test_defaults_filled(self):
        assert lookup("macd").validate_parameters({}) == {
            "fastPeriod": 12, "slowPeriod": 26, "signalPeriod": 9,
        }

    def test_partial_override(self):
        params = lookup("sma").validate_parameters({"period": 5})
        assert params == {"period": 5}

    def test_int_widened_to_float(self):
        params = lookup("threshold").validate_parameters({"threshold": 30})
        assert params["threshold"] == 30.0
        assert isinstance(params["threshold"], float)

    @pytest.mark.parametrize("value", [0, -3, 2.5, True, "14"])
    def test_invalid_period(self, value):
        with pytest.raises(InvalidParameter) as exc_info:
            lookup("sma").validate_parameters({"period": value})
        assert exc_info.value.parameter == "period"

    def test_unknown_parameter(self):
        with pytest.raises(InvalidParameter) as exc_info:
            lookup("sma").validate_parameters({"length": 10})
        assert exc_info.value.parameter == "length"

    def test_choice_enforced(self):
        with pytest.raises(InvalidParameter):
            lookup("threshold").validate_parameters({"operator": "sideways"})

    def test_quantity_must_be_positive(self):
        with pytest.raises(InvalidParameter):
            lookup("buy_order").validate_parameters({"quantity": 0.0})

    def test_macd_fast_must_be_smaller(self):
        with pytest.raises(InvalidParameter) as exc_info:
            lookup("macd").validate_parameters({"fastPeriod": 30})
        assert exc_info.value.parameter == "fastPeriod"

    def test_rsi_band_order(self):
        with pytest.raises(InvalidParameter):
            lookup("rsi").validate_parameters({"oversold": 80.0})

    def test_patch_against_base(self):
        rsi = lookup("rsi")
        base = rsi.validate_parameters({"period": 10})
        assert rsi.validate_parameters({"oversold": 20.0}, base=base)["period"] == 10


class TestInputDefaults:

    def test_market_field_name(self):
        port = lookup("sma").get_input_port("price")
        assert parse_input_default(port, "high") == MarketField.HIGH

    def test_numeric_constant(self):
        port = lookup("threshold").get_input_port("reference")
        assert parse_input_default(port, 25) == 25.0

    def test_unknown_field_rejected(self):
        port = lookup("sma").get_input_port("price")
        with pytest.raises(InvalidParameter):
            parse_input_default(port, "vwap")

    def test_boolean_port_requires_bool(self):
        port = lookup("and_gate").get_input_port("signal1")
        assert parse_input_default(port, True) is True
        with pytest.raises(InvalidParameter):
            parse_input_default(port, 1.0)
