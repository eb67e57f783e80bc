#!/usr/bin/env python3
"""
Strategy Graph Component Catalog
================================

Canonical definitions for every component a strategy graph can contain.
Each entry declares typed input/output ports and a typed parameter schema;
nodes are validated against these at construction time.

The catalog is built once at import and is read-only afterwards.
"""

from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
from dataclasses import dataclass, field
from enum import Enum

from ..core.exceptions import InvalidParameter, UnknownComponentKind


class ComponentKind(Enum):
    """Strategy component categories."""
    INDICATOR = "indicator"
    CONDITION = "condition"
    ACTION = "action"
    RISK = "risk"


class DataType(Enum):
    """Value types that can flow along a connection."""
    NUMERIC = "numeric"
    BOOLEAN = "boolean"


class ParameterType(Enum):
    INTEGER = "integer"
    FLOAT = "float"
    STRING = "string"
    BOOLEAN = "boolean"


class MarketField(Enum):
    """Bar fields an unconnected numeric input can read from."""
    OPEN = "open"
    HIGH = "high"
    LOW = "low"
    CLOSE = "close"
    VOLUME = "volume"


@dataclass(frozen=True)
class ParameterRef:
    """Input default that reads the node's own parameter value."""
    name: str


@dataclass(frozen=True)
class PortDefinition:
    """Definition of a node port."""
    name: str
    data_type: DataType
    default: Any = None  # MarketField, ParameterRef, literal, or None (must be connected)
    description: str = ""

    @property
    def has_default(self) -> bool:
        return self.default is not None

    def to_dict(self) -> Dict[str, Any]:
        default = self.default
        if isinstance(default, MarketField):
            default = default.value
        elif isinstance(default, ParameterRef):
            default = {"parameter": default.name}
        return {
            "name": self.name,
            "valueType": self.data_type.value,
            "default": default,
            "description": self.description,
        }


@dataclass(frozen=True)
class ParameterDefinition:
    """Definition of a node parameter."""
    name: str
    type: ParameterType
    default: Any
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    min_exclusive: bool = False
    choices: Tuple[str, ...] = ()
    description: str = ""

    def coerce(self, value: Any) -> Any:
        """Return the value in its canonical type or raise InvalidParameter."""
        if self.type == ParameterType.INTEGER:
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidParameter(self.name, f"expected integer, got {type(value).__name__}")
        elif self.type == ParameterType.FLOAT:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidParameter(self.name, f"expected number, got {type(value).__name__}")
            value = float(value)
        elif self.type == ParameterType.STRING:
            if not isinstance(value, str):
                raise InvalidParameter(self.name, f"expected string, got {type(value).__name__}")
        elif self.type == ParameterType.BOOLEAN:
            if not isinstance(value, bool):
                raise InvalidParameter(self.name, f"expected boolean, got {type(value).__name__}")

        if self.min_value is not None:
            if self.min_exclusive and value <= self.min_value:
                raise InvalidParameter(self.name, f"must be > {self.min_value}")
            if not self.min_exclusive and value < self.min_value:
                raise InvalidParameter(self.name, f"must be >= {self.min_value}")
        if self.max_value is not None and value > self.max_value:
            raise InvalidParameter(self.name, f"must be <= {self.max_value}")
        if self.choices and value not in self.choices:
            raise InvalidParameter(self.name, f"must be one of: {list(self.choices)}")
        return value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.value,
            "default": self.default,
            "min": self.min_value,
            "max": self.max_value,
            "choices": list(self.choices),
            "description": self.description,
        }


@dataclass(frozen=True)
class ComponentDefinition:
    """Complete, immutable definition of a strategy component."""
    name: str
    kind: ComponentKind
    title: str
    description: str
    inputs: Tuple[PortDefinition, ...] = ()
    outputs: Tuple[PortDefinition, ...] = ()
    parameters: Tuple[ParameterDefinition, ...] = ()
    # Cross-parameter rule: returns (parameter, reason) on violation
    cross_check: Optional[Callable[[Mapping[str, Any]], Optional[Tuple[str, str]]]] = field(
        default=None, compare=False
    )

    @property
    def parameter_schema(self) -> Mapping[str, ParameterDefinition]:
        return MappingProxyType({p.name: p for p in self.parameters})

    def get_input_port(self, name: str) -> Optional[PortDefinition]:
        return next((p for p in self.inputs if p.name == name), None)

    def get_output_port(self, name: str) -> Optional[PortDefinition]:
        return next((p for p in self.outputs if p.name == name), None)

    def default_parameters(self) -> Dict[str, Any]:
        return {p.name: p.default for p in self.parameters}

    def validate_parameters(self, supplied: Optional[Mapping[str, Any]] = None,
                            base: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """
        Build a complete, validated parameter set.

        Args:
            supplied: Parameters given by the caller (may be partial)
            base: Starting values (defaults to the schema defaults)

        Returns:
            New dict with every schema key present

        Raises:
            InvalidParameter: unknown key, wrong type, out of bounds or bad choice
        """
        schema = self.parameter_schema
        resolved = dict(base) if base is not None else self.default_parameters()

        for name, value in (supplied or {}).items():
            param_def = schema.get(name)
            if param_def is None:
                raise InvalidParameter(name, f"unknown parameter for component '{self.name}'")
            resolved[name] = param_def.coerce(value)

        if self.cross_check is not None:
            violation = self.cross_check(resolved)
            if violation:
                raise InvalidParameter(*violation)

        return resolved

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "title": self.title,
            "description": self.description,
            "inputs": [p.to_dict() for p in self.inputs],
            "outputs": [p.to_dict() for p in self.outputs],
            "parameters": [p.to_dict() for p in self.parameters],
        }


def _price_input(name: str = "price") -> PortDefinition:
    return PortDefinition(name, DataType.NUMERIC, default=MarketField.CLOSE,
                          description="Price series (defaults to bar close)")


def _period(default: int, minimum: int = 1) -> ParameterDefinition:
    return ParameterDefinition("period", ParameterType.INTEGER, default, min_value=minimum,
                               max_value=1000, description="Lookback period in bars")


def _check_macd(params: Mapping[str, Any]) -> Optional[Tuple[str, str]]:
    if params["fastPeriod"] >= params["slowPeriod"]:
        return "fastPeriod", "must be smaller than slowPeriod"
    return None


def _check_rsi(params: Mapping[str, Any]) -> Optional[Tuple[str, str]]:
    if params["oversold"] >= params["overbought"]:
        return "oversold", "must be smaller than overbought"
    return None


# Indicator Components
INDICATOR_COMPONENTS = [
    ComponentDefinition(
        name="sma",
        kind=ComponentKind.INDICATOR,
        title="Simple Moving Average",
        description="Calculate simple moving average over specified period",
        inputs=(_price_input(),),
        outputs=(PortDefinition("value", DataType.NUMERIC),),
        parameters=(_period(20),),
    ),
    ComponentDefinition(
        name="ema",
        kind=ComponentKind.INDICATOR,
        title="Exponential Moving Average",
        description="Calculate exponential moving average with more weight on recent prices",
        inputs=(_price_input(),),
        outputs=(PortDefinition("value", DataType.NUMERIC),),
        parameters=(_period(12),),
    ),
    ComponentDefinition(
        name="rsi",
        kind=ComponentKind.INDICATOR,
        title="RSI",
        description="Relative Strength Index momentum oscillator",
        inputs=(_price_input(),),
        outputs=(
            PortDefinition("value", DataType.NUMERIC, description="RSI value 0-100"),
            PortDefinition("oversoldSignal", DataType.BOOLEAN, description="value < oversold"),
            PortDefinition("overboughtSignal", DataType.BOOLEAN, description="value > overbought"),
        ),
        parameters=(
            _period(14, minimum=2),
            ParameterDefinition("oversold", ParameterType.FLOAT, 30.0, min_value=0.0, max_value=100.0),
            ParameterDefinition("overbought", ParameterType.FLOAT, 70.0, min_value=0.0, max_value=100.0),
        ),
        cross_check=_check_rsi,
    ),
    ComponentDefinition(
        name="bollinger",
        kind=ComponentKind.INDICATOR,
        title="Bollinger Bands",
        description="Volatility bands around moving average",
        inputs=(_price_input(),),
        outputs=(
            PortDefinition("upper", DataType.NUMERIC),
            PortDefinition("middle", DataType.NUMERIC),
            PortDefinition("lower", DataType.NUMERIC),
        ),
        parameters=(
            _period(20, minimum=2),
            ParameterDefinition("stdDev", ParameterType.FLOAT, 2.0, min_value=0.1, max_value=10.0,
                                description="Band width in standard deviations"),
        ),
    ),
    ComponentDefinition(
        name="macd",
        kind=ComponentKind.INDICATOR,
        title="MACD",
        description="Moving Average Convergence Divergence",
        inputs=(_price_input(),),
        outputs=(
            PortDefinition("macdLine", DataType.NUMERIC),
            PortDefinition("signalLine", DataType.NUMERIC),
            PortDefinition("histogram", DataType.NUMERIC),
        ),
        parameters=(
            ParameterDefinition("fastPeriod", ParameterType.INTEGER, 12, min_value=1, max_value=1000),
            ParameterDefinition("slowPeriod", ParameterType.INTEGER, 26, min_value=1, max_value=1000),
            ParameterDefinition("signalPeriod", ParameterType.INTEGER, 9, min_value=1, max_value=1000),
        ),
        cross_check=_check_macd,
    ),
]

# Condition Components
CONDITION_COMPONENTS = [
    ComponentDefinition(
        name="crossover",
        kind=ComponentKind.CONDITION,
        title="Crossover",
        description="True while one line is above (or below) another by more than threshold",
        inputs=(
            PortDefinition("line1", DataType.NUMERIC),
            PortDefinition("line2", DataType.NUMERIC),
        ),
        outputs=(PortDefinition("signal", DataType.BOOLEAN),),
        parameters=(
            ParameterDefinition("threshold", ParameterType.FLOAT, 0.0, min_value=0.0),
            ParameterDefinition("direction", ParameterType.STRING, "above", choices=("above", "below")),
        ),
    ),
    ComponentDefinition(
        name="threshold",
        kind=ComponentKind.CONDITION,
        title="Threshold",
        description="Check if value is above/below threshold",
        inputs=(
            PortDefinition("value", DataType.NUMERIC),
            PortDefinition("reference", DataType.NUMERIC, default=ParameterRef("threshold"),
                           description="Comparison level (defaults to the threshold parameter)"),
        ),
        outputs=(PortDefinition("signal", DataType.BOOLEAN),),
        parameters=(
            ParameterDefinition("threshold", ParameterType.FLOAT, 50.0),
            ParameterDefinition(
                "operator", ParameterType.STRING, "below",
                choices=("above", "below", "above_or_equal", "below_or_equal", "equal"),
            ),
        ),
    ),
    ComponentDefinition(
        name="and_gate",
        kind=ComponentKind.CONDITION,
        title="AND Gate",
        description="All inputs must be true",
        inputs=(
            PortDefinition("signal1", DataType.BOOLEAN),
            PortDefinition("signal2", DataType.BOOLEAN),
        ),
        outputs=(PortDefinition("signal", DataType.BOOLEAN),),
    ),
    ComponentDefinition(
        name="or_gate",
        kind=ComponentKind.CONDITION,
        title="OR Gate",
        description="At least one input must be true",
        inputs=(
            PortDefinition("signal1", DataType.BOOLEAN),
            PortDefinition("signal2", DataType.BOOLEAN),
        ),
        outputs=(PortDefinition("signal", DataType.BOOLEAN),),
    ),
]


def _order_parameters() -> Tuple[ParameterDefinition, ...]:
    return (
        ParameterDefinition("quantity", ParameterType.FLOAT, 1.0, min_value=0.0, min_exclusive=True,
                            max_value=1e9, description="Order size in base units"),
        ParameterDefinition("orderType", ParameterType.STRING, "market", choices=("market", "limit")),
        ParameterDefinition("trigger", ParameterType.STRING, "level", choices=("level", "edge"),
                            description="level: every true step; edge: false->true transitions only"),
    )


# Action Components
ACTION_COMPONENTS = [
    ComponentDefinition(
        name="buy_order",
        kind=ComponentKind.ACTION,
        title="Buy Order",
        description="Execute a buy order",
        inputs=(PortDefinition("signal", DataType.BOOLEAN),),
        parameters=_order_parameters(),
    ),
    ComponentDefinition(
        name="sell_order",
        kind=ComponentKind.ACTION,
        title="Sell Order",
        description="Execute a sell order",
        inputs=(PortDefinition("signal", DataType.BOOLEAN),),
        parameters=_order_parameters(),
    ),
]

# Risk Management Components
RISK_COMPONENTS = [
    ComponentDefinition(
        name="stop_loss",
        kind=ComponentKind.RISK,
        title="Stop Loss",
        description="Automatic stop loss protection",
        inputs=(_price_input("entryPrice"),),
        outputs=(PortDefinition("stopPrice", DataType.NUMERIC),),
        parameters=(
            ParameterDefinition("percentage", ParameterType.FLOAT, 5.0, min_value=0.01, max_value=100.0),
        ),
    ),
    ComponentDefinition(
        name="take_profit",
        kind=ComponentKind.RISK,
        title="Take Profit",
        description="Automatic profit taking",
        inputs=(_price_input("entryPrice"),),
        outputs=(PortDefinition("targetPrice", DataType.NUMERIC),),
        parameters=(
            ParameterDefinition("percentage", ParameterType.FLOAT, 10.0, min_value=0.01, max_value=1000.0),
        ),
    ),
]

# Complete component catalog
ALL_COMPONENTS = INDICATOR_COMPONENTS + CONDITION_COMPONENTS + ACTION_COMPONENTS + RISK_COMPONENTS

COMPONENT_CATALOG: Mapping[str, ComponentDefinition] = MappingProxyType(
    {component.name: component for component in ALL_COMPONENTS}
)


def lookup(kind: str) -> ComponentDefinition:
    """Get a component definition by name, raising UnknownComponentKind."""
    try:
        return COMPONENT_CATALOG[kind]
    except (KeyError, TypeError):
        raise UnknownComponentKind(kind) from None


def get_component_definition(kind: str) -> Optional[ComponentDefinition]:
    """Get a component definition by name, or None."""
    return COMPONENT_CATALOG.get(kind)


def get_components_by_kind(kind: ComponentKind) -> List[ComponentDefinition]:
    """Get all components of a specific kind."""
    return [component for component in ALL_COMPONENTS if component.kind == kind]


def list_components() -> List[str]:
    return [component.name for component in ALL_COMPONENTS]


def catalog_as_dict() -> Dict[str, List[Dict[str, Any]]]:
    """Catalog grouped by kind, for the UI component palette."""
    return {
        kind.value: [component.to_dict() for component in get_components_by_kind(kind)]
        for kind in ComponentKind
    }


def parse_input_default(port: PortDefinition, value: Any) -> Any:
    """
    Convert a caller-supplied input default into its runtime form.

    Numeric ports accept a bar field name ("close", ...) or a number;
    boolean ports accept a bool.

    Raises:
        InvalidParameter: value does not fit the port type
    """
    if port.data_type == DataType.NUMERIC:
        if isinstance(value, MarketField):
            return value
        if isinstance(value, str):
            try:
                return MarketField(value)
            except ValueError:
                raise InvalidParameter(
                    port.name, f"unknown market field '{value}'; expected one of "
                               f"{[f.value for f in MarketField]}"
                ) from None
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidParameter(port.name, "numeric input default must be a number or market field")
        return float(value)

    if not isinstance(value, bool):
        raise InvalidParameter(port.name, "boolean input default must be true or false")
    return value


def format_input_default(value: Any) -> Any:
    """Inverse of parse_input_default for serialization."""
    if isinstance(value, MarketField):
        return value.value
    return value
