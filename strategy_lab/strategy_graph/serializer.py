#!/usr/bin/env python3
"""
Strategy Graph Serializer
========================

Handles serialization and deserialization of strategy graphs to/from JSON,
plus the backtest report document consumed by the dashboard.

Loading is all-or-nothing: the document is migrated, parsed with pydantic,
then rebuilt through the graph mutation API. Any failure raises a single
StrategySerializationError.
"""

import json
import math
from typing import Dict, List, Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from ..core.exceptions import StrategyEngineError, StrategySerializationError
from ..core.logger import get_logger
from ..trading.performance_tracker import trade_markers, validation_hash
from .graph import StrategyGraph, StrategyParameters
from .schema_registry import CURRENT_VERSION, schema_registry

logger = get_logger(__name__)


class ComponentDocument(BaseModel):
    """One serialized node."""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., min_length=1)
    kind: str = Field(..., min_length=1)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    inputs: Dict[str, Any] = Field(default_factory=dict)


class ConnectionDocument(BaseModel):
    """One serialized edge; uses "from"/"to" keys on the wire."""
    model_config = ConfigDict(populate_by_name=True)

    source: str = Field(..., alias="from")
    output: str
    target: str = Field(..., alias="to")
    input: str


class StrategyParametersDocument(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    symbol: Optional[str] = None
    timeframe: Optional[str] = None
    initial_capital: Optional[float] = Field(None, alias="initialCapital")
    commission: Optional[float] = None
    slippage: Optional[float] = None


class StrategyDocument(BaseModel):
    """Top-level serialized strategy."""
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    name: str = "Untitled Strategy"
    description: str = ""
    version: str = CURRENT_VERSION
    components: List[ComponentDocument] = Field(default_factory=list)
    connections: List[ConnectionDocument] = Field(default_factory=list)
    parameters: StrategyParametersDocument = Field(default_factory=StrategyParametersDocument)


class StrategySerializer:
    """Handles serialization of strategy graphs."""

    def __init__(self, default_parameters: Optional[StrategyParameters] = None):
        # Fills fields missing from a document's "parameters" block
        self.default_parameters = default_parameters or StrategyParameters()

    @staticmethod
    def to_dict(graph: StrategyGraph) -> Dict[str, Any]:
        """Convert graph to the document representation."""
        return {
            "id": graph.id,
            "name": graph.name,
            "description": graph.description,
            "version": schema_registry.get_current_version(),
            "components": [node.to_dict() for node in graph.nodes],
            "connections": [connection.to_dict() for connection in graph.connections],
            "parameters": graph.parameters.to_dict(),
        }

    def from_dict(self, data: Dict[str, Any]) -> StrategyGraph:
        """
        Rebuild a graph from a document.

        Raises:
            StrategySerializationError: on any parse, schema or structural failure
        """
        migrated = schema_registry.migrate_document(data)

        try:
            document = StrategyDocument.model_validate(migrated)
        except PydanticValidationError as e:
            raise StrategySerializationError(f"Malformed strategy document: {e}") from e

        try:
            graph = StrategyGraph(
                strategy_id=document.id or None,
                name=document.name,
                description=document.description,
                parameters=self._build_parameters(document.parameters),
            )
            for component in document.components:
                graph.add_node(component.kind, component.parameters,
                               node_id=component.id, input_defaults=component.inputs)
            for connection in document.connections:
                graph.connect((connection.source, connection.output),
                              (connection.target, connection.input))
        except StrategyEngineError as e:
            raise StrategySerializationError(
                f"Invalid strategy document: {e.message}"
            ) from e

        logger.debug("strategy_serializer.loaded", {
            "strategy_id": graph.id,
            "source_version": data.get("version") if isinstance(data, dict) else None,
            "nodes": len(graph.nodes),
            "connections": len(graph.connections),
        })
        return graph

    def _build_parameters(self, document: StrategyParametersDocument) -> StrategyParameters:
        supplied = document.model_dump(exclude_none=True)
        return self.default_parameters.updated(**supplied)

    def serialize(self, graph: StrategyGraph) -> str:
        """Serialize graph to JSON string."""
        return json.dumps(self.to_dict(graph), indent=2)

    def deserialize(self, json_str: str) -> StrategyGraph:
        """Deserialize graph from JSON string."""
        try:
            data = json.loads(json_str)
        except (json.JSONDecodeError, TypeError) as e:
            raise StrategySerializationError(f"Strategy document is not valid JSON: {e}") from e
        return self.from_dict(data)

    def save_to_file(self, graph: StrategyGraph, filepath: str) -> None:
        """Save graph to JSON file."""
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(graph), f, indent=2)

    def load_from_file(self, filepath: str) -> StrategyGraph:
        """Load graph from JSON file."""
        with open(filepath, 'r', encoding='utf-8') as f:
            return self.deserialize(f.read())


def _finite_or_none(value: float) -> Optional[float]:
    return None if math.isinf(value) or math.isnan(value) else value


def build_report(result) -> Dict[str, Any]:
    """
    Convert a BacktestResult into the dashboard report document.

    profitFactor and any infinite advanced metric (e.g. sortinoRatio with no
    losing period) are null.
    """
    warnings = []
    if result.skipped_timesteps > 0:
        warnings.append(f"{result.skipped_timesteps} timesteps skipped due to insufficient history")
    warnings.extend(result.warnings)

    return {
        "strategyId": result.strategy_id,
        "totalReturn": result.total_return,
        "sharpeRatio": result.sharpe_ratio,
        "maxDrawdown": result.max_drawdown,
        "winRate": result.win_rate,
        "totalTrades": result.total_trades,
        "profitFactor": _finite_or_none(result.profit_factor),
        "initialCapital": result.initial_capital,
        "finalEquity": result.final_equity,
        "equityCurve": [
            {"time": point.time.isoformat(), "equity": point.equity}
            for point in result.equity_curve
        ],
        "trades": [trade.to_dict() for trade in result.trades],
        "markers": trade_markers(result),
        "signals": result.signals,
        "evaluatedTimesteps": result.evaluated_timesteps,
        "skippedTimesteps": result.skipped_timesteps,
        "advancedMetrics": {
            key: _finite_or_none(value) if isinstance(value, float) else value
            for key, value in result.advanced.to_dict().items()
        },
        "warnings": warnings,
        "validationHash": validation_hash(result),
    }
