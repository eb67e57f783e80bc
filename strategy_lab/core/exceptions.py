"""
Core Exceptions - Strategy Lab
==============================
Centralized exception definitions for the strategy composition engine.

Structural errors are raised synchronously by graph mutations and leave the
graph untouched. Fatal errors abort a whole load or run.
"""

from typing import Any, Dict, List, Optional


class StrategyEngineError(Exception):
    """Base exception for the strategy engine."""

    error_type = "strategy_engine_error"

    def __init__(self, message: str, node_id: Optional[str] = None,
                 connection_id: Optional[str] = None):
        self.message = message
        self.node_id = node_id
        self.connection_id = connection_id
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.error_type,
            "message": self.message,
            "node_id": self.node_id,
            "connection_id": self.connection_id,
        }


# --- Structural errors (graph mutations) ---

class StrategyGraphError(StrategyEngineError):
    """Base for errors raised by graph-mutation calls."""

    error_type = "structural_error"


class UnknownComponentKind(StrategyGraphError):
    """
    Raised when a component kind is not present in the catalog.

    HTTP Status: 400 Bad Request
    """

    error_type = "unknown_component_kind"

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"Unknown component kind: {kind}")


class InvalidParameter(StrategyGraphError):
    """
    Raised when a parameter value violates its schema.

    HTTP Status: 400 Bad Request
    """

    error_type = "invalid_parameter"

    def __init__(self, parameter: str, reason: str, node_id: Optional[str] = None):
        self.parameter = parameter
        self.reason = reason
        super().__init__(f"Invalid parameter '{parameter}': {reason}", node_id=node_id)


class DuplicateNode(StrategyGraphError):
    error_type = "duplicate_node"

    def __init__(self, node_id: str):
        super().__init__(f"Node already exists: {node_id}", node_id=node_id)


class UnknownNode(StrategyGraphError):
    error_type = "unknown_node"

    def __init__(self, node_id: str):
        super().__init__(f"Node not found: {node_id}", node_id=node_id)


class UnknownPort(StrategyGraphError):
    error_type = "unknown_port"

    def __init__(self, node_id: str, port: str, direction: str):
        self.port = port
        self.direction = direction
        super().__init__(f"Node {node_id} has no {direction} port '{port}'", node_id=node_id)


class UnknownConnection(StrategyGraphError):
    error_type = "unknown_connection"

    def __init__(self, connection_id: str):
        super().__init__(f"Connection not found: {connection_id}", connection_id=connection_id)


class PortTypeMismatch(StrategyGraphError):
    """
    Raised when connecting ports whose value types differ.

    HTTP Status: 400 Bad Request
    """

    error_type = "port_type_mismatch"

    def __init__(self, connection_id: str, source_type: str, target_type: str,
                 node_id: Optional[str] = None):
        self.source_type = source_type
        self.target_type = target_type
        super().__init__(
            f"Cannot connect {source_type} output to {target_type} input ({connection_id})",
            node_id=node_id,
            connection_id=connection_id,
        )


class PortAlreadyBound(StrategyGraphError):
    """Raised when the target input already has an incoming connection."""

    error_type = "port_already_bound"

    def __init__(self, node_id: str, port: str, existing_connection_id: str):
        self.port = port
        self.existing_connection_id = existing_connection_id
        super().__init__(
            f"Input '{port}' of node {node_id} is already bound by {existing_connection_id}",
            node_id=node_id,
            connection_id=existing_connection_id,
        )


class CycleDetected(StrategyGraphError):
    """Raised when a connection would close a cycle."""

    error_type = "cycle_detected"

    def __init__(self, connection_id: str, path: Optional[List[str]] = None):
        self.path = path or []
        detail = f" via {' -> '.join(self.path)}" if self.path else ""
        super().__init__(
            f"Connection {connection_id} would create a cycle{detail}",
            connection_id=connection_id,
        )


# --- Validation / evaluation ---

class StrategyValidationFailed(StrategyEngineError):
    """
    Raised when evaluation is requested on a graph that fails validation.

    HTTP Status: 422 Unprocessable Entity
    """

    error_type = "validation_failed"

    def __init__(self, errors: List[Any]):
        self.errors = list(errors)
        super().__init__(f"Strategy failed validation with {len(self.errors)} error(s)")

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["errors"] = [e.to_dict() for e in self.errors]
        return payload


class BacktestCancelled(StrategyEngineError):
    """Raised when a run observes its cancellation token. No partial result exists."""

    error_type = "backtest_cancelled"

    def __init__(self, timesteps_processed: int):
        self.timesteps_processed = timesteps_processed
        super().__init__(f"Backtest cancelled after {timesteps_processed} timesteps")


# --- Fatal input errors ---

class StrategySerializationError(StrategyEngineError):
    """
    Raised when a serialized strategy cannot be parsed into the schema.

    The load is aborted entirely; nothing is partially applied.
    """

    error_type = "serialization_error"


class MarketDataError(StrategyEngineError):
    """Raised for malformed or out-of-order market data series."""

    error_type = "market_data_error"
