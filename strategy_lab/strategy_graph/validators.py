#!/usr/bin/env python3
"""
Strategy Graph Validators
========================

On-demand validation run before evaluation. Graph edits may pass through
invalid intermediate states; the evaluator refuses to run until validation
returns no errors.
"""

from typing import Dict, List, Any, Iterator, Optional, Tuple

from .graph import StrategyGraph, Node
from .node_catalog import ComponentKind

_GREY = 1
_BLACK = 2


class ValidationError:
    """Represents a validation error with context."""

    def __init__(self, error_type: str, message: str, node_id: Optional[str] = None,
                 connection_id: Optional[str] = None, severity: str = "error"):
        self.error_type = error_type
        self.message = message
        self.node_id = node_id
        self.connection_id = connection_id
        self.severity = severity  # "error", "warning"

    @property
    def reason(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary."""
        return {
            "type": self.error_type,
            "message": self.message,
            "node_id": self.node_id,
            "connection_id": self.connection_id,
            "severity": self.severity
        }

    def __repr__(self):
        return f"ValidationError({self.error_type!r}, node_id={self.node_id!r}, connection_id={self.connection_id!r})"


class GraphValidator:
    """Validates strategy graphs for evaluation."""

    def __init__(self):
        self.errors: List[ValidationError] = []
        self.warnings: List[ValidationError] = []

    def validate(self, graph: StrategyGraph) -> Tuple[List[ValidationError], List[ValidationError]]:
        """Perform complete validation of the strategy graph."""
        self.errors = []
        self.warnings = []

        # (a) Required inputs
        self._validate_inputs(graph)

        # (b) Acyclicity
        self._validate_acyclic(graph)

        # (c) Connection integrity
        self._validate_connections(graph)

        self._collect_warnings(graph)

        return self.errors, self.warnings

    def _validate_inputs(self, graph: StrategyGraph) -> None:
        """Every input is connected or has a usable default; action signals must be connected."""
        for node in graph.nodes:
            is_action = node.component_kind == ComponentKind.ACTION
            for port in node.definition.inputs:
                if graph.input_source(node.id, port.name) is not None:
                    continue
                if is_action:
                    self.errors.append(ValidationError(
                        "missing_input",
                        f"Action input '{port.name}' must be connected",
                        node_id=node.id
                    ))
                elif node.input_default(port.name) is None:
                    self.errors.append(ValidationError(
                        "missing_input",
                        f"Required input '{port.name}' not connected and has no default",
                        node_id=node.id
                    ))

    def _validate_acyclic(self, graph: StrategyGraph) -> None:
        """Iterative DFS with white/grey/black colouring; reports the edge that closes each cycle."""
        adj_list: Dict[str, List[Tuple[str, str]]] = {node_id: [] for node_id in graph.node_ids}
        for connection in graph.connections:
            if connection.source_node in adj_list:
                adj_list[connection.source_node].append((connection.target_node, connection.id))

        # Absent = white, GREY = on the current path, BLACK = finished
        colour: Dict[str, int] = {}

        for root in adj_list:
            if root in colour:
                continue
            colour[root] = _GREY
            stack: List[Tuple[str, Iterator[Tuple[str, str]]]] = [(root, iter(adj_list[root]))]
            while stack:
                node_id, edges = stack[-1]
                advanced = False
                for neighbor, connection_id in edges:
                    state = colour.get(neighbor)
                    if state is None:
                        colour[neighbor] = _GREY
                        stack.append((neighbor, iter(adj_list.get(neighbor, []))))
                        advanced = True
                        break
                    if state == _GREY:
                        self.errors.append(ValidationError(
                            "cycle_detected", f"Connection {connection_id} closes a cycle",
                            node_id=neighbor, connection_id=connection_id
                        ))
                if not advanced:
                    colour[node_id] = _BLACK
                    stack.pop()

    def _validate_connections(self, graph: StrategyGraph) -> None:
        """Connections must reference existing nodes/ports of matching type."""
        for connection in graph.connections:
            if not graph.has_node(connection.source_node):
                self.errors.append(ValidationError(
                    "orphan_connection", f"Source node does not exist: {connection.source_node}",
                    connection_id=connection.id
                ))
                continue
            if not graph.has_node(connection.target_node):
                self.errors.append(ValidationError(
                    "orphan_connection", f"Target node does not exist: {connection.target_node}",
                    connection_id=connection.id
                ))
                continue

            source_port = graph.get_node(connection.source_node).definition.get_output_port(connection.source_port)
            target_port = graph.get_node(connection.target_node).definition.get_input_port(connection.target_port)

            if source_port is None or target_port is None:
                missing = connection.source_port if source_port is None else connection.target_port
                self.errors.append(ValidationError(
                    "invalid_port", f"Port '{missing}' does not exist",
                    node_id=connection.source_node if source_port is None else connection.target_node,
                    connection_id=connection.id
                ))
                continue

            if source_port.data_type != target_port.data_type:
                self.errors.append(ValidationError(
                    "type_mismatch",
                    f"Data type mismatch: {source_port.data_type.value} -> {target_port.data_type.value}",
                    node_id=connection.target_node, connection_id=connection.id
                ))

    def _collect_warnings(self, graph: StrategyGraph) -> None:
        if not graph.nodes:
            self.warnings.append(ValidationError(
                "empty_graph", "Graph contains no nodes", severity="warning"
            ))
            return

        if not graph.nodes_of_kind(ComponentKind.ACTION):
            self.warnings.append(ValidationError(
                "no_actions", "Strategy has no action nodes and will never trade", severity="warning"
            ))

        for node in graph.nodes:
            if self._has_unused_outputs(graph, node):
                self.warnings.append(ValidationError(
                    "unused_output", f"Outputs of node '{node.id}' are not connected",
                    node_id=node.id, severity="warning"
                ))

    @staticmethod
    def _has_unused_outputs(graph: StrategyGraph, node: Node) -> bool:
        # Risk outputs are consumed by the backtest engine directly
        if node.component_kind in (ComponentKind.ACTION, ComponentKind.RISK):
            return False
        return not node.definition.outputs or not graph.outgoing(node.id)


def validate_strategy(graph: StrategyGraph) -> List[ValidationError]:
    """Return the blocking errors of a graph; an empty list means valid."""
    errors, _ = GraphValidator().validate(graph)
    return errors
