#!/usr/bin/env python3
"""
Graph Adapter - Strategy Graph to Execution Plan Translation
===========================================================

Translates a validated strategy graph into an immutable execution plan for
the StrategyEvaluator: topological order, dependency sets and a resolved
source for every input port.
"""

import heapq
from typing import Dict, List, Any, Optional, Set
from dataclasses import dataclass, field
from enum import Enum

from ..core.exceptions import StrategyValidationFailed
from ..core.logger import get_logger
from ..strategy_graph.graph import StrategyGraph, Node
from ..strategy_graph.node_catalog import ComponentKind, MarketField, ParameterRef
from ..strategy_graph.validators import ValidationError, validate_strategy

logger = get_logger(__name__)


class InputSource(Enum):
    """Where an input port reads its value from."""
    UPSTREAM = "upstream"
    MARKET_FIELD = "market_field"
    CONSTANT = "constant"


@dataclass(frozen=True)
class InputBinding:
    """Resolved source of one input port."""
    port: str
    source: InputSource
    source_node: Optional[str] = None
    source_port: Optional[str] = None
    market_field: Optional[str] = None
    constant: Any = None


@dataclass
class ExecutionNode:
    """A node in the execution plan."""
    id: str
    kind: str
    component_kind: ComponentKind
    parameters: Dict[str, Any]
    inputs: Dict[str, InputBinding] = field(default_factory=dict)
    dependencies: Set[str] = field(default_factory=set)
    dependents: Set[str] = field(default_factory=set)
    insertion_index: int = 0
    execution_order: int = 0


@dataclass
class ExecutionPlan:
    """Complete execution plan for a strategy graph."""
    strategy_id: str
    name: str
    nodes: Dict[str, ExecutionNode] = field(default_factory=dict)
    execution_order: List[str] = field(default_factory=list)

    def ordered_nodes(self) -> List[ExecutionNode]:
        return [self.nodes[node_id] for node_id in self.execution_order]


class GraphAdapter:
    """
    Adapts strategy graphs to executable plans.

    The plan copies node parameters, so later edits to the graph do not
    affect a plan that has already been built.
    """

    def build_plan(self, graph: StrategyGraph, validate: bool = True) -> ExecutionPlan:
        """
        Convert a strategy graph to an execution plan.

        Args:
            graph: The strategy graph to adapt
            validate: Run the graph validator first

        Returns:
            Execution plan ready for evaluation

        Raises:
            StrategyValidationFailed: If the graph has validation errors
        """
        if validate:
            errors = validate_strategy(graph)
            if errors:
                raise StrategyValidationFailed(errors)

        execution_nodes = self._create_execution_nodes(graph)
        self._build_dependencies(execution_nodes, graph)
        execution_order = self._topological_sort(execution_nodes)

        plan = ExecutionPlan(
            strategy_id=graph.id,
            name=graph.name,
            nodes=execution_nodes,
            execution_order=execution_order,
        )

        logger.debug("graph_adapter.plan_built", {
            "strategy_id": graph.id,
            "nodes": len(execution_nodes),
            "execution_order": execution_order,
        })
        return plan

    def _create_execution_nodes(self, graph: StrategyGraph) -> Dict[str, ExecutionNode]:
        """Create execution nodes from graph nodes."""
        execution_nodes = {}

        for index, node in enumerate(graph.nodes):
            execution_nodes[node.id] = ExecutionNode(
                id=node.id,
                kind=node.kind,
                component_kind=node.component_kind,
                parameters=dict(node.parameters),
                inputs=self._resolve_inputs(graph, node),
                insertion_index=index,
            )

        return execution_nodes

    @staticmethod
    def _resolve_inputs(graph: StrategyGraph, node: Node) -> Dict[str, InputBinding]:
        """Bind every input to its upstream output or to its default."""
        bindings = {}
        for port in node.definition.inputs:
            upstream = graph.input_source(node.id, port.name)
            if upstream is not None:
                bindings[port.name] = InputBinding(
                    port.name, InputSource.UPSTREAM, source_node=upstream[0], source_port=upstream[1]
                )
                continue

            default = node.input_default(port.name)
            if isinstance(default, MarketField):
                bindings[port.name] = InputBinding(port.name, InputSource.MARKET_FIELD,
                                                   market_field=default.value)
            elif isinstance(default, ParameterRef):
                bindings[port.name] = InputBinding(port.name, InputSource.CONSTANT,
                                                   constant=node.parameters[default.name])
            else:
                # None here means unconnected without default; validation rejects it
                bindings[port.name] = InputBinding(port.name, InputSource.CONSTANT, constant=default)
        return bindings

    def _build_dependencies(self, execution_nodes: Dict[str, ExecutionNode],
                            graph: StrategyGraph) -> None:
        """Build dependency relationships between execution nodes."""
        for connection in graph.connections:
            source_node = execution_nodes.get(connection.source_node)
            target_node = execution_nodes.get(connection.target_node)

            if source_node and target_node:
                # Source must execute before target
                target_node.dependencies.add(connection.source_node)
                source_node.dependents.add(connection.target_node)

    def _topological_sort(self, execution_nodes: Dict[str, ExecutionNode]) -> List[str]:
        """
        Kahn's algorithm; ties broken by node insertion order.

        Returns:
            List of node IDs in execution order
        """
        result = []
        in_degree = {}
        ready = []

        for node in execution_nodes.values():
            in_degree[node.id] = len(node.dependencies)
            if in_degree[node.id] == 0:
                heapq.heappush(ready, (node.insertion_index, node.id))

        while ready:
            _, current_id = heapq.heappop(ready)
            execution_nodes[current_id].execution_order = len(result)
            result.append(current_id)

            for dependent_id in execution_nodes[current_id].dependents:
                in_degree[dependent_id] -= 1
                if in_degree[dependent_id] == 0:
                    heapq.heappush(ready, (execution_nodes[dependent_id].insertion_index, dependent_id))

        if len(result) != len(execution_nodes):
            remaining = sorted(set(execution_nodes) - set(result))
            raise StrategyValidationFailed([
                ValidationError("cycle_detected", f"Graph contains cycles among {remaining}",
                                node_id=remaining[0])
            ])

        return result


def build_execution_plan(graph: StrategyGraph) -> ExecutionPlan:
    """Validate a graph and build its execution plan."""
    return GraphAdapter().build_plan(graph)
