#!/usr/bin/env python3
"""
Strategy Graph Model
====================

In-memory strategy: nodes keyed by id, typed connections and the global
strategy parameters. Every mutation either applies completely or raises a
StrategyGraphError and leaves the graph unchanged.
"""

import uuid
from dataclasses import dataclass, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ..core.exceptions import (
    CycleDetected,
    DuplicateNode,
    InvalidParameter,
    PortAlreadyBound,
    PortTypeMismatch,
    UnknownConnection,
    UnknownNode,
    UnknownPort,
)
from ..core.logger import get_logger
from ..infrastructure.config.settings import PERIODS_PER_YEAR, StrategyDefaultsSettings
from .node_catalog import ComponentDefinition, ComponentKind, format_input_default, lookup, parse_input_default

logger = get_logger(__name__)

PortRef = Tuple[str, str]


@dataclass(frozen=True)
class StrategyParameters:
    """Global strategy settings shared by every node."""
    symbol: str = "BTCUSDT"
    timeframe: str = "1h"
    initial_capital: float = 10000.0
    commission: float = 0.001
    slippage: float = 0.0

    def __post_init__(self):
        if not self.symbol:
            raise InvalidParameter("symbol", "must not be empty")
        if self.timeframe not in PERIODS_PER_YEAR:
            raise InvalidParameter("timeframe", f"must be one of: {list(PERIODS_PER_YEAR)}")
        if self.initial_capital <= 0:
            raise InvalidParameter("initialCapital", "must be > 0")
        if not 0 <= self.commission < 1:
            raise InvalidParameter("commission", "must be in [0, 1)")
        if not 0 <= self.slippage < 1:
            raise InvalidParameter("slippage", "must be in [0, 1)")

    @property
    def periods_per_year(self) -> int:
        return PERIODS_PER_YEAR[self.timeframe]

    @classmethod
    def from_settings(cls, settings: StrategyDefaultsSettings) -> 'StrategyParameters':
        return cls(
            symbol=settings.symbol,
            timeframe=settings.timeframe,
            initial_capital=settings.initial_capital,
            commission=settings.commission,
            slippage=settings.slippage,
        )

    def updated(self, **changes) -> 'StrategyParameters':
        for key in changes:
            if key not in self.__dataclass_fields__:
                raise InvalidParameter(key, f"unknown strategy parameter, expected one of: "
                                            f"{list(self.__dataclass_fields__)}")
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "timeframe": self.timeframe,
            "initialCapital": self.initial_capital,
            "commission": self.commission,
            "slippage": self.slippage,
        }


class Node:
    """An instantiated catalog component."""

    def __init__(self, node_id: str, definition: ComponentDefinition,
                 parameters: Dict[str, Any], input_defaults: Optional[Dict[str, Any]] = None):
        self.id = node_id
        self.definition = definition
        self.parameters = parameters
        self.input_defaults = input_defaults or {}

    @property
    def kind(self) -> str:
        return self.definition.name

    @property
    def component_kind(self) -> ComponentKind:
        return self.definition.kind

    def input_default(self, port: str) -> Any:
        """Node override if set, otherwise the catalog default (may be None)."""
        if port in self.input_defaults:
            return self.input_defaults[port]
        port_def = self.definition.get_input_port(port)
        return port_def.default if port_def else None

    def copy(self) -> 'Node':
        return Node(self.id, self.definition, dict(self.parameters), dict(self.input_defaults))

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "kind": self.kind,
            "parameters": dict(self.parameters),
        }
        if self.input_defaults:
            data["inputs"] = {port: format_input_default(v) for port, v in self.input_defaults.items()}
        return data

    def __eq__(self, other):
        if not isinstance(other, Node):
            return NotImplemented
        return (self.id == other.id and self.kind == other.kind
                and self.parameters == other.parameters
                and self.input_defaults == other.input_defaults)

    def __repr__(self):
        return f"Node(id={self.id!r}, kind={self.kind!r})"


@dataclass(frozen=True)
class Connection:
    """Directed edge between an output port and an input port."""
    source_node: str
    source_port: str
    target_node: str
    target_port: str

    @property
    def id(self) -> str:
        return make_connection_id((self.source_node, self.source_port), (self.target_node, self.target_port))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.source_node,
            "output": self.source_port,
            "to": self.target_node,
            "input": self.target_port,
        }


def make_connection_id(source: PortRef, target: PortRef) -> str:
    return f"{source[0]}.{source[1]}->{target[0]}.{target[1]}"


class StrategyGraph:
    """
    Aggregate root of a strategy.

    Nodes keep insertion order. Connections are unique per target input
    (no fan-in) and the connection set is always acyclic.
    """

    def __init__(self, strategy_id: Optional[str] = None, name: str = "Untitled Strategy",
                 description: str = "", parameters: Optional[StrategyParameters] = None):
        self.id = strategy_id or f"strategy_{uuid.uuid4().hex[:12]}"
        self.name = name
        self.description = description
        self.parameters = parameters or StrategyParameters()
        self._nodes: Dict[str, Node] = {}
        self._connections: Dict[str, Connection] = {}
        # node_id -> {input_port: connection_id}
        self._incoming: Dict[str, Dict[str, str]] = {}
        # node_id -> [connection_id, ...]
        self._outgoing: Dict[str, List[str]] = {}

    # --- queries ---

    @property
    def nodes(self) -> List[Node]:
        return list(self._nodes.values())

    @property
    def connections(self) -> List[Connection]:
        return list(self._connections.values())

    @property
    def node_ids(self) -> List[str]:
        return list(self._nodes)

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def get_node(self, node_id: str) -> Node:
        try:
            return self._nodes[node_id]
        except KeyError:
            raise UnknownNode(node_id) from None

    def get_connection(self, connection_id: str) -> Connection:
        try:
            return self._connections[connection_id]
        except KeyError:
            raise UnknownConnection(connection_id) from None

    def incoming(self, node_id: str) -> List[Connection]:
        self.get_node(node_id)
        return [self._connections[cid] for cid in self._incoming[node_id].values()]

    def outgoing(self, node_id: str) -> List[Connection]:
        self.get_node(node_id)
        return [self._connections[cid] for cid in self._outgoing[node_id]]

    def input_source(self, node_id: str, port: str) -> Optional[PortRef]:
        """Upstream (node_id, port) bound to an input, or None when unconnected."""
        self.get_node(node_id)
        connection_id = self._incoming[node_id].get(port)
        if connection_id is None:
            return None
        connection = self._connections[connection_id]
        return connection.source_node, connection.source_port

    def nodes_of_kind(self, kind: ComponentKind) -> List[Node]:
        return [node for node in self._nodes.values() if node.component_kind == kind]

    # --- mutations ---

    def add_node(self, kind: str, parameters: Optional[Mapping[str, Any]] = None,
                 node_id: Optional[str] = None,
                 input_defaults: Optional[Mapping[str, Any]] = None) -> str:
        """
        Instantiate a catalog component and add it to the graph.

        Args:
            kind: Catalog name, e.g. "sma"
            parameters: Partial parameter overrides; the rest use schema defaults
            node_id: Explicit id, generated as <kind>_<8 hex> when omitted
            input_defaults: Per-port default overrides for unconnected inputs

        Returns:
            The node id

        Raises:
            UnknownComponentKind, InvalidParameter, DuplicateNode, UnknownPort
        """
        definition = lookup(kind)

        if node_id is None:
            node_id = self._generate_node_id(kind)
        elif node_id in self._nodes:
            raise DuplicateNode(node_id)

        try:
            resolved = definition.validate_parameters(parameters)
        except InvalidParameter as e:
            raise InvalidParameter(e.parameter, e.reason, node_id=node_id) from None

        defaults = {}
        for port, value in (input_defaults or {}).items():
            defaults[port] = self._parse_input_default(node_id, definition, port, value)

        self._nodes[node_id] = Node(node_id, definition, resolved, defaults)
        self._incoming[node_id] = {}
        self._outgoing[node_id] = []

        logger.debug("strategy_graph.node_added", {"node_id": node_id, "kind": kind})
        return node_id

    def remove_node(self, node_id: str) -> None:
        """Remove a node and every connection touching it."""
        self.get_node(node_id)

        incident = list(self._incoming[node_id].values()) + list(self._outgoing[node_id])
        for connection_id in incident:
            if connection_id in self._connections:
                self._drop_connection(connection_id)

        del self._nodes[node_id]
        del self._incoming[node_id]
        del self._outgoing[node_id]

        logger.debug("strategy_graph.node_removed", {
            "node_id": node_id,
            "connections_removed": len(incident),
        })

    def connect(self, source: PortRef, target: PortRef) -> str:
        """
        Connect an output port to an input port.

        Args:
            source: (node_id, output_port)
            target: (node_id, input_port)

        Returns:
            Connection id "<source>.<port>-><target>.<port>"

        Raises:
            UnknownNode, UnknownPort, PortTypeMismatch, PortAlreadyBound, CycleDetected
        """
        source_id, source_port = source
        target_id, target_port = target
        connection_id = make_connection_id(source, target)

        source_node = self.get_node(source_id)
        target_node = self.get_node(target_id)

        output_def = source_node.definition.get_output_port(source_port)
        if output_def is None:
            raise UnknownPort(source_id, source_port, "output")
        input_def = target_node.definition.get_input_port(target_port)
        if input_def is None:
            raise UnknownPort(target_id, target_port, "input")

        if output_def.data_type != input_def.data_type:
            raise PortTypeMismatch(connection_id, output_def.data_type.value,
                                   input_def.data_type.value, node_id=target_id)

        existing = self._incoming[target_id].get(target_port)
        if existing is not None:
            raise PortAlreadyBound(target_id, target_port, existing)

        path = self._find_path(target_id, source_id)
        if path is not None:
            raise CycleDetected(connection_id, path + [target_id])

        connection = Connection(source_id, source_port, target_id, target_port)
        self._connections[connection_id] = connection
        self._incoming[target_id][target_port] = connection_id
        self._outgoing[source_id].append(connection_id)

        logger.debug("strategy_graph.connected", {"connection_id": connection_id})
        return connection_id

    def disconnect(self, connection_id: str) -> None:
        self.get_connection(connection_id)
        self._drop_connection(connection_id)
        logger.debug("strategy_graph.disconnected", {"connection_id": connection_id})

    def set_parameters(self, node_id: str, patch: Mapping[str, Any]) -> Dict[str, Any]:
        """Merge a parameter patch into a node and re-validate the whole set."""
        node = self.get_node(node_id)
        try:
            resolved = node.definition.validate_parameters(patch, base=node.parameters)
        except InvalidParameter as e:
            raise InvalidParameter(e.parameter, e.reason, node_id=node_id) from None
        node.parameters = resolved
        return dict(resolved)

    def set_input_default(self, node_id: str, port: str, value: Any) -> None:
        """Override the default of an unconnected input. None restores the catalog default."""
        node = self.get_node(node_id)
        if value is None:
            if node.definition.get_input_port(port) is None:
                raise UnknownPort(node_id, port, "input")
            node.input_defaults.pop(port, None)
            return
        node.input_defaults[port] = self._parse_input_default(node_id, node.definition, port, value)

    def set_strategy_parameters(self, **changes) -> StrategyParameters:
        """Update global parameters (symbol, timeframe, initial_capital, commission, slippage)."""
        self.parameters = self.parameters.updated(**changes)
        return self.parameters

    def reset(self) -> None:
        """Drop all nodes and connections."""
        self._nodes.clear()
        self._connections.clear()
        self._incoming.clear()
        self._outgoing.clear()
        logger.debug("strategy_graph.reset", {"strategy_id": self.id})

    def copy(self) -> 'StrategyGraph':
        clone = StrategyGraph(self.id, self.name, self.description, self.parameters)
        for node_id, node in self._nodes.items():
            clone._nodes[node_id] = node.copy()
            clone._incoming[node_id] = dict(self._incoming[node_id])
            clone._outgoing[node_id] = list(self._outgoing[node_id])
        clone._connections = dict(self._connections)
        return clone

    # --- internals ---

    def _generate_node_id(self, kind: str) -> str:
        while True:
            candidate = f"{kind}_{uuid.uuid4().hex[:8]}"
            if candidate not in self._nodes:
                return candidate

    @staticmethod
    def _parse_input_default(node_id: str, definition: ComponentDefinition, port: str, value: Any) -> Any:
        port_def = definition.get_input_port(port)
        if port_def is None:
            raise UnknownPort(node_id, port, "input")
        try:
            return parse_input_default(port_def, value)
        except InvalidParameter as e:
            raise InvalidParameter(e.parameter, e.reason, node_id=node_id) from None

    def _drop_connection(self, connection_id: str) -> None:
        connection = self._connections.pop(connection_id)
        self._incoming[connection.target_node].pop(connection.target_port, None)
        outgoing = self._outgoing[connection.source_node]
        if connection_id in outgoing:
            outgoing.remove(connection_id)

    def _find_path(self, start: str, goal: str) -> Optional[List[str]]:
        """Iterative DFS over outgoing edges; returns the node path start..goal or None."""
        if start == goal:
            return [start]
        parents: Dict[str, Optional[str]] = {start: None}
        stack = [start]
        while stack:
            current = stack.pop()
            for connection_id in self._outgoing[current]:
                neighbor = self._connections[connection_id].target_node
                if neighbor in parents:
                    continue
                parents[neighbor] = current
                if neighbor == goal:
                    path = [neighbor]
                    while parents[path[-1]] is not None:
                        path.append(parents[path[-1]])
                    return list(reversed(path))
                stack.append(neighbor)
        return None

    def __eq__(self, other):
        if not isinstance(other, StrategyGraph):
            return NotImplemented
        return (self.id == other.id and self.name == other.name
                and self.description == other.description
                and self.parameters == other.parameters
                and self._nodes == other._nodes
                and set(self._connections) == set(other._connections))

    def __len__(self):
        return len(self._nodes)

    def __iter__(self) -> Iterable[Node]:
        return iter(self.nodes)

    def __repr__(self):
        return (f"StrategyGraph(id={self.id!r}, nodes={len(self._nodes)}, "
                f"connections={len(self._connections)})")
