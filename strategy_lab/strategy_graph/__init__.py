"""
Strategy Graph Module
====================

Typed dataflow graph of trading-strategy primitives.
Provides the component catalog, the graph model, validation and serialization.
"""

from .node_catalog import (
    ComponentDefinition, ComponentKind, DataType, MarketField, ParameterRef,
    PortDefinition, ParameterDefinition, ParameterType,
    lookup, get_component_definition, get_components_by_kind,
    list_components, catalog_as_dict, ALL_COMPONENTS, COMPONENT_CATALOG
)

from .graph import (
    Node, Connection, StrategyGraph, StrategyParameters, make_connection_id
)

from .validators import (
    ValidationError, GraphValidator, validate_strategy
)

from .schema_registry import (
    SchemaRegistry, SchemaVersion, schema_registry, migrate_document_to_current
)

from .serializer import (
    StrategySerializer, StrategyDocument, build_report
)

__all__ = [
    # Component catalog
    'ComponentDefinition', 'ComponentKind', 'DataType', 'MarketField', 'ParameterRef',
    'PortDefinition', 'ParameterDefinition', 'ParameterType',
    'lookup', 'get_component_definition', 'get_components_by_kind',
    'list_components', 'catalog_as_dict', 'ALL_COMPONENTS', 'COMPONENT_CATALOG',
    # Graph model
    'Node', 'Connection', 'StrategyGraph', 'StrategyParameters', 'make_connection_id',
    # Validation
    'ValidationError', 'GraphValidator', 'validate_strategy',
    # Schema management
    'SchemaRegistry', 'SchemaVersion', 'schema_registry', 'migrate_document_to_current',
    # Serialization
    'StrategySerializer', 'StrategyDocument', 'build_report',
]
