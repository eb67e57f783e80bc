#!/usr/bin/env python3
"""
Strategy Graph Schema Registry
==============================

Manages schema versions and migrations for serialized strategy documents.
Migrations operate on the raw document dict before it is parsed, so older
documents are upgraded step by step to the current schema.
"""

import copy
from typing import Dict, List, Any, Optional, Callable
from dataclasses import dataclass

from ..core.exceptions import StrategySerializationError
from .node_catalog import ALL_COMPONENTS

# Version assumed for documents that carry no "version" field
LEGACY_VERSION = "0.9.0"
CURRENT_VERSION = "1.0.0"

# Port names used by the legacy UI export
_LEGACY_PORT_NAMES = {
    "sma_value": "value",
    "ema_value": "value",
    "rsi_value": "value",
    "oversold_signal": "oversoldSignal",
    "overbought_signal": "overboughtSignal",
    "upper_band": "upper",
    "middle_band": "middle",
    "lower_band": "lower",
    "macd_line": "macdLine",
    "signal_line": "signalLine",
    "crossover_signal": "signal",
    "threshold_signal": "signal",
    "combined_signal": "signal",
    "entry_price": "entryPrice",
    "stop_price": "stopPrice",
    "target_price": "targetPrice",
}

_KIND_BY_TITLE = {component.title: component.name for component in ALL_COMPONENTS}

# Parameter defaults of the legacy UI where they differ from the catalog
_LEGACY_PARAMETER_DEFAULTS = {
    "threshold": {"operator": "above"},
    "buy_order": {"quantity": 100.0},
    "sell_order": {"quantity": 100.0},
}


@dataclass
class SchemaVersion:
    """Represents a schema version with its upgrade step."""
    version: str
    description: str
    release_date: str
    is_current: bool = False

    # Upgrades a document of the previous version to this one
    upgrade_from_previous: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None
    previous: Optional[str] = None


class SchemaRegistry:
    """
    Registry for strategy document schema versions.

    Handles:
    - Schema version tracking
    - Chained migrations from older versions to the current one
    - Rejection of unknown versions
    """

    def __init__(self):
        self.versions: Dict[str, SchemaVersion] = {}
        self._current_version = CURRENT_VERSION
        self._register_versions()

    def _register_versions(self):
        """Register all known schema versions."""

        self.versions[LEGACY_VERSION] = SchemaVersion(
            version=LEGACY_VERSION,
            description="Unversioned dashboard export: title-named components, snake_case ports",
            release_date="2025-09-16",
        )

        self.versions[CURRENT_VERSION] = SchemaVersion(
            version=CURRENT_VERSION,
            description="Catalog-keyed components, camelCase ports, per-port input defaults",
            release_date="2025-10-16",
            is_current=True,
            upgrade_from_previous=_upgrade_0_9_0_to_1_0_0,
            previous=LEGACY_VERSION,
        )

    def get_current_version(self) -> str:
        """Get the current schema version."""
        return self._current_version

    def is_valid_version(self, version: str) -> bool:
        """Check if a version is valid."""
        return version in self.versions

    def migrate_document(self, document: Dict[str, Any]) -> Dict[str, Any]:
        """
        Migrate a raw strategy document to the current version.

        Args:
            document: Parsed JSON document (not modified)

        Returns:
            New document at the current schema version

        Raises:
            StrategySerializationError: unknown version or failed migration
        """
        if not isinstance(document, dict):
            raise StrategySerializationError("Strategy document must be a JSON object")

        version = document.get("version") or LEGACY_VERSION
        if not isinstance(version, str):
            raise StrategySerializationError(
                f"Schema version must be a string, got {type(version).__name__}"
            )
        if not self.is_valid_version(version):
            raise StrategySerializationError(f"Unknown schema version: {version}")

        if version == self._current_version:
            return document

        # Walk back from current to the document's version, then apply forwards
        chain: List[SchemaVersion] = []
        step = self.versions[self._current_version]
        while step.version != version:
            chain.append(step)
            step = self.versions[step.previous]

        migrated = copy.deepcopy(document)
        for step in reversed(chain):
            try:
                migrated = step.upgrade_from_previous(migrated)
            except (KeyError, TypeError, AttributeError) as e:
                raise StrategySerializationError(
                    f"Migration to schema {step.version} failed: {e}"
                ) from e
            migrated["version"] = step.version

        return migrated

    def get_version_info(self, version: Optional[str] = None) -> Dict[str, Any]:
        """Get information about a schema version."""
        if version is None:
            version = self._current_version

        schema_version = self.versions.get(version)
        if not schema_version:
            return {"error": f"Unknown version: {version}"}

        return {
            "version": schema_version.version,
            "description": schema_version.description,
            "release_date": schema_version.release_date,
            "is_current": schema_version.is_current
        }

    def list_versions(self) -> List[Dict[str, Any]]:
        """List all registered schema versions."""
        return [self.get_version_info(v) for v in self.versions]


def _upgrade_0_9_0_to_1_0_0(document: Dict[str, Any]) -> Dict[str, Any]:
    """
    Legacy exports store the category in "type", the display title in
    "name" and port-name lists in "inputs"/"outputs".
    """
    components = []
    for component in document.get("components", []):
        kind = component.get("kind") or _KIND_BY_TITLE.get(component.get("name"), component.get("name"))
        upgraded = {
            "id": component["id"],
            "kind": kind,
            "parameters": {**_LEGACY_PARAMETER_DEFAULTS.get(kind, {}), **component.get("parameters", {})},
        }
        # Port-name lists carry no defaults; only dict-form inputs survive
        if isinstance(component.get("inputs"), dict):
            upgraded["inputs"] = component["inputs"]
        components.append(upgraded)

    connections = []
    for connection in document.get("connections", []):
        connections.append({
            "from": connection["from"],
            "output": _LEGACY_PORT_NAMES.get(connection["output"], connection["output"]),
            "to": connection["to"],
            "input": _LEGACY_PORT_NAMES.get(connection["input"], connection["input"]),
        })

    upgraded_document = dict(document)
    upgraded_document["components"] = components
    upgraded_document["connections"] = connections
    upgraded_document.pop("backtest", None)
    return upgraded_document


# Global schema registry instance
schema_registry = SchemaRegistry()


def migrate_document_to_current(document: Dict[str, Any]) -> Dict[str, Any]:
    """Convenience function to migrate a document to the current schema version."""
    return schema_registry.migrate_document(document)
