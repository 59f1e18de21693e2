"""Connector registry and factory keyed by the configured database type."""

from typing import TYPE_CHECKING, Optional

import structlog

from .base import BaseDestinationConnector, BaseSourceConnector

if TYPE_CHECKING:
    from ..core.config import DestinationConfig, SourceConfig

logger = structlog.get_logger(__name__)


class ConnectorRegistry:
    """Connector classes by role ("source" or "destination") and type."""

    def __init__(self) -> None:
        self._connectors: dict[str, dict[str, type]] = {"source": {}, "destination": {}}

    def register(self, role: str, connector_type: str, connector_class: type) -> None:
        logger.debug(
            "Registering connector",
            role=role,
            type=connector_type,
            class_name=connector_class.__name__,
        )
        self._connectors[role][connector_type] = connector_class

    def lookup(self, role: str, connector_type: str) -> type:
        """Return the class registered for a type.

        Raises:
            ValueError: If no connector is registered for the type
        """
        try:
            return self._connectors[role][connector_type]
        except KeyError:
            raise ValueError(
                f"Unsupported {role} connector type: {connector_type}. "
                f"Available types: {sorted(self._connectors[role])}"
            ) from None


_registry = ConnectorRegistry()


def register_source_connector(connector_type: str):
    def decorator(connector_class: type[BaseSourceConnector]):
        _registry.register("source", connector_type, connector_class)
        return connector_class

    return decorator


def register_destination_connector(connector_type: str):
    def decorator(connector_class: type[BaseDestinationConnector]):
        _registry.register("destination", connector_type, connector_class)
        return connector_class

    return decorator


class ConnectorFactory:
    """Builds connectors from configuration sections."""

    def __init__(self, registry: Optional[ConnectorRegistry] = None):
        self.registry = registry or _registry

    def create_source_connector(self, config: "SourceConfig") -> BaseSourceConnector:
        connector_class = self.registry.lookup("source", config.type)
        connector = connector_class(
            connection_string=config.connection_string,
            database=config.database,
        )
        logger.info("Created source connector", type=config.type, database=config.database)
        return connector

    def create_destination_connector(
        self, config: "DestinationConfig"
    ) -> BaseDestinationConnector:
        connector_class = self.registry.lookup("destination", config.type)
        connector = connector_class(
            connection_string=config.get_connection_string(),
            schema_name=config.schema_name,
            min_connections=config.min_connections,
            max_connections=config.max_connections,
            connection_timeout=config.connection_timeout,
            command_timeout=config.command_timeout,
        )
        logger.info(
            "Created destination connector",
            type=config.type,
            host=config.host,
            database=config.database,
        )
        return connector


__all__ = [
    "ConnectorFactory",
    "ConnectorRegistry",
    "register_source_connector",
    "register_destination_connector",
]
