"""Source and destination connectors for cartridge-porter."""

from .base import (
    BaseDestinationConnector,
    BaseSourceConnector,
    DocumentCollection,
    DocumentSource,
    RelationalStore,
)
from .factory import ConnectorFactory, ConnectorRegistry

# Import implementations so they register with the factory
from .mongodb_source import MongoDBCollection, MongoDBSourceConnector
from .postgresql_destination import PostgreSQLDestinationConnector, PostgreSQLTypeMapper

__all__ = [
    "BaseDestinationConnector",
    "BaseSourceConnector",
    "DocumentCollection",
    "DocumentSource",
    "RelationalStore",
    "ConnectorFactory",
    "ConnectorRegistry",
    "MongoDBCollection",
    "MongoDBSourceConnector",
    "PostgreSQLDestinationConnector",
    "PostgreSQLTypeMapper",
]
