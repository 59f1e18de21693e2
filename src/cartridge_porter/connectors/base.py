"""Base connector interfaces and abstractions for cartridge-porter."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any, Optional, Protocol, runtime_checkable

from ..mapping.types import TableDef


@runtime_checkable
class DocumentCollection(Protocol):
    """Protocol for one collection of a document source."""

    name: str

    async def count(self) -> int:
        """Count the documents in the collection."""
        ...

    def find(self, limit: Optional[int] = None) -> AsyncIterator[dict[str, Any]]:
        """Iterate over the documents of the collection.

        Args:
            limit: Maximum number of documents to return, None for all
        """
        ...


@runtime_checkable
class DocumentSource(Protocol):
    """Protocol for document source connectors."""

    async def list_collections(self) -> list[DocumentCollection]:
        """List the exportable collections of the source database."""
        ...


@runtime_checkable
class RelationalStore(Protocol):
    """Protocol for relational destination connectors.

    Defines the table definition and row operations the export consumes.
    """

    async def get_table_def(self, name: str) -> Optional[TableDef]:
        """Get the definition of a table.

        Args:
            name: Table name

        Returns:
            TableDef or None if the table does not exist
        """
        ...

    async def set_table_def(self, name: str, table_def: TableDef) -> None:
        """Create or alter a table to match a definition.

        Args:
            name: Table name
            table_def: Desired table definition
        """
        ...

    async def insert(
        self, table: str, row: dict[str, Any], replace: bool = True
    ) -> None:
        """Insert a row.

        Args:
            table: Table name
            row: Column values
            replace: Replace an existing row with the same primary key
        """
        ...

    async def delete(
        self,
        table: str,
        where: Optional[dict[str, Any]] = None,
        truncate: bool = False,
    ) -> None:
        """Delete rows from a table.

        Args:
            table: Table name
            where: Column equality conditions
            truncate: Empty the whole table
        """
        ...


class BaseSourceConnector(ABC):
    """Abstract base class for source connectors."""

    def __init__(self, connection_string: str, **kwargs):
        """Initialize the base source connector.

        Args:
            connection_string: Database connection string
            **kwargs: Additional connector-specific configuration
        """
        self.connection_string = connection_string
        self.config = kwargs
        self.connected = False

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    @abstractmethod
    async def list_collections(self) -> list[DocumentCollection]:
        """List the exportable collections."""
        pass

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to the source database."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the source database."""
        pass


class BaseDestinationConnector(ABC):
    """Abstract base class for destination connectors."""

    def __init__(self, connection_string: str, **kwargs):
        """Initialize the base destination connector.

        Args:
            connection_string: Database connection string
            **kwargs: Additional connector-specific configuration
        """
        self.connection_string = connection_string
        self.config = kwargs
        self.connected = False

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    @abstractmethod
    async def get_table_def(self, name: str) -> Optional[TableDef]:
        """Get the definition of a table."""
        pass

    @abstractmethod
    async def set_table_def(self, name: str, table_def: TableDef) -> None:
        """Create or alter a table to match a definition."""
        pass

    @abstractmethod
    async def insert(
        self, table: str, row: dict[str, Any], replace: bool = True
    ) -> None:
        """Insert a row."""
        pass

    @abstractmethod
    async def delete(
        self,
        table: str,
        where: Optional[dict[str, Any]] = None,
        truncate: bool = False,
    ) -> None:
        """Delete rows from a table."""
        pass

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to the destination database."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the destination database."""
        pass


__all__ = [
    "DocumentCollection",
    "DocumentSource",
    "RelationalStore",
    "BaseSourceConnector",
    "BaseDestinationConnector",
]
