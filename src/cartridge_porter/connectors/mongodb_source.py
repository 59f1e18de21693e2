"""MongoDB document source for collection exports."""

from collections.abc import AsyncIterator
from typing import Any, Optional

import structlog
from motor.motor_asyncio import (
    AsyncIOMotorClient,
    AsyncIOMotorCollection,
    AsyncIOMotorDatabase,
)
from pymongo.errors import ConnectionFailure, ServerSelectionTimeoutError

from .base import BaseSourceConnector
from .factory import register_source_connector

logger = structlog.get_logger(__name__)

SYSTEM_COLLECTION_PREFIX = "system."


class MongoDBCollection:
    """A MongoDB collection exposed as a document collection."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self._collection = collection
        self.name: str = collection.name

    async def count(self) -> int:
        """Count the documents in the collection."""
        return await self._collection.count_documents({})

    async def find(self, limit: Optional[int] = None) -> AsyncIterator[dict[str, Any]]:
        """Iterate over the documents of the collection.

        Args:
            limit: Maximum number of documents to return, None for all

        Yields:
            Raw documents in natural order
        """
        cursor = self._collection.find()
        if limit:
            cursor = cursor.limit(limit)

        async for document in cursor:
            yield document

    def __repr__(self) -> str:
        return f"MongoDBCollection({self.name!r})"


@register_source_connector("mongodb")
class MongoDBSourceConnector(BaseSourceConnector):
    """MongoDB source connector reading whole collections."""

    def __init__(self, connection_string: str, database: str, **kwargs: Any):
        """Initialize MongoDB source connector.

        Args:
            connection_string: MongoDB connection string
            database: Database name to export
            **kwargs: Additional configuration options:
                - server_selection_timeout_ms (int): Server selection timeout (default: 5000)
                - max_pool_size (int): Maximum connection pool size (default: 10)
        """
        super().__init__(connection_string, **kwargs)

        self.database_name = database
        self.server_selection_timeout_ms = kwargs.get("server_selection_timeout_ms", 5000)
        self.max_pool_size = kwargs.get("max_pool_size", 10)

        self._client: Optional[AsyncIOMotorClient] = None
        self._database: Optional[AsyncIOMotorDatabase] = None

        logger.info("Initialized MongoDB source connector", database=database)

    async def connect(self) -> None:
        """Establish connection to MongoDB."""
        try:
            self._client = AsyncIOMotorClient(
                self.connection_string,
                serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                maxPoolSize=self.max_pool_size,
            )

            # Test the connection
            await self._client.admin.command("ping")

            self._database = self._client[self.database_name]
            self.connected = True

            logger.info("Connected to MongoDB", database=self.database_name)

        except (ConnectionFailure, ServerSelectionTimeoutError) as e:
            logger.error("Failed to connect to MongoDB", error=str(e))
            raise

    async def disconnect(self) -> None:
        """Close connection to MongoDB."""
        if self._client:
            self._client.close()
            self._client = None
            self._database = None
            self.connected = False
            logger.info("Disconnected from MongoDB")

    async def list_collections(self) -> list[MongoDBCollection]:
        """List the database's collections, leaving out system collections.

        Returns:
            Collections sorted by name
        """
        if not self.connected or self._database is None:
            raise RuntimeError("Not connected to MongoDB")

        names = await self._database.list_collection_names()
        names = sorted(
            name for name in names if not name.startswith(SYSTEM_COLLECTION_PREFIX)
        )

        logger.info(
            "Discovered collections", database=self.database_name, collections=len(names)
        )
        return [MongoDBCollection(self._database[name]) for name in names]


__all__ = ["MongoDBSourceConnector", "MongoDBCollection"]
