"""PostgreSQL destination connector for cartridge-porter.

Implements the relational store used by the export:
- Table definition introspection through information_schema
- Incremental DDL (create table, add column, widen column, replace primary key)
- Insert-or-replace writes with ON CONFLICT handling
- Truncate and conditional delete
- Value coercion to the destination column types
"""

import copy
from datetime import datetime, timezone
from typing import Any, Optional

import asyncpg
import structlog
from asyncpg import Pool
from bson import ObjectId, Timestamp
from dateutil.parser import isoparse

from ..exceptions import StoreError
from ..mapping.flattener import to_iso8601
from ..mapping.types import (
    DATETIME,
    DOUBLE,
    INT,
    TEXT,
    ColumnDef,
    TableDef,
    short_identifier,
    varchar,
    varchar_length,
)
from .base import BaseDestinationConnector
from .factory import register_destination_connector

logger = structlog.get_logger(__name__)


def quote_identifier(name: str) -> str:
    """Quote a PostgreSQL identifier."""
    return '"' + name.replace('"', '""') + '"'


class PostgreSQLTypeMapper:
    """Maps column type tags to PostgreSQL types and values."""

    TYPE_MAPPING = {
        INT: "BIGINT",
        DOUBLE: "DOUBLE PRECISION",
        TEXT: "TEXT",
        DATETIME: "TIMESTAMP WITH TIME ZONE",
    }

    INTEGER_TYPES = {"smallint", "integer", "bigint"}
    FLOAT_TYPES = {"real", "double precision", "numeric"}
    TIMESTAMP_TYPES = {"timestamp with time zone", "timestamp without time zone", "date"}

    @classmethod
    def get_postgresql_type(cls, type_tag: str) -> str:
        """Get the PostgreSQL type for a column type tag.

        Raises:
            ValueError: If the tag is not a known column type
        """
        length = varchar_length(type_tag)
        if length is not None:
            return f"VARCHAR({length})"

        try:
            return cls.TYPE_MAPPING[type_tag]
        except KeyError:
            raise ValueError(f"Unsupported column type: {type_tag}") from None

    @classmethod
    def get_type_tag(cls, data_type: str, max_length: Optional[int] = None) -> str:
        """Get the column type tag for an information_schema data type."""
        if data_type in cls.INTEGER_TYPES:
            return INT
        if data_type in cls.FLOAT_TYPES:
            return DOUBLE
        if data_type in cls.TIMESTAMP_TYPES:
            return DATETIME
        if data_type == "character varying" and max_length:
            return varchar(max_length)
        return TEXT

    @classmethod
    def convert_value(cls, value: Any, type_tag: str) -> Any:
        """Convert a value to be compatible with a PostgreSQL column.

        Args:
            value: Flattened row value
            type_tag: Type tag of the destination column

        Returns:
            Converted value suitable for asyncpg

        Raises:
            StoreError: If the value cannot be represented in the column type
        """
        if value is None:
            return None

        if type_tag == DATETIME:
            if isinstance(value, Timestamp):
                value = value.as_datetime()
            if isinstance(value, datetime):
                # Ensure timezone awareness
                if value.tzinfo is None:
                    return value.replace(tzinfo=timezone.utc)
                return value
            if isinstance(value, str):
                try:
                    return isoparse(value)
                except ValueError:
                    pass
            raise StoreError(f"Cannot store {value!r} as timestamp")

        if type_tag == INT:
            try:
                return int(value)
            except (TypeError, ValueError):
                raise StoreError(f"Cannot store {value!r} as integer") from None

        if type_tag == DOUBLE:
            try:
                return float(value)
            except (TypeError, ValueError):
                raise StoreError(f"Cannot store {value!r} as double") from None

        # varchar and text columns
        if isinstance(value, str):
            return value
        if isinstance(value, bool):
            return str(int(value))
        if isinstance(value, (datetime, Timestamp)):
            return to_iso8601(value)
        if isinstance(value, ObjectId):
            return str(value)
        return str(value)


@register_destination_connector("postgresql")
class PostgreSQLDestinationConnector(BaseDestinationConnector):
    """PostgreSQL relational store.

    Table definitions are cached after the first lookup; the export is
    assumed to be the only writer changing table structures during a run.
    """

    def __init__(
        self,
        connection_string: str,
        schema_name: str = "public",
        min_connections: int = 1,
        max_connections: int = 5,
        connection_timeout: float = 30.0,
        command_timeout: float = 60.0,
        **kwargs: Any,
    ) -> None:
        """Initialize PostgreSQL destination connector.

        Args:
            connection_string: PostgreSQL connection string
            schema_name: Schema holding the exported tables
            min_connections: Minimum connections in pool
            max_connections: Maximum connections in pool
            connection_timeout: Connection timeout in seconds
            command_timeout: Command timeout in seconds
            **kwargs: Additional configuration options
        """
        super().__init__(connection_string, **kwargs)

        self.schema_name = schema_name
        self.min_connections = min_connections
        self.max_connections = max_connections
        self.connection_timeout = connection_timeout
        self.command_timeout = command_timeout

        self.pool: Optional[Pool] = None
        self.type_mapper = PostgreSQLTypeMapper()
        self._table_defs: dict[str, Optional[TableDef]] = {}

    async def connect(self) -> None:
        """Establish connection pool to PostgreSQL."""
        if self.connected:
            return

        try:
            logger.info(
                "Establishing PostgreSQL connection pool",
                min_connections=self.min_connections,
                max_connections=self.max_connections,
            )

            self.pool = await asyncpg.create_pool(
                self.connection_string,
                min_size=self.min_connections,
                max_size=self.max_connections,
                timeout=self.connection_timeout,
                command_timeout=self.command_timeout,
            )

            # Test connection
            async with self.pool.acquire() as conn:
                await conn.execute("SELECT 1")

            self.connected = True
            logger.info("PostgreSQL connection pool established successfully")

        except (asyncpg.PostgresError, OSError) as e:
            logger.error("Failed to establish PostgreSQL connection", error=str(e))
            raise StoreError(f"Failed to connect to PostgreSQL: {e}") from e

    async def disconnect(self) -> None:
        """Close connection pool."""
        if not self.connected or not self.pool:
            return

        logger.info("Closing PostgreSQL connection pool")
        await self.pool.close()
        self.pool = None
        self.connected = False
        self._table_defs.clear()
        logger.info("PostgreSQL connection pool closed")

    def qualified_name(self, table: str) -> str:
        return f"{quote_identifier(self.schema_name)}.{quote_identifier(short_identifier(table))}"

    async def get_table_def(self, name: str) -> Optional[TableDef]:
        """Get the definition of a table, None if it does not exist."""
        table_def = await self._get_cached_table_def(name)
        return copy.deepcopy(table_def)

    async def _get_cached_table_def(self, name: str) -> Optional[TableDef]:
        # Missing tables are cached as None
        if name not in self._table_defs:
            self._table_defs[name] = await self._load_table_def(name)
        return self._table_defs[name]

    async def _load_table_def(self, name: str) -> Optional[TableDef]:
        """Introspect a table through information_schema."""
        pool = self._require_pool(name)

        try:
            async with pool.acquire() as conn:
                column_rows = await conn.fetch(
                    """
                    SELECT column_name, data_type, character_maximum_length, is_nullable
                    FROM information_schema.columns
                    WHERE table_schema = $1 AND table_name = $2
                    ORDER BY ordinal_position
                    """,
                    self.schema_name,
                    short_identifier(name),
                )
                if not column_rows:
                    return None

                key_rows = await conn.fetch(
                    """
                    SELECT kcu.column_name
                    FROM information_schema.table_constraints tc
                    JOIN information_schema.key_column_usage kcu
                      ON tc.constraint_name = kcu.constraint_name
                     AND tc.table_schema = kcu.table_schema
                     AND tc.table_name = kcu.table_name
                    WHERE tc.constraint_type = 'PRIMARY KEY'
                      AND tc.table_schema = $1 AND tc.table_name = $2
                    ORDER BY kcu.ordinal_position
                    """,
                    self.schema_name,
                    short_identifier(name),
                )
        except (asyncpg.PostgresError, OSError) as e:
            logger.error("Failed to read table definition", table=name, error=str(e))
            raise StoreError(f"Failed to read table definition: {e}", table=name) from e

        columns = {}
        for row in column_rows:
            columns[row["column_name"]] = ColumnDef(
                name=row["column_name"],
                type=self.type_mapper.get_type_tag(
                    row["data_type"], row["character_maximum_length"]
                ),
                required=row["is_nullable"] == "NO",
            )

        primary_key = [row["column_name"] for row in key_rows] or None
        return TableDef(columns=columns, primary_key=primary_key)

    async def set_table_def(self, name: str, table_def: TableDef) -> None:
        """Create or alter a table so that it matches a definition.

        All statements run in one transaction.
        """
        current = await self._get_cached_table_def(name)
        statements = self.build_ddl(name, current, table_def)
        if not statements:
            return

        pool = self._require_pool(name)
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    for statement in statements:
                        await conn.execute(statement)
        except (asyncpg.PostgresError, OSError) as e:
            logger.error("Failed to apply table definition", table=name, error=str(e))
            raise StoreError(f"Failed to apply table definition: {e}", table=name) from e

        self._table_defs[name] = copy.deepcopy(table_def)
        logger.debug("Table definition applied", table=name, statements=len(statements))

    def build_ddl(
        self, name: str, current: Optional[TableDef], desired: TableDef
    ) -> list[str]:
        """Build the statements turning one table definition into another.

        Columns are never dropped; columns missing from ``desired`` are kept.
        """
        table = self.qualified_name(name)
        constraint = quote_identifier(short_identifier(f"{short_identifier(name)}_pkey"))

        if current is None:
            columns = [
                f"{quote_identifier(col.name)} {self.type_mapper.get_postgresql_type(col.type)}"
                + (" NOT NULL" if col.required else "")
                for col in desired.columns.values()
            ]
            if desired.primary_key:
                pk_columns = ", ".join(quote_identifier(col) for col in desired.primary_key)
                columns.append(f"CONSTRAINT {constraint} PRIMARY KEY ({pk_columns})")

            columns_sql = ",\n    ".join(columns)
            return [f"CREATE TABLE IF NOT EXISTS {table} (\n    {columns_sql}\n)"]

        statements = []
        for col in desired.columns.values():
            pg_type = self.type_mapper.get_postgresql_type(col.type)
            column = quote_identifier(col.name)
            existing = current.columns.get(col.name)

            if existing is None:
                statements.append(f"ALTER TABLE {table} ADD COLUMN {column} {pg_type}")
            elif existing.type != col.type:
                statements.append(
                    f"ALTER TABLE {table} ALTER COLUMN {column} TYPE {pg_type} "
                    f"USING {column}::{pg_type}"
                )

        if desired.primary_key != current.primary_key:
            statements.append(f"ALTER TABLE {table} DROP CONSTRAINT IF EXISTS {constraint}")
            if desired.primary_key:
                pk_columns = ", ".join(quote_identifier(col) for col in desired.primary_key)
                statements.append(
                    f"ALTER TABLE {table} ADD CONSTRAINT {constraint} PRIMARY KEY ({pk_columns})"
                )

        return statements

    async def insert(
        self, table: str, row: dict[str, Any], replace: bool = True
    ) -> None:
        """Insert a row, replacing any row with the same primary key.

        Attributes without a matching column are left out.
        """
        table_def = await self._get_cached_table_def(table)
        if table_def is None:
            raise StoreError("Cannot insert into a missing table", table=table)

        columns = [name for name in row if name in table_def.columns]
        if len(columns) < len(row):
            logger.debug(
                "Dropping attributes without columns",
                table=table,
                attributes=sorted(set(row) - set(columns)),
            )
        if not columns:
            return

        values = [
            self.type_mapper.convert_value(row[name], table_def.columns[name].type)
            for name in columns
        ]
        query = self.build_insert(table, columns, table_def, replace)
        await self._execute(table, "insert row", query, *values)

    def build_insert(
        self, table: str, columns: list[str], table_def: TableDef, replace: bool
    ) -> str:
        """Build an INSERT, upserting on the primary key when replacing.

        Replacing resets every non-key column, so columns absent from the new
        row end up NULL like in a full row replacement.
        """
        placeholders = ", ".join(f"${i + 1}" for i in range(len(columns)))
        columns_clause = ", ".join(quote_identifier(col) for col in columns)

        query = (
            f"INSERT INTO {self.qualified_name(table)} ({columns_clause}) "
            f"VALUES ({placeholders})"
        )

        if replace and table_def.primary_key:
            conflict_clause = ", ".join(quote_identifier(col) for col in table_def.primary_key)
            update_sets = [
                f"{quote_identifier(col)} = EXCLUDED.{quote_identifier(col)}"
                for col in table_def.columns
                if col not in table_def.primary_key
            ]
            if update_sets:
                query += f" ON CONFLICT ({conflict_clause}) DO UPDATE SET {', '.join(update_sets)}"
            else:
                query += f" ON CONFLICT ({conflict_clause}) DO NOTHING"

        return query

    async def delete(
        self,
        table: str,
        where: Optional[dict[str, Any]] = None,
        truncate: bool = False,
    ) -> None:
        """Delete rows matching all conditions, or empty the table."""
        if truncate:
            await self._execute(table, "truncate table", f"TRUNCATE TABLE {self.qualified_name(table)}")
            logger.info("Table truncated", table=table)
            return

        query = f"DELETE FROM {self.qualified_name(table)}"
        values = []
        if where:
            conditions = []
            for i, (column, value) in enumerate(where.items()):
                conditions.append(f"{quote_identifier(column)} = ${i + 1}")
                values.append(value)
            query += " WHERE " + " AND ".join(conditions)

        await self._execute(table, "delete rows", query, *values)

    async def _execute(self, table: str, operation: str, query: str, *args: Any) -> None:
        pool = self._require_pool(table)
        try:
            async with pool.acquire() as conn:
                await conn.execute(query, *args)
        except (asyncpg.PostgresError, OSError) as e:
            logger.error("Store operation failed", table=table, operation=operation, error=str(e))
            raise StoreError(f"Failed to {operation}: {e}", table=table) from e

    def _require_pool(self, table: Optional[str] = None) -> Pool:
        if not self.pool:
            raise StoreError("Connection pool not initialized. Call connect() first.", table=table)
        return self.pool


__all__ = ["PostgreSQLDestinationConnector", "PostgreSQLTypeMapper", "quote_identifier"]
