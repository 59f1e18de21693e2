"""Test configuration for cartridge-porter."""

import copy
from collections import Counter
from typing import Any, Optional

import pytest

from cartridge_porter.exceptions import StoreError
from cartridge_porter.mapping.types import TableDef


class InMemoryStore:
    """Relational store keeping table definitions and rows in memory.

    Rows are keyed by primary key, so inserts with ``replace`` behave like
    an upsert.
    """

    def __init__(self, table_defs: Optional[dict[str, TableDef]] = None):
        self.table_defs: dict[str, TableDef] = copy.deepcopy(table_defs or {})
        self.data: dict[str, dict[Any, dict[str, Any]]] = {}
        self.reads: Counter = Counter()
        self.writes: Counter = Counter()
        self.truncated: list[str] = []

    async def get_table_def(self, name: str) -> Optional[TableDef]:
        self.reads[name] += 1
        return copy.deepcopy(self.table_defs.get(name))

    async def set_table_def(self, name: str, table_def: TableDef) -> None:
        self.writes[name] += 1
        self.table_defs[name] = copy.deepcopy(table_def)

    async def insert(self, table: str, row: dict[str, Any], replace: bool = True) -> None:
        table_def = self.table_defs.get(table)
        if table_def is None:
            raise StoreError("Cannot insert into a missing table", table=table)

        values = {name: value for name, value in row.items() if name in table_def.columns}
        rows = self.data.setdefault(table, {})
        if table_def.primary_key and replace:
            key = tuple(values.get(column) for column in table_def.primary_key)
        else:
            key = ("auto", len(rows))
        rows[key] = values

    async def delete(
        self,
        table: str,
        where: Optional[dict[str, Any]] = None,
        truncate: bool = False,
    ) -> None:
        rows = self.data.setdefault(table, {})
        if truncate:
            self.truncated.append(table)
            rows.clear()
            return

        for key, row in list(rows.items()):
            if all(row.get(column) == value for column, value in (where or {}).items()):
                del rows[key]

    def rows(self, table: str) -> list[dict[str, Any]]:
        return list(self.data.get(table, {}).values())


class FakeCollection:
    """Document collection backed by a list."""

    def __init__(self, name: str, documents: list[dict[str, Any]]):
        self.name = name
        self.documents = documents

    async def count(self) -> int:
        return len(self.documents)

    async def find(self, limit: Optional[int] = None):
        documents = self.documents[:limit] if limit else self.documents
        for document in documents:
            yield copy.deepcopy(document)


class FakeSource:
    """Document source listing fixed collections."""

    def __init__(self, collections: list[FakeCollection]):
        self.collections = collections

    async def list_collections(self) -> list[FakeCollection]:
        return list(self.collections)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def store():
    """Empty in-memory relational store."""
    return InMemoryStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sample_config_file(tmp_path):
    """Create a sample configuration file for testing."""
    config_content = """
source:
  type: mongodb
  connection_string: "mongodb://localhost:27017"
  database: "forum"

destination:
  type: postgresql
  host: "db.internal"
  port: 5433
  database: "warehouse"
  username: "porter"
  password: "secret"

export:
  limit: 100
  skip_tables: "sessions, cache"
  max_columns: 200

monitoring:
  prometheus:
    enabled: false
  log_level: "DEBUG"
"""

    config_file = tmp_path / "test_config.yaml"
    config_file.write_text(config_content)
    return config_file
