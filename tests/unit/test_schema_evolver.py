"""Unit tests for incremental table definition evolution."""

from unittest.mock import MagicMock

import pytest
from bson import ObjectId
from conftest import InMemoryStore

from cartridge_porter.exceptions import UnknownTypeError
from cartridge_porter.mapping.schema_evolver import SchemaEvolver
from cartridge_porter.mapping.type_inference import TypeInferencer
from cartridge_porter.mapping.types import ColumnDef, TableDef


def column_types(table_def):
    return {name: column.type for name, column in table_def.columns.items()}


class TestSchemaEvolver:
    @pytest.fixture
    def metrics(self):
        return MagicMock()

    @pytest.fixture
    def evolver(self, store, metrics):
        return SchemaEvolver(store, TypeInferencer(), metrics)

    @pytest.mark.asyncio
    async def test_creates_table(self, evolver, store, metrics):
        changed = await evolver.ensure_structure(
            {"_id": ObjectId(), "name": "John", "age": 30}, "users"
        )

        assert changed is True
        table_def = store.table_defs["users"]
        assert column_types(table_def) == {
            "_id": "varchar(24)",
            "name": "varchar(50)",
            "age": "int",
        }
        assert table_def.primary_key == ["_id"]
        assert store.reads["users"] == 1
        assert store.writes["users"] == 1
        metrics.record_schema_change.assert_called_once_with("users", 3, 0)

    @pytest.mark.asyncio
    async def test_no_change_no_write(self, evolver, store):
        await evolver.ensure_structure({"_id": 1, "name": "a"}, "users")

        changed = await evolver.ensure_structure({"_id": 2, "name": "b"}, "users")

        assert changed is False
        assert store.reads["users"] == 2
        assert store.writes["users"] == 1

    @pytest.mark.asyncio
    async def test_adds_new_column(self, evolver, store, metrics):
        await evolver.ensure_structure({"_id": 1}, "users")

        changed = await evolver.ensure_structure({"_id": 2, "email": "a@b.c"}, "users")

        assert changed is True
        assert column_types(store.table_defs["users"]) == {"_id": "int", "email": "varchar(50)"}
        metrics.record_schema_change.assert_called_with("users", 1, 0)

    @pytest.mark.asyncio
    async def test_widens_column(self, evolver, store, metrics):
        await evolver.ensure_structure({"_id": 1, "score": 3}, "users")

        changed = await evolver.ensure_structure({"_id": 2, "score": 3.5}, "users")

        assert changed is True
        assert store.table_defs["users"].columns["score"].type == "double"
        metrics.record_schema_change.assert_called_with("users", 0, 1)

    @pytest.mark.asyncio
    async def test_never_narrows(self, evolver, store):
        await evolver.ensure_structure({"_id": 1, "bio": "x" * 200}, "users")

        changed = await evolver.ensure_structure({"_id": 2, "bio": "short"}, "users")

        assert changed is False
        assert store.table_defs["users"].columns["bio"].type == "varchar(255)"

    @pytest.mark.asyncio
    async def test_child_table_key(self, evolver, store):
        await evolver.ensure_structure({"_parentid": 1, "_index": 0, "tags": "a"}, "users__tags")

        assert store.table_defs["users__tags"].primary_key == ["_parentid", "_index"]

    @pytest.mark.asyncio
    async def test_no_key_columns(self, evolver, store):
        await evolver.ensure_structure({"name": "x"}, "loose")

        assert store.table_defs["loose"].primary_key is None

    @pytest.mark.asyncio
    async def test_key_added_later(self, evolver, store):
        await evolver.ensure_structure({"name": "x"}, "users")
        await evolver.ensure_structure({"_id": 1, "name": "y"}, "users")

        assert store.table_defs["users"].primary_key == ["_id"]

    @pytest.mark.asyncio
    async def test_existing_columns_kept(self):
        store = InMemoryStore(
            {
                "users": TableDef(
                    columns={"legacy": ColumnDef(name="legacy", type="text", required=True)},
                    primary_key=None,
                )
            }
        )
        evolver = SchemaEvolver(store, TypeInferencer())

        await evolver.ensure_structure({"_id": 1}, "users")

        table_def = store.table_defs["users"]
        assert table_def.columns["legacy"].required is True
        assert column_types(table_def) == {"legacy": "text", "_id": "int"}
        assert table_def.primary_key == ["_id"]

    @pytest.mark.asyncio
    async def test_unknown_type_propagates(self, evolver, store):
        with pytest.raises(UnknownTypeError) as excinfo:
            await evolver.ensure_structure({"_id": 1, "blob": b"\x00"}, "users")

        assert excinfo.value.field == "blob"
        assert "users" not in store.table_defs
