"""Unit tests for the export orchestrator."""

from unittest.mock import MagicMock

import pytest
from bson import ObjectId
from conftest import FakeClock, FakeCollection, FakeSource, InMemoryStore

from cartridge_porter.core.config import ExportConfig
from cartridge_porter.core.orchestrator import (
    ExportOrchestrator,
    ProgressReporter,
    SkipReason,
)
from cartridge_porter.exceptions import UnknownTypeError
from cartridge_porter.mapping.types import ColumnDef, TableDef, short_identifier


def make_orchestrator(store, *collections, metrics=None, clock=None, **config):
    return ExportOrchestrator(
        FakeSource(list(collections)),
        store,
        ExportConfig(**config),
        metrics=metrics,
        clock=clock or FakeClock(),
    )


def by_index(rows):
    return sorted(rows, key=lambda row: row["_index"])


class TestExportOrchestrator:
    @pytest.mark.asyncio
    async def test_exports_collection(self, store):
        users = FakeCollection(
            "users",
            [
                {"_id": 1, "name": "Ann", "address": {"city": "Oslo"}},
                {"_id": 2, "name": "Bob", "address": {"city": "Rome"}},
            ],
        )
        orchestrator = make_orchestrator(store, users)

        stats = await orchestrator.run()

        assert store.rows("users") == [
            {"_id": 1, "name": "Ann", "address_city": "Oslo", "_num": 1},
            {"_id": 2, "name": "Bob", "address_city": "Rome", "_num": 2},
        ]
        assert store.table_defs["users"].primary_key == ["_id"]
        assert stats.collections == 1
        assert stats.documents == 2
        assert stats.rows_written == 2
        assert stats.rows_skipped == 0

    @pytest.mark.asyncio
    async def test_sequence_per_table(self, store):
        objects = FakeCollection(
            "objects",
            [
                {"_id": 1, "_key": "user:1"},
                {"_id": 2, "_key": "tag:abc:topics"},
                {"_id": 3, "_key": "user:2"},
                {"_id": 4, "_key": "user:3"},
            ],
        )
        orchestrator = make_orchestrator(store, objects)

        await orchestrator.run()

        assert [row["_num"] for row in store.rows("user")] == [1, 2, 3]
        assert [row["_num"] for row in store.rows("tag_topics")] == [1]
        assert orchestrator.sequences == {"user": 3, "tag_topics": 1}
        assert orchestrator.namer.key_counts == {"user": 3, "tag_topics": 1}

    @pytest.mark.asyncio
    async def test_collections_sharing_a_table_collide(self, store):
        """Rows from different collections mapped to one table share the
        sequence, and the later row replaces the earlier one."""
        first = FakeCollection("first", [{"_id": 1, "_key": "user:1", "name": "a"}])
        second = FakeCollection("second", [{"_id": 1, "_key": "user:7", "name": "b"}])
        orchestrator = make_orchestrator(store, first, second)

        await orchestrator.run()

        assert store.rows("user") == [{"_id": 1, "_key": "user:7", "name": "b", "_num": 2}]
        assert orchestrator.sequences["user"] == 2

    @pytest.mark.asyncio
    async def test_arrays_exported_to_child_tables(self, store):
        posts = FakeCollection(
            "posts",
            [
                {
                    "_id": "p1",
                    "tags": ["news", "tech"],
                    "comments": [
                        {"text": "hi", "votes": [1, 2]},
                        {"text": "yo", "author": {"name": "Ann"}},
                    ],
                }
            ],
        )
        orchestrator = make_orchestrator(store, posts)

        await orchestrator.run()

        assert store.rows("posts") == [{"_id": "p1", "_num": 1}]
        assert by_index(store.rows("posts__tags")) == [
            {"_parentid": "p1", "_index": 0, "tags": "news", "_num": 1},
            {"_parentid": "p1", "_index": 1, "tags": "tech", "_num": 2},
        ]
        assert by_index(store.rows("posts__comments")) == [
            {"_parentid": "p1", "_index": 0, "text": "hi", "_num": 1},
            {"_parentid": "p1", "_index": 1, "text": "yo", "author_name": "Ann", "_num": 2},
        ]
        assert store.table_defs["posts__tags"].primary_key == ["_parentid", "_index"]
        assert "votes" not in store.table_defs["posts__comments"].columns

    @pytest.mark.asyncio
    async def test_long_names_shortened_across_runs(self, store):
        posts = FakeCollection(
            "posts",
            [
                {
                    "_id": 1,
                    "notification_preferences": {
                        "weekly_summary_emails": {"delivery_channel_override": "email"}
                    },
                    "moderation_history_entries_for_reported_content_by_reviewers": [
                        {"reason": "spam"}
                    ],
                }
            ],
        )
        column = short_identifier(
            "notification_preferences_weekly_summary_emails_delivery_channel_override"
        )
        child = short_identifier(
            "posts__moderation_history_entries_for_reported_content_by_reviewers"
        )

        await make_orchestrator(store, posts).run()
        stats = await make_orchestrator(store, posts).run()

        assert sorted(store.table_defs) == sorted(["posts", child])
        assert len(child.encode("utf-8")) == 63
        assert store.rows("posts") == [{"_id": 1, column: "email", "_num": 1}]
        assert store.rows(child) == [{"_parentid": 1, "_index": 0, "reason": "spam", "_num": 1}]
        assert stats.schema_changes == 0

    @pytest.mark.asyncio
    async def test_child_sequence_spans_parents(self, store):
        posts = FakeCollection(
            "posts",
            [{"_id": 1, "tags": ["a", "b"]}, {"_id": 2, "tags": ["c"]}],
        )
        orchestrator = make_orchestrator(store, posts)

        await orchestrator.run()

        assert orchestrator.sequences == {"posts": 2, "posts__tags": 3}
        assert [row["_num"] for row in store.rows("posts__tags")] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_object_id_parent_key(self, store):
        oid = ObjectId()
        posts = FakeCollection("posts", [{"_id": oid, "tags": ["a"]}])

        await make_orchestrator(store, posts).run()

        assert store.table_defs["posts__tags"].columns["_parentid"].type == "varchar(24)"
        assert store.rows("posts__tags")[0]["_parentid"] == oid

    @pytest.mark.asyncio
    async def test_nested_list_elements_dropped(self, store):
        posts = FakeCollection("posts", [{"_id": 1, "matrix": [["x"], "y"]}])

        await make_orchestrator(store, posts).run()

        assert store.rows("posts__matrix") == [
            {"_parentid": 1, "_index": 1, "matrix": "y", "_num": 1}
        ]

    @pytest.mark.asyncio
    async def test_element_cannot_override_child_key(self, store):
        posts = FakeCollection("posts", [{"_id": 1, "items": [{"_index": 99, "v": 1}]}])

        await make_orchestrator(store, posts).run()

        assert store.rows("posts__items") == [
            {"_parentid": 1, "_index": 0, "v": 1, "_num": 1}
        ]

    @pytest.mark.asyncio
    async def test_skip_list(self, store):
        sessions = FakeCollection("sessions", [{"_id": 1, "tokens": ["t"]}, {"_id": 2}])
        users = FakeCollection("users", [{"_id": 1}])
        orchestrator = make_orchestrator(store, sessions, users, skip_tables=["sessions"])

        stats = await orchestrator.run()

        assert "sessions" not in store.table_defs
        assert "sessions__tokens" not in store.table_defs
        assert store.rows("users") == [{"_id": 1, "_num": 1}]
        assert stats.skipped[SkipReason.SKIP_LIST] == 2
        assert stats.documents == 3

    @pytest.mark.asyncio
    async def test_skip_list_child_table(self, store):
        posts = FakeCollection("posts", [{"_id": 1, "tags": ["a", "b"]}])
        orchestrator = make_orchestrator(store, posts, skip_tables="posts__tags")

        stats = await orchestrator.run()

        assert store.rows("posts") == [{"_id": 1, "_num": 1}]
        assert "posts__tags" not in store.table_defs
        assert stats.skipped[SkipReason.SKIP_LIST] == 2

    @pytest.mark.asyncio
    async def test_too_many_columns(self, store):
        wide = {f"field{i}": i for i in range(501)}
        widest_allowed = {f"field{i}": i for i in range(500)}
        objects = FakeCollection("wide", [wide])
        other = FakeCollection("ok", [widest_allowed])
        metrics = MagicMock()
        orchestrator = make_orchestrator(store, objects, other, metrics=metrics)

        stats = await orchestrator.run()

        assert "wide" not in store.table_defs
        assert "wide" not in orchestrator.sequences
        assert stats.skipped[SkipReason.TOO_MANY_COLUMNS] == 1
        assert stats.documents == 2
        assert len(store.table_defs["ok"].columns) == 501
        metrics.record_document.assert_any_call("wide")
        metrics.record_row_skipped.assert_called_once_with("wide", "too_many_columns")

    @pytest.mark.asyncio
    async def test_limit(self, store):
        users = FakeCollection("users", [{"_id": i} for i in range(5)])

        stats = await make_orchestrator(store, users, limit=2).run()

        assert len(store.rows("users")) == 2
        assert stats.documents == 2

    @pytest.mark.asyncio
    async def test_system_collections_ignored(self, store):
        system = FakeCollection("system.indexes", [{"_id": 1}])
        users = FakeCollection("users", [{"_id": 1}])

        stats = await make_orchestrator(store, system, users).run()

        assert "system.indexes" not in store.table_defs
        assert stats.collections == 1

    @pytest.mark.asyncio
    async def test_run_resets_state(self, store):
        users = FakeCollection("users", [{"_id": 1}, {"_id": 2}])
        orchestrator = make_orchestrator(store, users)

        await orchestrator.run()
        stats = await orchestrator.run()

        assert orchestrator.sequences == {"users": 2}
        assert stats.documents == 2
        assert [row["_num"] for row in store.rows("users")] == [1, 2]

    @pytest.mark.asyncio
    async def test_unknown_type_aborts(self, store):
        users = FakeCollection("users", [{"_id": 1, "blob": b"\x00"}, {"_id": 2}])
        metrics = MagicMock()
        orchestrator = make_orchestrator(store, users, metrics=metrics)

        with pytest.raises(UnknownTypeError):
            await orchestrator.run()

        assert store.rows("users") == []
        metrics.record_error.assert_called_once_with("users", "UnknownTypeError")

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, store):
        users = FakeCollection("users", [{"_id": 1, "tags": ["a"]}])
        metrics = MagicMock()

        await make_orchestrator(store, users, metrics=metrics).run()

        metrics.record_document.assert_called_once_with("users")
        metrics.record_row_written.assert_any_call("users")
        metrics.record_row_written.assert_any_call("users__tags")
        metrics.record_progress.assert_called_with("users", 100)


class TestDataOnlyMode:
    @pytest.fixture
    def existing_store(self):
        store = InMemoryStore(
            {
                "users": TableDef(
                    columns={
                        "_id": ColumnDef(name="_id", type="int"),
                        "name": ColumnDef(name="name", type="varchar(50)"),
                        "_num": ColumnDef(name="_num", type="int"),
                    },
                    primary_key=["_id"],
                )
            }
        )
        store.data["users"] = {(99,): {"_id": 99, "name": "stale", "_num": 1}}
        return store

    @pytest.mark.asyncio
    async def test_missing_table_checked_once(self, store):
        users = FakeCollection("users", [{"_id": i} for i in range(3)])

        stats = await make_orchestrator(store, users, data_only=True).run()

        assert stats.skipped[SkipReason.MISSING_TABLE] == 3
        assert store.reads["users"] == 1
        assert "users" not in store.table_defs
        assert store.truncated == []

    @pytest.mark.asyncio
    async def test_existing_table_truncated_once(self, existing_store):
        users = FakeCollection(
            "users",
            [
                {"_id": 1, "name": "Ann", "extra": "dropped"},
                {"_id": 2, "name": "Bob"},
            ],
        )
        orchestrator = make_orchestrator(existing_store, users, data_only=True)

        stats = await orchestrator.run()

        assert existing_store.truncated == ["users"]
        assert existing_store.writes == {}
        assert existing_store.rows("users") == [
            {"_id": 1, "name": "Ann", "_num": 1},
            {"_id": 2, "name": "Bob", "_num": 2},
        ]
        assert existing_store.table_defs["users"].columns["name"].type == "varchar(50)"
        assert stats.rows_written == 2

    @pytest.mark.asyncio
    async def test_missing_child_table(self, existing_store):
        users = FakeCollection("users", [{"_id": 1, "name": "Ann", "roles": ["admin"]}])
        orchestrator = make_orchestrator(existing_store, users, data_only=True)

        stats = await orchestrator.run()

        assert stats.skipped[SkipReason.MISSING_TABLE] == 1
        assert orchestrator.missing_tables == {"users__roles"}
        assert existing_store.rows("users") == [{"_id": 1, "name": "Ann", "_num": 1}]


class TestProgressReporter:
    def test_throttled_by_interval(self):
        clock = FakeClock()
        reporter = ProgressReporter("users", 4, interval_seconds=5.0, clock=clock)

        clock.now = 1.0
        assert reporter.advance() is False
        clock.now = 6.0
        assert reporter.advance() is True
        assert reporter.percent == 50
        clock.now = 7.0
        assert reporter.advance() is False
        clock.now = 20.0
        assert reporter.advance() is True
        assert reporter.percent == 100
        assert reporter.finish() == 20.0

    def test_requires_percentage_advance(self):
        clock = FakeClock()
        reporter = ProgressReporter("users", 1000, interval_seconds=5.0, clock=clock)

        clock.now = 10.0
        assert reporter.advance() is False
        assert reporter.percent == 0

        clock.now = 11.0
        assert reporter.advance(9) is True
        assert reporter.percent == 1

    def test_empty_collection(self):
        reporter = ProgressReporter("users", 0, clock=FakeClock())

        assert reporter.percent == 100

    @pytest.mark.asyncio
    async def test_orchestrator_reports_progress(self, store):
        clock = FakeClock()

        class TickingCollection(FakeCollection):
            async def find(self, limit=None):
                async for document in super().find(limit):
                    clock.now += 10.0
                    yield document

        users = TickingCollection("users", [{"_id": i} for i in range(4)])
        metrics = MagicMock()
        orchestrator = make_orchestrator(store, users, metrics=metrics, clock=clock)

        await orchestrator.run()

        reported = [call.args for call in metrics.record_progress.call_args_list]
        assert reported == [("users", 25), ("users", 50), ("users", 75), ("users", 100), ("users", 100)]
