"""Behavioural tests shared by the file and SQL subscriber stores.

Every test in ``TestSubscriberStoreContract`` runs against both backends via
the parametrized ``store`` fixture.
"""

import asyncio
import json

import pytest

from waitlist.services.file_store import (
    FileSubscriberStore,
    StoreFileCorruptedError,
    UNKNOWN_TIMESTAMP,
    normalize_file_rows,
)
from waitlist.services.subscriber_store import (
    DEFAULT_NAME,
    MergeRow,
    create_subscriber_store,
    prepare_merge_rows,
)
from waitlist.services.sql_store import SqlSubscriberStore


class TestSubscriberStoreContract:
    @pytest.mark.asyncio
    async def test_add_creates_subscriber(self, store):
        result = await store.add_or_resubscribe("Jane", "jane@example.com")

        assert result.status == "created"
        subscriber = await store.find_by_email("jane@example.com")
        assert subscriber is not None
        assert subscriber.name == "Jane"
        assert subscriber.unsubscribed is False

    @pytest.mark.asyncio
    async def test_invalid_email_is_rejected(self, store):
        result = await store.add_or_resubscribe("Jane", "not-an-email")

        assert result.status == "invalid"
        assert await store.get_all_subscribers() == []

    @pytest.mark.asyncio
    async def test_email_variants_collapse_to_one_record(self, store):
        """Case and whitespace variants of an address are one subscriber."""
        first = await store.add_or_resubscribe("Jane", "  Jane@Example.COM ")
        second = await store.add_or_resubscribe("Jane Again", "jane@example.com")
        third = await store.add_or_resubscribe("Jane", "JANE@EXAMPLE.COM")

        assert first.status == "created"
        assert second.status == "duplicate"
        assert third.status == "duplicate"

        subscribers = await store.get_all_subscribers()
        assert len(subscribers) == 1
        assert subscribers[0].email == "jane@example.com"
        assert subscribers[0].active

    @pytest.mark.asyncio
    async def test_blank_name_gets_default(self, store):
        await store.add_or_resubscribe("   ", "anon@example.com")

        subscriber = await store.find_by_email("anon@example.com")
        assert subscriber.name == DEFAULT_NAME

    @pytest.mark.asyncio
    async def test_unsubscribe_then_resubscribe_reactivates_same_record(self, store):
        await store.add_or_resubscribe("Jane", "jane@example.com")
        original = await store.find_by_email("jane@example.com")

        unsubscribed = await store.unsubscribe_email("JANE@example.com")
        assert unsubscribed.ok is True
        assert (await store.find_by_email("jane@example.com")).unsubscribed is True

        result = await store.add_or_resubscribe("Jane D", "jane@example.com")
        assert result.status == "resubscribed"

        reactivated = await store.find_by_email("jane@example.com")
        assert reactivated.id == original.id
        assert reactivated.unsubscribed is False
        assert reactivated.name == "Jane D"
        assert len(await store.get_all_subscribers()) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe_unknown_email(self, store):
        result = await store.unsubscribe_email("ghost@example.com")

        assert result.ok is False
        assert result.message == "Subscriber not found"

    @pytest.mark.asyncio
    async def test_unsubscribe_blank_email(self, store):
        result = await store.unsubscribe_email("   ")

        assert result.ok is False
        assert result.message == "Invalid email"

    @pytest.mark.asyncio
    async def test_active_subscribers_excludes_unsubscribed(self, store):
        await store.add_or_resubscribe("A", "a@example.com")
        await store.add_or_resubscribe("B", "b@example.com")
        await store.unsubscribe_email("b@example.com")

        active = await store.get_active_subscribers()
        assert [s.email for s in active] == ["a@example.com"]

    @pytest.mark.asyncio
    async def test_merge_inserts_and_updates_names(self, store):
        await store.add_or_resubscribe("Old Name", "jane@example.com")
        await store.unsubscribe_email("jane@example.com")

        result = await store.merge_subscribers(
            [
                MergeRow(name="New Name", email="Jane@Example.com"),
                {"name": "Bob", "email": "bob@example.com"},
                ("Carol", "carol@example.com"),
                {"name": "Bad", "email": "not-an-email"},
            ]
        )

        assert result.count == 3
        jane = await store.find_by_email("jane@example.com")
        assert jane.name == "New Name"
        # merge leaves the unsubscribed flag alone
        assert jane.unsubscribed is True
        assert (await store.find_by_email("bob@example.com")).name == "Bob"
        assert (await store.find_by_email("carol@example.com")).active

    @pytest.mark.asyncio
    async def test_merge_is_idempotent(self, store):
        rows = [
            MergeRow(name="Ann", email="ann@example.com"),
            MergeRow(name="Ben", email="ben@example.com"),
            MergeRow(name="Cat", email="cat@example.com"),
        ]

        first = await store.merge_subscribers(rows)
        snapshot = sorted(
            (s.id, s.name, s.email, s.unsubscribed) for s in await store.get_all_subscribers()
        )
        second = await store.merge_subscribers(rows)
        after = sorted(
            (s.id, s.name, s.email, s.unsubscribed) for s in await store.get_all_subscribers()
        )

        assert first.count == second.count == 3
        assert snapshot == after

    @pytest.mark.asyncio
    async def test_merge_with_no_valid_rows_keeps_existing(self, store):
        await store.add_or_resubscribe("Jane", "jane@example.com")

        result = await store.merge_subscribers([{"name": "x", "email": "nope"}])

        assert result.count == 1

    @pytest.mark.asyncio
    async def test_listing_is_newest_first(self, store):
        await store.add_or_resubscribe("First", "first@example.com")
        await asyncio.sleep(0.01)
        await store.add_or_resubscribe("Second", "second@example.com")

        subscribers = await store.get_all_subscribers()
        assert [s.email for s in subscribers] == ["second@example.com", "first@example.com"]

    @pytest.mark.asyncio
    async def test_find_by_email_missing(self, store):
        assert await store.find_by_email("nobody@example.com") is None
        assert await store.find_by_email("") is None


class TestPrepareMergeRows:
    def test_last_occurrence_wins(self):
        rows = prepare_merge_rows(
            [
                {"name": "First", "email": "dup@example.com"},
                {"name": "Other", "email": "other@example.com"},
                {"name": "Last", "email": "DUP@example.com"},
            ]
        )

        assert rows == [
            MergeRow(name="Last", email="dup@example.com"),
            MergeRow(name="Other", email="other@example.com"),
        ]

    def test_invalid_emails_are_dropped(self):
        assert prepare_merge_rows([("Name", "nope"), {"name": "n"}]) == []


class TestFileStore:
    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, tmp_path):
        store = FileSubscriberStore(tmp_path / "missing.json")

        assert await store.get_all_subscribers() == []

    @pytest.mark.asyncio
    async def test_corrupted_file_raises(self, tmp_path):
        path = tmp_path / "waitlist.json"
        path.write_text("{not json")
        store = FileSubscriberStore(path)

        with pytest.raises(StoreFileCorruptedError):
            await store.get_all_subscribers()

    @pytest.mark.asyncio
    async def test_non_list_document_raises(self, tmp_path):
        path = tmp_path / "waitlist.json"
        path.write_text(json.dumps({"email": "jane@example.com"}))
        store = FileSubscriberStore(path)

        with pytest.raises(StoreFileCorruptedError):
            await store.add_or_resubscribe("Jane", "jane@example.com")

    @pytest.mark.asyncio
    async def test_document_format(self, tmp_path):
        path = tmp_path / "waitlist.json"
        store = FileSubscriberStore(path)
        await store.add_or_resubscribe("Jane", "Jane@Example.com")

        data = json.loads(path.read_text())
        assert len(data) == 1
        assert set(data[0]) == {"id", "name", "email", "timestamp", "unsubscribed"}
        assert data[0]["email"] == "jane@example.com"
        assert data[0]["unsubscribed"] is False

    @pytest.mark.asyncio
    async def test_no_temp_files_left_behind(self, tmp_path):
        store = FileSubscriberStore(tmp_path / "waitlist.json")
        await store.add_or_resubscribe("Jane", "jane@example.com")
        await store.merge_subscribers([("Bob", "bob@example.com")])

        assert [p.name for p in tmp_path.iterdir()] == ["waitlist.json"]

    def test_legacy_rows_are_normalized(self):
        records = normalize_file_rows(
            [
                {
                    "id": 1,
                    "name": "Old",
                    "email": " Jane@Example.com ",
                    "timestamp": "2024-01-01T00:00:00Z",
                },
                {
                    "id": 2,
                    "name": "New",
                    "email": "jane@example.com",
                    "timestamp": "2024-06-01T00:00:00+00:00",
                },
                {"name": "No email"},
                "garbage",
            ]
        )

        assert len(records) == 1
        assert records[0].name == "New"
        assert records[0].id == "2"
        assert records[0].created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_undated_rows_keep_a_stable_position(self, tmp_path):
        path = tmp_path / "waitlist.json"
        path.write_text(
            json.dumps(
                [
                    {"id": "a", "name": "Undated", "email": "old@example.com"},
                    {"id": "b", "name": "Bad", "email": "bad@example.com", "timestamp": "soon"},
                    {
                        "id": "c",
                        "name": "Dated",
                        "email": "jane@example.com",
                        "timestamp": "2024-06-01T00:00:00+00:00",
                    },
                ]
            )
        )
        store = FileSubscriberStore(path)

        first = await store.get_all_subscribers()
        await asyncio.sleep(0.01)
        second = await store.get_all_subscribers()

        assert [s.email for s in first] == [s.email for s in second]
        assert first[0].email == "jane@example.com"
        assert {s.created_at for s in first[1:]} == {UNKNOWN_TIMESTAMP}


class TestStoreFactory:
    def test_file_store_without_database_url(self, settings_factory):
        settings = settings_factory()

        store = create_subscriber_store(settings)

        assert isinstance(store, FileSubscriberStore)
        assert store.backend == "file"

    def test_sql_store_with_database_url(self, tmp_path, settings_factory):
        settings = settings_factory(database_url=f"sqlite:///{tmp_path / 'db.sqlite'}")

        store = create_subscriber_store(settings)

        assert isinstance(store, SqlSubscriberStore)
        assert store.engine.dialect.name == "sqlite"
