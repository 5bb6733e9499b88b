"""Unit tests for the SQLite document store."""

from datetime import UTC, datetime, timedelta

import pytest

from blueslash.core.db_client import (
    DELETE_FIELD,
    ArrayRemove,
    ArrayUnion,
    DatabaseError,
    DocumentStore,
    Increment,
    RecordNotFoundError,
    apply_update,
    parse_filter,
    to_iso,
)


@pytest.mark.unit
class TestParseFilter:
    def test_empty_filter(self):
        assert parse_filter("") == ("", [])

    def test_equality_and_conjunction(self):
        clause, params = parse_filter('household_id = "h1" && status = "published"')

        assert clause == "json_extract(data, '$.household_id') = ? AND json_extract(data, '$.status') = ?"
        assert params == ["h1", "published"]

    def test_or_group(self):
        clause, params = parse_filter('(status = "claimed" || status = "completed")')

        assert " OR " in clause
        assert params == ["claimed", "completed"]

    def test_array_contains(self):
        clause, params = parse_filter('participants ?= "bob"')

        assert "json_each" in clause
        assert params == ["bob"]

    def test_like_escapes_wildcards(self):
        _, params = parse_filter('invite_links ~ "a_b%"')

        assert params == ["%a\\_b\\%%"]

    def test_unquoted_literals_are_typed(self):
        clause, params = parse_filter("sent = false && gems >= 10 && claimed_by != null")

        assert params == [False, 10]
        assert "IS NOT NULL" in clause

    def test_quoted_values_stay_strings(self):
        _, params = parse_filter('user_id = "12345" && sent = "false" && label = \'null\'')

        assert params == ["12345", "false", "null"]

    def test_placeholders_bind_raw_values(self):
        clause, params = parse_filter(
            "user_id = {:user_id} && due_date <= {:due} && body ~ {:text}",
            {"user_id": "12345", "due": datetime(2026, 1, 1, tzinfo=UTC), "text": 'say "hi" && (c:\\tmp)'},
        )

        assert clause.count("?") == 3
        assert params == ["12345", "2026-01-01T00:00:00.000000+00:00", '%say "hi" && (c:\\\\tmp)%']

    def test_missing_placeholder(self):
        with pytest.raises(ValueError, match="Missing filter parameter: user_id"):
            parse_filter("user_id = {:user_id}", {})

    def test_quoted_value_with_escaped_quote(self):
        clause, params = parse_filter(r'title = "say \"hi\" && go"')

        assert clause.count(" AND ") == 0
        assert params == ['say "hi" && go']

    def test_bare_words_are_rejected(self):
        with pytest.raises(ValueError, match="Invalid filter syntax"):
            parse_filter("status = published")

    def test_rejects_injection_in_field_name(self):
        with pytest.raises(ValueError, match="Invalid filter syntax"):
            parse_filter('status = "x" OR 1=1 --')


@pytest.mark.unit
class TestApplyUpdate:
    def test_transforms_and_dotted_paths(self):
        doc = {"members": ["a"], "gems": 5, "prefs": {"push": False}, "claimed_by": "a"}

        updated = apply_update(
            doc,
            {
                "members": ArrayUnion("a", "b"),
                "gems": Increment(-2),
                "prefs.push": True,
                "claimed_by": DELETE_FIELD,
            },
        )

        assert updated == {"members": ["a", "b"], "gems": 3, "prefs": {"push": True}}
        assert doc["members"] == ["a"]

    def test_array_remove_matches_models_by_value(self):
        doc = {"households": [{"household_id": "h1", "role": "head"}, {"household_id": "h2", "role": "member"}]}

        updated = apply_update(doc, {"households": ArrayRemove({"household_id": "h1", "role": "head"})})

        assert updated["households"] == [{"household_id": "h2", "role": "member"}]


@pytest.mark.unit
class TestDocumentStore:
    async def test_create_get_update_delete(self, store):
        created = await store.create_record(collection="users", record_id="u1", data={"display_name": "Ann"})
        assert created["id"] == "u1"

        updated = await store.update_record(collection="users", record_id="u1", data={"gems": Increment(4)})
        assert updated["gems"] == 4
        assert updated["created"] == created["created"]

        await store.delete_record(collection="users", record_id="u1")
        assert await store.get_optional_record(collection="users", record_id="u1") is None

    async def test_missing_record_raises(self, store):
        with pytest.raises(RecordNotFoundError):
            await store.get_record(collection="users", record_id="nobody")
        with pytest.raises(RecordNotFoundError):
            await store.delete_record(collection="users", record_id="nobody")

    async def test_duplicate_create_raises(self, store):
        await store.create_record(collection="users", record_id="u1", data={})

        with pytest.raises(DatabaseError, match="already exists"):
            await store.create_record(collection="users", record_id="u1", data={})

    async def test_unknown_collection_rejected(self, store):
        with pytest.raises(ValueError, match="Invalid collection name"):
            await store.list_records(collection="users; DROP TABLE users")

    async def test_list_filters_and_sorts_by_datetime(self, store):
        base = datetime(2026, 1, 1, tzinfo=UTC)
        for index, days in enumerate([3, 1, 2]):
            await store.create_record(
                collection="tasks",
                record_id=f"t{index}",
                data={"household_id": "h1", "due_date": base + timedelta(days=days)},
            )
        await store.create_record(collection="tasks", record_id="other", data={"household_id": "h2"})

        records = await store.list_records(collection="tasks", filter_query='household_id = "h1"', sort="due_date")

        assert [r["id"] for r in records] == ["t1", "t2", "t0"]

        latest = await store.get_first_record(collection="tasks", filter_query='household_id = "h1"', sort="-due_date")
        assert latest["id"] == "t0"
        assert await store.get_first_record(collection="tasks", filter_query='household_id = "h9"') is None

    async def test_boolean_filter_matches_json_false(self, store):
        await store.create_record(collection="scheduled_notifications", record_id="a", data={"sent": False})
        await store.create_record(collection="scheduled_notifications", record_id="b", data={"sent": True})

        records = await store.list_records(collection="scheduled_notifications", filter_query="sent = false")

        assert [r["id"] for r in records] == ["a"]

    async def test_numeric_looking_ids_match_as_strings(self, store):
        await store.create_record(collection="gem_transactions", record_id="g1", data={"user_id": "12345"})
        await store.create_record(collection="gem_transactions", record_id="g2", data={"user_id": "67890"})

        bound = await store.list_records(
            collection="gem_transactions", filter_query="user_id = {:user_id}", filter_params={"user_id": "12345"}
        )
        literal = await store.list_records(collection="gem_transactions", filter_query='user_id = "12345"')

        assert [r["id"] for r in bound] == [r["id"] for r in literal] == ["g1"]

    async def test_values_with_quotes_and_backslashes_round_trip(self, store):
        awkward = ['say "hi"', "C:\\chores\\", "it's && (odd)", "50% off_now"]
        for index, title in enumerate(awkward):
            await store.create_record(collection="tasks", record_id=f"t{index}", data={"title": title})

        for index, title in enumerate(awkward):
            exact = await store.list_records(
                collection="tasks", filter_query="title = {:title}", filter_params={"title": title}
            )
            contains = await store.list_records(
                collection="tasks", filter_query="title ~ {:title}", filter_params={"title": title}
            )
            assert [r["id"] for r in exact] == [f"t{index}"]
            assert [r["id"] for r in contains] == [f"t{index}"]

        escaped = await store.list_records(collection="tasks", filter_query=r'title = "say \"hi\""')
        assert [r["id"] for r in escaped] == ["t0"]

    async def test_listing_is_not_capped_by_default(self, store):
        for index in range(150):
            await store.create_record(collection="tasks", record_id=f"t{index:03d}", data={"household_id": "h1"})

        everything = await store.list_records(
            collection="tasks", filter_query="household_id = {:h}", filter_params={"h": "h1"}, sort="id"
        )
        page = await store.list_records(collection="tasks", sort="id", limit=20, offset=140)

        assert len(everything) == 150
        assert [r["id"] for r in page] == [f"t{index:03d}" for index in range(140, 150)]

    async def test_negative_paging_rejected(self, store):
        with pytest.raises(ValueError, match="must not be negative"):
            await store.list_records(collection="tasks", limit=-1)
        with pytest.raises(ValueError, match="must not be negative"):
            await store.list_records(collection="tasks", offset=-5)

    async def test_transaction_rolls_back_on_error(self, store):
        await store.create_record(collection="users", record_id="u1", data={"gems": 5})

        with pytest.raises(RuntimeError):
            async with store.transaction() as tx:
                await tx.update_record(collection="users", record_id="u1", data={"gems": Increment(10)})
                await tx.create_record(collection="gem_transactions", data={"user_id": "u1"})
                raise RuntimeError("boom")

        user = await store.get_record(collection="users", record_id="u1")
        assert user["gems"] == 5
        assert await store.list_records(collection="gem_transactions") == []

    async def test_run_transaction_returns_result(self, store):
        async def create(tx):
            return await tx.create_record(collection="users", record_id="u9", data={"gems": 1})

        record = await store.run_transaction(create)

        assert record["id"] == "u9"

    async def test_store_requires_connection(self, tmp_path):
        unconnected = DocumentStore(tmp_path / "x.db")

        with pytest.raises(DatabaseError, match="not connected"):
            await unconnected.list_records(collection="users")


@pytest.mark.unit
def test_to_iso_normalises_timezones():
    naive = datetime(2026, 5, 1, 12, 0)
    aware = datetime(2026, 5, 1, 14, 0, tzinfo=UTC) - timedelta(hours=2)

    assert to_iso(naive) == to_iso(aware) == "2026-05-01T12:00:00.000000+00:00"

