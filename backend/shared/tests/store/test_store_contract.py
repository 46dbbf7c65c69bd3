"""Behaviour every Store implementation must share."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from shared.store import MISSING, ConditionFailedError, InMemoryStore, SqliteStore

if TYPE_CHECKING:
    from collections.abc import Iterator

    from shared.store import Store


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path) -> Iterator[Store]:
    if request.param == "memory":
        yield InMemoryStore()
        return
    sqlite_store = SqliteStore(tmp_path / "records.db")
    sqlite_store.connect()
    yield sqlite_store
    sqlite_store.close()


class TestGetPut:
    async def test_get_missing_returns_none(self, store):
        assert await store.get("GAME", "g1") is None

    async def test_put_then_get(self, store):
        await store.put({"pk": "GAME", "sk": "g1", "state": {"board": [1, 2]}})

        assert await store.get("GAME", "g1") == {"pk": "GAME", "sk": "g1", "state": {"board": [1, 2]}}

    async def test_returned_records_are_copies(self, store):
        await store.put({"pk": "GAME", "sk": "g1", "state": {"board": [1]}})

        record = await store.get("GAME", "g1")
        record["state"]["board"].append(2)

        assert (await store.get("GAME", "g1"))["state"] == {"board": [1]}

    async def test_put_replaces(self, store):
        await store.put({"pk": "GAME", "sk": "g1", "a": 1})
        await store.put({"pk": "GAME", "sk": "g1", "b": 2})

        assert await store.get("GAME", "g1") == {"pk": "GAME", "sk": "g1", "b": 2}


class TestConditionalUpdate:
    async def test_creates_when_expecting_missing(self, store):
        record = await store.conditional_update("GAME", "g1", {"version": 1}, {"version": MISSING})

        assert record == {"pk": "GAME", "sk": "g1", "version": 1}

    async def test_create_fails_when_record_exists(self, store):
        await store.put({"pk": "GAME", "sk": "g1", "version": 1})

        with pytest.raises(ConditionFailedError) as exc_info:
            await store.conditional_update("GAME", "g1", {"version": 1}, {"version": MISSING})

        assert exc_info.value.field == "version"

    async def test_updates_when_version_matches(self, store):
        await store.put({"pk": "GAME", "sk": "g1", "version": 1, "moves": 0, "keep": True})

        record = await store.conditional_update("GAME", "g1", {"version": 2, "moves": 1}, {"version": 1})

        assert record == {"pk": "GAME", "sk": "g1", "version": 2, "moves": 1, "keep": True}
        assert await store.get("GAME", "g1") == record

    async def test_stale_version_leaves_record_untouched(self, store):
        await store.put({"pk": "GAME", "sk": "g1", "version": 2})

        with pytest.raises(ConditionFailedError):
            await store.conditional_update("GAME", "g1", {"version": 2, "moves": 9}, {"version": 1})

        assert await store.get("GAME", "g1") == {"pk": "GAME", "sk": "g1", "version": 2}

    async def test_update_of_missing_record_fails(self, store):
        with pytest.raises(ConditionFailedError):
            await store.conditional_update("GAME", "g1", {"version": 2}, {"version": 1})

        assert await store.get("GAME", "g1") is None

    async def test_missing_value_removes_field(self, store):
        await store.put({"pk": "USERS", "sk": "u1", "version": 1, "language": "fr"})

        record = await store.conditional_update("USERS", "u1", {"language": MISSING}, {"version": 1})

        assert "language" not in record

    async def test_key_fields_cannot_be_changed(self, store):
        record = await store.conditional_update("GAME", "g1", {"pk": "OTHER", "v": 1}, {"v": MISSING})

        assert (record["pk"], record["sk"]) == ("GAME", "g1")


class TestDelete:
    async def test_unconditional_delete_of_missing_is_noop(self, store):
        await store.delete("GAME", "nope")

    async def test_delete_removes_record(self, store):
        await store.put({"pk": "GAME", "sk": "g1"})

        await store.delete("GAME", "g1")

        assert await store.get("GAME", "g1") is None

    async def test_conditional_delete_checks_expectation(self, store):
        await store.put({"pk": "CHALLENGE", "sk": "c1", "version": 3})

        with pytest.raises(ConditionFailedError):
            await store.delete("CHALLENGE", "c1", {"version": 2})
        await store.delete("CHALLENGE", "c1", {"version": 3})

        assert await store.get("CHALLENGE", "c1") is None

    async def test_conditional_delete_of_missing_record_fails(self, store):
        with pytest.raises(ConditionFailedError):
            await store.delete("CHALLENGE", "c1", {"version": 1})


class TestRangeQuery:
    async def test_returns_prefix_matches_sorted_by_sk(self, store):
        for sk in ("0002#b", "0001#a", "0003#c"):
            await store.put({"pk": "CURRENTGAMES#chess", "sk": sk})
        await store.put({"pk": "CURRENTGAMES#go", "sk": "0001#z"})

        records = await store.range_query("CURRENTGAMES#chess")

        assert [r["sk"] for r in records] == ["0001#a", "0002#b", "0003#c"]

    async def test_filters_by_prefix(self, store):
        for sk in ("COUNTS#chess", "COUNTS#go", "OTHER#x"):
            await store.put({"pk": "METAGAMES", "sk": sk})

        records = await store.range_query("METAGAMES", "COUNTS#")

        assert [r["sk"] for r in records] == ["COUNTS#chess", "COUNTS#go"]

    async def test_empty_partition(self, store):
        assert await store.range_query("NOTHING") == []
