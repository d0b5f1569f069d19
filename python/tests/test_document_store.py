"""Tests for the remote document store clients.

FakeDocumentStore is exercised directly; HttpDocumentStore is tested against
respx-mocked endpoints to pin the wire protocol and error mapping.
"""

import json
from datetime import UTC, datetime

import httpx
import pytest
import respx
from httpx import Response

from glass.config import clear_settings_cache
from glass.errors import ErrorCode, StorageError
from glass.storage.client import (
    FakeDocumentStore,
    HttpDocumentStore,
    decode_ejson,
    encode_ejson,
    get_document_store,
    matches,
)

BASE_URL = "https://data.example.com/app/v1"
T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


class TestExtendedJson:
    def test_encode_datetime(self):
        assert encode_ejson({"at": T0}) == {"at": {"$date": "2024-05-01T12:00:00Z"}}

    def test_encode_naive_datetime_as_utc(self):
        assert encode_ejson(datetime(2024, 5, 1, 12, 0)) == {"$date": "2024-05-01T12:00:00Z"}

    def test_decode_nested(self):
        raw = {"documents": [{"_id": {"$oid": "abc"}, "at": {"$date": "2024-05-01T12:00:00Z"}}]}
        assert decode_ejson(raw) == {"documents": [{"_id": "abc", "at": T0}]}

    def test_decode_number_long_date(self):
        millis = int(T0.timestamp() * 1000)
        assert decode_ejson({"$date": {"$numberLong": str(millis)}}) == T0


class TestMatches:
    def test_equality_and_null(self):
        doc = {"user_id": "u1", "ended_at": None}
        assert matches(doc, {"user_id": "u1", "ended_at": None})
        assert matches({"user_id": "u1"}, {"ended_at": None})
        assert not matches(doc, {"user_id": "u2"})

    def test_operators(self):
        doc = {"n": 5, "p": "openai"}
        assert matches(doc, {"n": {"$gte": 5, "$lt": 6}})
        assert not matches(doc, {"n": {"$gt": 5}})
        assert matches(doc, {"p": {"$in": ["openai", "gemini"]}})
        assert matches(doc, {"p": {"$ne": "gemini"}})

    def test_comparison_with_missing_field_is_false(self):
        assert not matches({}, {"n": {"$gt": 1}})

    def test_unknown_operator_rejected(self):
        with pytest.raises(ValueError):
            matches({"n": 1}, {"n": {"$regex": "1"}})


class TestFakeDocumentStore:
    async def test_insert_and_find(self, remote_store):
        await remote_store.insert_one("presets", {"_id": "a", "user_id": "u1", "n": 2})
        await remote_store.insert_many(
            "presets", [{"_id": "b", "user_id": "u1", "n": 1}, {"_id": "c", "user_id": "u2", "n": 3}]
        )

        found = await remote_store.find("presets", {"user_id": "u1"}, sort={"n": 1})

        assert [d["_id"] for d in found] == ["b", "a"]

    async def test_duplicate_id_rejected(self, remote_store):
        await remote_store.insert_one("presets", {"_id": "a"})
        with pytest.raises(StorageError):
            await remote_store.insert_one("presets", {"_id": "a"})

    async def test_documents_are_copied(self, remote_store):
        doc = {"_id": "a", "tags": ["x"]}
        await remote_store.insert_one("presets", doc)
        doc["tags"].append("y")

        found = await remote_store.find_one("presets", {"_id": "a"})
        found["tags"].append("z")

        assert remote_store.documents("presets")[0]["tags"] == ["x"]

    async def test_update_one_upsert_inserts_once(self, remote_store):
        update = {"$set": {"api_key": "k"}, "$setOnInsert": {"_id": "x1", "created_at": T0}}

        assert await remote_store.update_one("ps", {"user_id": "u1", "provider": "openai"}, update, upsert=True) == 1
        assert await remote_store.update_one(
            "ps",
            {"user_id": "u1", "provider": "openai"},
            {"$set": {"api_key": "k2"}, "$setOnInsert": {"_id": "x2"}},
            upsert=True,
        ) == 1

        docs = remote_store.documents("ps")
        assert len(docs) == 1
        assert docs[0]["_id"] == "x1"
        assert docs[0]["api_key"] == "k2"
        assert docs[0]["provider"] == "openai"

    async def test_update_one_without_upsert(self, remote_store):
        assert await remote_store.update_one("ps", {"_id": "missing"}, {"$set": {"a": 1}}) == 0
        assert remote_store.documents("ps") == []

    async def test_update_and_delete_many(self, remote_store):
        await remote_store.insert_many("s", [{"_id": "1", "u": "a"}, {"_id": "2", "u": "a"}, {"_id": "3", "u": "b"}])

        assert await remote_store.update_many("s", {"u": "a"}, {"$set": {"done": True}, "$unset": ["u"]}) == 2
        assert await remote_store.delete_many("s", {"done": True}) == 2
        assert await remote_store.delete_one("s", {"_id": "3"}) == 1

    async def test_aggregate_count_and_sum(self, remote_store):
        await remote_store.insert_many(
            "m", [{"session_id": "s1", "tokens": 3}, {"session_id": "s1", "tokens": 4}, {"session_id": "s2", "tokens": 9}]
        )

        counted = await remote_store.aggregate("m", [{"$match": {"session_id": "s1"}}, {"$count": "count"}])
        summed = await remote_store.aggregate(
            "m", [{"$match": {"session_id": "s1"}}, {"$group": {"_id": None, "total": {"$sum": "$tokens"}}}]
        )

        assert counted == [{"count": 2}]
        assert summed == [{"_id": None, "total": 7}]

    async def test_fail_with_is_raised(self, remote_store):
        remote_store.fail_with = StorageError("presets", "find", "down", transient=True)
        with pytest.raises(StorageError):
            await remote_store.find("presets", {})
        assert remote_store.calls == [("find", "presets")]


class TestHttpDocumentStore:
    @pytest.fixture
    def store(self):
        return HttpDocumentStore(
            BASE_URL, "secret-api-key", database="glass", data_source="cluster0", timeout_s=5
        )

    @respx.mock
    async def test_find_sends_data_api_request(self, store):
        route = respx.post(f"{BASE_URL}/action/find").mock(
            return_value=Response(
                200,
                json={"documents": [{"_id": "a", "started_at": {"$date": "2024-05-01T12:00:00Z"}}]},
            )
        )

        docs = await store.find("sessions", {"user_id": "u1"}, sort={"started_at": -1}, limit=5)

        assert docs == [{"_id": "a", "started_at": T0}]
        request = route.calls.last.request
        assert request.headers["api-key"] == "secret-api-key"
        assert json.loads(request.content) == {
            "dataSource": "cluster0",
            "database": "glass",
            "collection": "sessions",
            "filter": {"user_id": "u1"},
            "sort": {"started_at": -1},
            "limit": 5,
        }
        await store.aclose()

    @respx.mock
    async def test_insert_encodes_datetimes(self, store):
        route = respx.post(f"{BASE_URL}/action/insertOne").mock(
            return_value=Response(200, json={"insertedId": "a"})
        )

        assert await store.insert_one("sessions", {"_id": "a", "started_at": T0}) == "a"

        body = json.loads(route.calls.last.request.content)
        assert body["document"]["started_at"] == {"$date": "2024-05-01T12:00:00Z"}
        await store.aclose()

    @respx.mock
    async def test_update_one_counts_upsert(self, store):
        respx.post(f"{BASE_URL}/action/updateOne").mock(
            return_value=Response(200, json={"matchedCount": 0, "modifiedCount": 0, "upsertedId": "x"})
        )
        assert await store.update_one("ps", {"provider": "openai"}, {"$set": {}}, upsert=True) == 1
        await store.aclose()

    @respx.mock
    async def test_find_one_missing(self, store):
        respx.post(f"{BASE_URL}/action/findOne").mock(return_value=Response(200, json={"document": None}))
        assert await store.find_one("users", {"_id": "nope"}) is None
        await store.aclose()

    @respx.mock
    async def test_server_error_is_transient(self, store):
        respx.post(f"{BASE_URL}/action/find").mock(return_value=Response(503, text="unavailable"))

        with pytest.raises(StorageError) as exc_info:
            await store.find("sessions", {})

        assert exc_info.value.transient is True
        assert exc_info.value.code == ErrorCode.E_STORAGE_UNAVAILABLE
        assert exc_info.value.status_code == 503
        await store.aclose()

    @respx.mock
    async def test_client_error_is_permanent(self, store):
        respx.post(f"{BASE_URL}/action/find").mock(return_value=Response(401, text="bad key"))

        with pytest.raises(StorageError) as exc_info:
            await store.find("sessions", {})

        assert exc_info.value.transient is False
        assert exc_info.value.code == ErrorCode.E_STORAGE_ERROR
        await store.aclose()

    @respx.mock
    async def test_timeout_is_transient(self, store):
        respx.post(f"{BASE_URL}/action/find").mock(side_effect=httpx.ReadTimeout("slow"))

        with pytest.raises(StorageError) as exc_info:
            await store.find("sessions", {})

        assert exc_info.value.transient is True
        await store.aclose()

    @respx.mock
    async def test_connect_error_is_transient(self, store):
        respx.post(f"{BASE_URL}/action/deleteMany").mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(StorageError) as exc_info:
            await store.delete_many("sessions", {"user_id": "u1"})

        assert exc_info.value.transient is True
        assert exc_info.value.operation == "deleteMany"
        await store.aclose()

    async def test_insert_many_empty_skips_request(self, store):
        assert await store.insert_many("sessions", []) == []


class TestGetDocumentStore:
    def test_fake_when_unconfigured(self):
        assert isinstance(get_document_store(), FakeDocumentStore)

    def test_http_when_configured(self, monkeypatch):
        monkeypatch.setenv("REMOTE_STORE_URL", BASE_URL + "/")
        monkeypatch.setenv("REMOTE_STORE_API_KEY", "k")
        clear_settings_cache()

        assert isinstance(get_document_store(), HttpDocumentStore)
