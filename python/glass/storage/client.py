"""Remote document store client abstraction.

Provides a small async document API used by the repositories when a user is
signed in:
- insert_one / insert_many
- find_one / find (filter, sort, limit)
- update_one (with upsert) / update_many
- delete_one / delete_many
- aggregate ($match, $group with $sum, $sort, $limit, $count)

Filters are plain documents: equality on a field, or an operator document
using $eq, $ne, $gt, $gte, $lt, $lte, $in. Updates use $set, $setOnInsert
and $unset.

HttpDocumentStore speaks a Data-API style wire protocol over httpx:
    POST {base_url}/action/{action}
    {"dataSource": ..., "database": ..., "collection": ..., "filter": ..., ...}
Datetimes travel as extended JSON ({"$date": "<iso8601>"}).
"""

import asyncio
import copy
import operator
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

import httpx

from glass.config import get_settings
from glass.errors import StorageError
from glass.logging import get_logger

logger = get_logger(__name__)

Document = dict[str, Any]
Filter = Mapping[str, Any]
Sort = Mapping[str, int]

# Status codes worth retrying later; everything else is a hard failure
_TRANSIENT_STATUS = {408, 429, 502, 503, 504}


# =============================================================================
# Extended JSON helpers
# =============================================================================


def encode_ejson(value: Any) -> Any:
    """Encode datetimes as {"$date": iso} recursively."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return {"$date": value.astimezone(UTC).isoformat().replace("+00:00", "Z")}
    if isinstance(value, Mapping):
        return {k: encode_ejson(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [encode_ejson(v) for v in value]
    return value


def decode_ejson(value: Any) -> Any:
    """Decode {"$date": ...} and {"$oid": ...} wrappers recursively."""
    if isinstance(value, Mapping):
        if len(value) == 1 and "$date" in value:
            raw = value["$date"]
            if isinstance(raw, Mapping) and "$numberLong" in raw:
                return datetime.fromtimestamp(int(raw["$numberLong"]) / 1000, tz=UTC)
            return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
        if len(value) == 1 and "$oid" in value:
            return str(value["$oid"])
        return {k: decode_ejson(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_ejson(v) for v in value]
    return value


# =============================================================================
# Filter evaluation (used by the in-memory store)
# =============================================================================


def _compare(op: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def check(actual: Any, expected: Any) -> bool:
        if actual is None or expected is None:
            return False
        try:
            return op(actual, expected)
        except TypeError:
            return False

    return check


_FILTER_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "$eq": operator.eq,
    "$ne": operator.ne,
    "$gt": _compare(operator.gt),
    "$gte": _compare(operator.ge),
    "$lt": _compare(operator.lt),
    "$lte": _compare(operator.le),
    "$in": lambda actual, expected: actual in list(expected),
}


def matches(document: Mapping[str, Any], filter: Filter | None) -> bool:
    """Whether a document satisfies a filter document."""
    for field, condition in (filter or {}).items():
        actual = document.get(field)
        if isinstance(condition, Mapping) and condition and all(
            k.startswith("$") for k in condition
        ):
            for op, expected in condition.items():
                check = _FILTER_OPERATORS.get(op)
                if check is None:
                    raise ValueError(f"Unsupported filter operator: {op}")
                if not check(actual, expected):
                    return False
        elif actual != condition:
            return False
    return True


def _sort_documents(documents: list[Document], sort: Sort | None) -> list[Document]:
    # Stable multi-key sort: apply keys from last to first; None sorts first
    for field, direction in reversed(list((sort or {}).items())):
        documents.sort(
            key=lambda d, f=field: (d.get(f) is not None, d.get(f)),
            reverse=direction < 0,
        )
    return documents


def _apply_update(document: Document, update: Mapping[str, Any], *, inserting: bool) -> None:
    for op, fields in update.items():
        if op == "$set":
            document.update(copy.deepcopy(dict(fields)))
        elif op == "$setOnInsert":
            if inserting:
                document.update(copy.deepcopy(dict(fields)))
        elif op == "$unset":
            for field in fields:
                document.pop(field, None)
        else:
            raise ValueError(f"Unsupported update operator: {op}")


# =============================================================================
# Abstract client
# =============================================================================


class DocumentStoreBase(ABC):
    """Abstract base class for remote document store implementations.

    Every method raises StorageError on failure; transient=True marks
    timeouts and connectivity problems.
    """

    @abstractmethod
    async def insert_one(self, collection: str, document: Document) -> str:
        """Insert a document and return its _id."""
        ...

    @abstractmethod
    async def insert_many(self, collection: str, documents: Sequence[Document]) -> list[str]:
        """Insert documents in order and return their _ids."""
        ...

    @abstractmethod
    async def find_one(self, collection: str, filter: Filter) -> Document | None:
        """Return the first matching document, or None."""
        ...

    @abstractmethod
    async def find(
        self,
        collection: str,
        filter: Filter | None = None,
        *,
        sort: Sort | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        """Return all matching documents."""
        ...

    @abstractmethod
    async def update_one(
        self,
        collection: str,
        filter: Filter,
        update: Mapping[str, Any],
        *,
        upsert: bool = False,
    ) -> int:
        """Update the first matching document.

        Returns:
            Number of documents matched or upserted (0 or 1).
        """
        ...

    @abstractmethod
    async def update_many(self, collection: str, filter: Filter, update: Mapping[str, Any]) -> int:
        """Update every matching document and return the match count."""
        ...

    @abstractmethod
    async def delete_one(self, collection: str, filter: Filter) -> int:
        """Delete the first matching document and return the deleted count."""
        ...

    @abstractmethod
    async def delete_many(self, collection: str, filter: Filter) -> int:
        """Delete every matching document and return the deleted count."""
        ...

    @abstractmethod
    async def aggregate(self, collection: str, pipeline: Sequence[Mapping[str, Any]]) -> list[Document]:
        """Run an aggregation pipeline."""
        ...

    async def aclose(self) -> None:
        """Release network resources (no-op by default)."""
        return None


# =============================================================================
# HTTP implementation
# =============================================================================


class HttpDocumentStore(DocumentStoreBase):
    """Production document store client.

    Uses httpx for HTTP operations against a Data-API style endpoint.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        database: str,
        data_source: str,
        timeout_s: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: API base URL (without /action suffix).
            api_key: API key sent as the api-key header.
            database: Logical database name.
            data_source: Cluster / data source name.
            timeout_s: Per-request timeout.
            client: Optional preconfigured AsyncClient (owned by the caller).
        """
        self._base_url = base_url.rstrip("/")
        self._database = database
        self._data_source = data_source
        self._headers = {
            "api-key": api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        self._timeout = httpx.Timeout(timeout_s)
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _action(self, action: str, collection: str, **body: Any) -> dict[str, Any]:
        payload = {
            "dataSource": self._data_source,
            "database": self._database,
            "collection": collection,
        }
        payload.update({k: encode_ejson(v) for k, v in body.items() if v is not None})
        url = f"{self._base_url}/action/{action}"

        try:
            response = await self._get_client().post(
                url, headers=self._headers, json=payload, timeout=self._timeout
            )
        except httpx.TimeoutException as e:
            logger.warning("remote_store_timeout", collection=collection, action=action)
            raise StorageError(collection, action, "request timed out", transient=True) from e
        except httpx.TransportError as e:
            logger.warning(
                "remote_store_unreachable", collection=collection, action=action, error=str(e)
            )
            raise StorageError(collection, action, f"transport error: {e}", transient=True) from e

        if response.status_code >= 400:
            transient = response.status_code in _TRANSIENT_STATUS or response.status_code >= 500
            logger.error(
                "remote_store_error",
                collection=collection,
                action=action,
                status_code=response.status_code,
            )
            raise StorageError(
                collection,
                action,
                f"{response.status_code} {response.text[:200]}",
                transient=transient,
            )

        return decode_ejson(response.json())

    async def insert_one(self, collection: str, document: Document) -> str:
        data = await self._action("insertOne", collection, document=dict(document))
        return str(data.get("insertedId", document.get("_id")))

    async def insert_many(self, collection: str, documents: Sequence[Document]) -> list[str]:
        if not documents:
            return []
        data = await self._action("insertMany", collection, documents=[dict(d) for d in documents])
        return [str(i) for i in data.get("insertedIds", [])]

    async def find_one(self, collection: str, filter: Filter) -> Document | None:
        data = await self._action("findOne", collection, filter=dict(filter))
        return data.get("document")

    async def find(
        self,
        collection: str,
        filter: Filter | None = None,
        *,
        sort: Sort | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        data = await self._action(
            "find",
            collection,
            filter=dict(filter or {}),
            sort=dict(sort) if sort else None,
            limit=limit,
        )
        return list(data.get("documents", []))

    async def update_one(
        self,
        collection: str,
        filter: Filter,
        update: Mapping[str, Any],
        *,
        upsert: bool = False,
    ) -> int:
        data = await self._action(
            "updateOne", collection, filter=dict(filter), update=dict(update), upsert=upsert
        )
        return int(data.get("matchedCount", 0)) + (1 if data.get("upsertedId") else 0)

    async def update_many(self, collection: str, filter: Filter, update: Mapping[str, Any]) -> int:
        data = await self._action("updateMany", collection, filter=dict(filter), update=dict(update))
        return int(data.get("matchedCount", 0))

    async def delete_one(self, collection: str, filter: Filter) -> int:
        data = await self._action("deleteOne", collection, filter=dict(filter))
        return int(data.get("deletedCount", 0))

    async def delete_many(self, collection: str, filter: Filter) -> int:
        data = await self._action("deleteMany", collection, filter=dict(filter))
        return int(data.get("deletedCount", 0))

    async def aggregate(self, collection: str, pipeline: Sequence[Mapping[str, Any]]) -> list[Document]:
        data = await self._action("aggregate", collection, pipeline=[dict(s) for s in pipeline])
        return list(data.get("documents", []))


# =============================================================================
# In-memory implementation
# =============================================================================


class FakeDocumentStore(DocumentStoreBase):
    """Fake document store for testing without a real remote backend.

    Stores documents in memory and provides deterministic behavior for unit
    tests. Documents are deep-copied on the way in and out.
    """

    def __init__(self) -> None:
        self._collections: dict[str, list[Document]] = {}
        self.latency_s: float = 0.0
        self.fail_with: Exception | None = None
        self.calls: list[tuple[str, str]] = []

    async def _enter(self, action: str, collection: str) -> list[Document]:
        self.calls.append((action, collection))
        if self.latency_s:
            await asyncio.sleep(self.latency_s)
        if self.fail_with is not None:
            raise self.fail_with
        return self._collections.setdefault(collection, [])

    @staticmethod
    def _with_id(document: Mapping[str, Any]) -> Document:
        stored = copy.deepcopy(dict(document))
        stored.setdefault("_id", uuid4().hex)
        return stored

    async def insert_one(self, collection: str, document: Document) -> str:
        docs = await self._enter("insertOne", collection)
        stored = self._with_id(document)
        if any(d["_id"] == stored["_id"] for d in docs):
            raise StorageError(collection, "insertOne", f"duplicate _id {stored['_id']}")
        docs.append(stored)
        return stored["_id"]

    async def insert_many(self, collection: str, documents: Sequence[Document]) -> list[str]:
        docs = await self._enter("insertMany", collection)
        stored = [self._with_id(d) for d in documents]
        existing = {d["_id"] for d in docs}
        for doc in stored:
            if doc["_id"] in existing:
                raise StorageError(collection, "insertMany", f"duplicate _id {doc['_id']}")
            existing.add(doc["_id"])
        docs.extend(stored)
        return [d["_id"] for d in stored]

    async def find_one(self, collection: str, filter: Filter) -> Document | None:
        docs = await self._enter("findOne", collection)
        for doc in docs:
            if matches(doc, filter):
                return copy.deepcopy(doc)
        return None

    async def find(
        self,
        collection: str,
        filter: Filter | None = None,
        *,
        sort: Sort | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        docs = await self._enter("find", collection)
        found = _sort_documents([copy.deepcopy(d) for d in docs if matches(d, filter)], sort)
        return found[:limit] if limit is not None else found

    async def update_one(
        self,
        collection: str,
        filter: Filter,
        update: Mapping[str, Any],
        *,
        upsert: bool = False,
    ) -> int:
        docs = await self._enter("updateOne", collection)
        for doc in docs:
            if matches(doc, filter):
                _apply_update(doc, update, inserting=False)
                return 1
        if not upsert:
            return 0
        seed = {k: v for k, v in filter.items() if not isinstance(v, Mapping)}
        doc = self._with_id(seed)
        _apply_update(doc, update, inserting=True)
        docs.append(doc)
        return 1

    async def update_many(self, collection: str, filter: Filter, update: Mapping[str, Any]) -> int:
        docs = await self._enter("updateMany", collection)
        matched = 0
        for doc in docs:
            if matches(doc, filter):
                _apply_update(doc, update, inserting=False)
                matched += 1
        return matched

    async def delete_one(self, collection: str, filter: Filter) -> int:
        docs = await self._enter("deleteOne", collection)
        for i, doc in enumerate(docs):
            if matches(doc, filter):
                del docs[i]
                return 1
        return 0

    async def delete_many(self, collection: str, filter: Filter) -> int:
        docs = await self._enter("deleteMany", collection)
        keep = [d for d in docs if not matches(d, filter)]
        deleted = len(docs) - len(keep)
        docs[:] = keep
        return deleted

    async def aggregate(self, collection: str, pipeline: Sequence[Mapping[str, Any]]) -> list[Document]:
        docs = [copy.deepcopy(d) for d in await self._enter("aggregate", collection)]
        for stage in pipeline:
            (name, spec), = stage.items()
            if name == "$match":
                docs = [d for d in docs if matches(d, spec)]
            elif name == "$group":
                docs = self._group(docs, spec)
            elif name == "$sort":
                docs = _sort_documents(docs, spec)
            elif name == "$limit":
                docs = docs[: int(spec)]
            elif name == "$count":
                docs = [{spec: len(docs)}]
            else:
                raise ValueError(f"Unsupported aggregation stage: {name}")
        return docs

    @staticmethod
    def _group(docs: list[Document], spec: Mapping[str, Any]) -> list[Document]:
        def resolve(doc: Document, expr: Any) -> Any:
            if isinstance(expr, str) and expr.startswith("$"):
                return doc.get(expr[1:])
            return expr

        groups: dict[Any, Document] = {}
        for doc in docs:
            key = resolve(doc, spec["_id"])
            group = groups.setdefault(key, {"_id": key})
            for field, accumulator in spec.items():
                if field == "_id":
                    continue
                (acc, expr), = accumulator.items()
                if acc != "$sum":
                    raise ValueError(f"Unsupported accumulator: {acc}")
                value = resolve(doc, expr)
                group[field] = group.get(field, 0) + (value if isinstance(value, int | float) else 0)
        return list(groups.values())

    # Test helper methods

    def documents(self, collection: str) -> list[Document]:
        """Return a copy of every document in a collection (test helper)."""
        return copy.deepcopy(self._collections.get(collection, []))

    def clear(self) -> None:
        """Remove all collections (test helper)."""
        self._collections.clear()
        self.calls.clear()


def get_document_store() -> DocumentStoreBase:
    """Get the configured remote document store.

    Returns:
        HttpDocumentStore if REMOTE_STORE_URL and REMOTE_STORE_API_KEY are set,
        FakeDocumentStore otherwise.
    """
    settings = get_settings()
    if settings.remote_enabled:
        return HttpDocumentStore(
            settings.normalized_remote_url or "",
            settings.remote_store_api_key or "",
            database=settings.remote_store_database,
            data_source=settings.remote_store_data_source,
            timeout_s=settings.remote_timeout_s,
        )

    logger.warning("remote_store_not_configured", fallback="in_memory")
    return FakeDocumentStore()
