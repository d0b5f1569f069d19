"""Generic repository over the local and remote stores.

Every public repository call:
1. Takes one auth snapshot (CallContext) and uses it for all internal steps
2. Scopes user-owned entities to the snapshot's user id, overwriting any
   caller-supplied user_id
3. Encrypts designated fields before writes and decrypts them (best effort)
   after reads
4. Normalizes remote _id to id
5. Surfaces backend failures as StorageError; remote calls are bounded by
   REMOTE_TIMEOUT_S

Record ids are generated here (uuid4 hex) so the same id is valid in both
backends and migration can upsert by id.
"""

import asyncio
import copy
from collections.abc import Awaitable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, ClassVar, Generic, TypeVar
from uuid import uuid4

from glass.config import get_settings
from glass.db.local_store import LocalStore
from glass.errors import GlassError, StorageError
from glass.logging import get_logger, set_backend_context
from glass.repositories.backend import AuthProvider, Backend, CallContext
from glass.schemas.records import Record
from glass.services.crypto import EncryptionService
from glass.storage.client import DocumentStoreBase

logger = get_logger(__name__)

R = TypeVar("R", bound=Record)
T = TypeVar("T")

# Fields the repository owns; callers cannot patch them
_PROTECTED_FIELDS = frozenset({"id", "_id", "created_at"})


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return uuid4().hex


@dataclass(frozen=True)
class EntitySpec:
    """Static description of a stored entity.

    Attributes:
        name: Entity name used in errors and logs
        table: Local table and remote collection name
        schema: Record model returned to callers
        encrypted_fields: Text fields stored as ciphertext
        owner_field: Field that find_by_owner/delete_by_owner filter on
        user_scoped: Whether every call is restricted to the current user
    """

    name: str
    table: str
    schema: type[Record]
    encrypted_fields: tuple[str, ...] = ()
    owner_field: str = "user_id"
    user_scoped: bool = True

    @property
    def has_created_at(self) -> bool:
        return "created_at" in self.schema.model_fields

    @property
    def has_updated_at(self) -> bool:
        return "updated_at" in self.schema.model_fields


class Repository(Generic[R]):
    """Backend-agnostic CRUD for one entity.

    Subclasses set `spec` and add entity-specific operations built on the
    protected `_find`, `_insert`, `_update_where`, ... helpers, passing the
    CallContext captured at the start of their public method.
    """

    spec: ClassVar[EntitySpec]

    def __init__(
        self,
        local: LocalStore,
        remote: DocumentStoreBase,
        encryption: EncryptionService,
        auth: AuthProvider,
    ):
        self._local = local
        self._remote = remote
        self._encryption = encryption
        self._auth = auth
        self._pinned_backend: Backend | None = None
        self._pinned_user_id: str | None = None

    def pinned(self, backend: Backend, user_id: str | None = None) -> "Repository[R]":
        """Return a copy of this repository fixed to one backend.

        If user_id is given the copy also ignores the auth snapshot's user and
        encrypts with user_id's key, whatever key is active process-wide.
        """
        clone = copy.copy(self)
        clone._pinned_backend = backend
        clone._pinned_user_id = user_id
        if user_id is not None:
            clone._encryption = self._encryption.for_user(user_id)
        return clone

    # ------------------------------------------------------------------
    # Call plumbing
    # ------------------------------------------------------------------

    def _context(self) -> CallContext:
        if self._pinned_user_id is not None and self._pinned_backend is not None:
            ctx = CallContext(backend=self._pinned_backend, user_id=self._pinned_user_id)
        else:
            ctx = CallContext.from_user(self._auth.get_current_user(), pinned=self._pinned_backend)
        set_backend_context(ctx.backend.value)
        return ctx

    async def _remote_call(self, operation: str, awaitable: Awaitable[T]) -> T:
        timeout_s = get_settings().remote_timeout_s
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout_s)
        except TimeoutError as e:
            logger.warning(
                "remote_call_timeout", entity=self.spec.name, operation=operation, timeout_s=timeout_s
            )
            raise StorageError(
                self.spec.name, operation, f"timed out after {timeout_s}s", transient=True
            ) from e
        except GlassError:
            raise
        except Exception as e:
            logger.error(
                "remote_call_failed", entity=self.spec.name, operation=operation, error=str(e)
            )
            raise StorageError(self.spec.name, operation, str(e)) from e

    def _scoped(self, ctx: CallContext, where: Mapping[str, Any] | None = None) -> dict[str, Any]:
        scoped = dict(where or {})
        if self.spec.user_scoped:
            scoped["user_id"] = ctx.user_id
        return scoped

    async def _restrict(self, ctx: CallContext, where: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """Filter for reads, updates and deletes: the caller's where plus ownership."""
        return self._scoped(ctx, where)

    @staticmethod
    def _remote_filter(where: Mapping[str, Any]) -> dict[str, Any]:
        return {("_id" if k == "id" else k): v for k, v in where.items()}

    @staticmethod
    def _remote_field(field: str) -> str:
        return "_id" if field == "id" else field

    def _encrypt(self, values: Mapping[str, Any]) -> dict[str, Any]:
        encrypted = dict(values)
        for field in self.spec.encrypted_fields:
            if field in encrypted:
                encrypted[field] = self._encryption.encrypt(encrypted[field])
        return encrypted

    def _to_record(self, raw: Mapping[str, Any]) -> R:
        data = dict(raw)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        for field in self.spec.encrypted_fields:
            if field in data:
                data[field] = self._encryption.decrypt_field(
                    data[field], entity=self.spec.name, field=field
                )
        return self.spec.schema.model_validate(data)  # type: ignore[return-value]

    def _new_document(self, ctx: CallContext, data: Mapping[str, Any], now: datetime) -> dict[str, Any]:
        document = {k: v for k, v in data.items() if k != "_id"}
        document["id"] = document.get("id") or new_id()
        if self.spec.user_scoped:
            document["user_id"] = ctx.user_id
        if self.spec.has_created_at:
            document["created_at"] = document.get("created_at") or now
        if self.spec.has_updated_at:
            document["updated_at"] = now
        return self._encrypt(document)

    # ------------------------------------------------------------------
    # Backend dispatch (one snapshot per call)
    # ------------------------------------------------------------------

    async def _find(
        self,
        ctx: CallContext,
        where: Mapping[str, Any] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[R]:
        where = await self._restrict(ctx, where)
        if ctx.backend is Backend.LOCAL:
            rows = self._local.scan(
                self.spec.table, where, order_by=order_by, descending=descending, limit=limit
            )
        else:
            sort = {self._remote_field(order_by): -1 if descending else 1} if order_by else None
            rows = await self._remote_call(
                "find",
                self._remote.find(
                    self.spec.table, self._remote_filter(where), sort=sort, limit=limit
                ),
            )
        return [self._to_record(row) for row in rows]

    async def _find_one(self, ctx: CallContext, where: Mapping[str, Any], **kwargs: Any) -> R | None:
        found = await self._find(ctx, where, limit=1, **kwargs)
        return found[0] if found else None

    async def _insert(self, ctx: CallContext, documents: Sequence[Mapping[str, Any]]) -> list[R]:
        now = utcnow()
        prepared = [self._new_document(ctx, doc, now) for doc in documents]
        if not prepared:
            return []
        if ctx.backend is Backend.LOCAL:
            rows = self._local.insert_many(self.spec.table, prepared)
        else:
            remote_docs = [self._remote_filter(doc) for doc in prepared]
            if len(remote_docs) == 1:
                await self._remote_call("insert", self._remote.insert_one(self.spec.table, remote_docs[0]))
            else:
                await self._remote_call(
                    "insert_many", self._remote.insert_many(self.spec.table, remote_docs)
                )
            rows = prepared
        return [self._to_record(row) for row in rows]

    async def _update_where(self, ctx: CallContext, where: Mapping[str, Any], patch: Mapping[str, Any]) -> int:
        values = {k: v for k, v in patch.items() if k not in _PROTECTED_FIELDS}
        if self.spec.user_scoped:
            values.pop("user_id", None)
        if self.spec.has_updated_at:
            values["updated_at"] = utcnow()
        values = self._encrypt(values)
        if not values:
            return 0
        where = await self._restrict(ctx, where)
        if ctx.backend is Backend.LOCAL:
            return self._local.update_where(self.spec.table, where, values)
        return await self._remote_call(
            "update",
            self._remote.update_many(self.spec.table, self._remote_filter(where), {"$set": values}),
        )

    async def _delete_where(self, ctx: CallContext, where: Mapping[str, Any] | None = None) -> int:
        where = await self._restrict(ctx, where)
        if ctx.backend is Backend.LOCAL:
            return self._local.delete_where(self.spec.table, where)
        return await self._remote_call(
            "delete", self._remote.delete_many(self.spec.table, self._remote_filter(where))
        )

    async def _count(self, ctx: CallContext, where: Mapping[str, Any] | None = None) -> int:
        where = await self._restrict(ctx, where)
        if ctx.backend is Backend.LOCAL:
            return self._local.count(self.spec.table, where)
        docs = await self._remote_call(
            "count",
            self._remote.aggregate(
                self.spec.table, [{"$match": self._remote_filter(where)}, {"$count": "count"}]
            ),
        )
        return int(docs[0]["count"]) if docs else 0

    async def _sum(self, ctx: CallContext, field: str, where: Mapping[str, Any] | None = None) -> int:
        where = await self._restrict(ctx, where)
        if ctx.backend is Backend.LOCAL:
            return self._local.aggregate_sum(self.spec.table, field, where)
        docs = await self._remote_call(
            "sum",
            self._remote.aggregate(
                self.spec.table,
                [
                    {"$match": self._remote_filter(where)},
                    {"$group": {"_id": None, "total": {"$sum": f"${field}"}}},
                ],
            ),
        )
        return int(docs[0].get("total") or 0) if docs else 0

    async def _upsert(self, ctx: CallContext, key: Mapping[str, Any], data: Mapping[str, Any]) -> R:
        now = utcnow()
        scoped_key = self._scoped(ctx, key)
        where = await self._restrict(ctx, key)
        values = {k: v for k, v in data.items() if k not in _PROTECTED_FIELDS}
        values.update({k: v for k, v in scoped_key.items() if k != "id"})
        if self.spec.has_updated_at:
            values["updated_at"] = data.get("updated_at") or now
        values = self._encrypt(values)

        record_id = scoped_key.get("id") or data.get("id") or new_id()
        on_insert: dict[str, Any] = {}
        if self.spec.has_created_at:
            on_insert["created_at"] = data.get("created_at") or now

        if ctx.backend is Backend.LOCAL:
            existing = self._local.scan(self.spec.table, where, limit=1)
            if existing:
                row = self._local.put(self.spec.table, existing[0]["id"], values)
            else:
                row = self._local.put(self.spec.table, record_id, {**values, **on_insert})
            return self._to_record(row)

        remote_where = self._remote_filter(where)
        await self._remote_call(
            "upsert",
            self._remote.update_one(
                self.spec.table,
                remote_where,
                {"$set": values, "$setOnInsert": {"_id": record_id, **on_insert}},
                upsert=True,
            ),
        )
        document = await self._remote_call(
            "upsert", self._remote.find_one(self.spec.table, remote_where)
        )
        if document is None:
            raise StorageError(self.spec.name, "upsert", "record missing after upsert")
        return self._to_record(document)

    def _owner(self, ctx: CallContext, owner_id: str | None) -> str:
        if owner_id is not None:
            return owner_id
        if self.spec.owner_field == "user_id":
            return ctx.user_id
        raise ValueError(f"{self.spec.name}: owner id is required")

    # ------------------------------------------------------------------
    # Public CRUD
    # ------------------------------------------------------------------

    async def create(self, data: Mapping[str, Any]) -> R:
        """Insert a new record. The only non-idempotent operation."""
        ctx = self._context()
        return (await self._insert(ctx, [data]))[0]

    async def find_by_id(self, record_id: str) -> R | None:
        ctx = self._context()
        return await self._find_one(ctx, {"id": record_id})

    async def find_by_owner(self, owner_id: str | None = None) -> list[R]:
        ctx = self._context()
        return await self._find(ctx, {self.spec.owner_field: self._owner(ctx, owner_id)})

    async def update(self, record_id: str, patch: Mapping[str, Any]) -> R | None:
        """Apply a partial update. Returns the updated record, or None if absent."""
        ctx = self._context()
        await self._update_where(ctx, {"id": record_id}, patch)
        return await self._find_one(ctx, {"id": record_id})

    async def delete(self, record_id: str) -> bool:
        ctx = self._context()
        return await self._delete_where(ctx, {"id": record_id}) > 0

    async def delete_by_owner(self, owner_id: str | None = None) -> int:
        ctx = self._context()
        return await self._delete_where(ctx, {self.spec.owner_field: self._owner(ctx, owner_id)})

    async def upsert(self, key: Mapping[str, Any], data: Mapping[str, Any]) -> R:
        """Insert or update the record identified by key (natural key or id)."""
        ctx = self._context()
        return await self._upsert(ctx, key, data)

    async def count(self, where: Mapping[str, Any] | None = None) -> int:
        ctx = self._context()
        return await self._count(ctx, where)
