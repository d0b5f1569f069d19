"""Base for records owned through a session (messages, summaries, transcripts).

These records carry no user_id. Ownership is resolved through the parent
session in the same CallContext as the call itself:
- Writes into a session the caller's user does not own raise NotFoundError
- Reads, counts, updates and deletes only ever see the user's sessions
"""

from collections.abc import Collection, Mapping, Sequence
from typing import Any

from glass.errors import ErrorCode, NotFoundError, ValidationError
from glass.repositories.backend import Backend, CallContext
from glass.repositories.base import R, Repository
from glass.repositories.sessions import SessionRepository

_SESSIONS = SessionRepository.spec.table


class SessionScopedRepository(Repository[R]):
    async def _owned_session_ids(
        self, ctx: CallContext, session_ids: Collection[str] | None = None
    ) -> list[str]:
        """Ids of ctx.user_id's sessions, optionally limited to session_ids."""
        where: dict[str, Any] = {"user_id": ctx.user_id}
        if session_ids is not None:
            where["id"] = {"$in": sorted(session_ids)}
        if ctx.backend is Backend.LOCAL:
            return [row["id"] for row in self._local.scan(_SESSIONS, where)]
        documents = await self._remote_call(
            "find_sessions", self._remote.find(_SESSIONS, self._remote_filter(where))
        )
        return [str(doc["_id"]) for doc in documents]

    async def _require_sessions(self, ctx: CallContext, documents: Sequence[Mapping[str, Any]]) -> None:
        session_ids = {doc.get("session_id") for doc in documents}
        if not all(isinstance(sid, str) and sid for sid in session_ids):
            raise ValidationError(ErrorCode.E_INVALID_REQUEST, f"{self.spec.name} requires a session_id")
        owned = await self._owned_session_ids(ctx, session_ids)
        if session_ids - set(owned):
            raise NotFoundError(ErrorCode.E_SESSION_NOT_FOUND, "Session not found")

    async def _restrict(self, ctx: CallContext, where: Mapping[str, Any] | None = None) -> dict[str, Any]:
        restricted = dict(where or {})
        # Only single-id session filters are supported
        session_id = restricted.get("session_id")
        requested = [session_id] if isinstance(session_id, str) else None
        restricted["session_id"] = {"$in": await self._owned_session_ids(ctx, requested)}
        return restricted

    async def _insert(self, ctx: CallContext, documents: Sequence[Mapping[str, Any]]) -> list[R]:
        if documents:
            await self._require_sessions(ctx, documents)
        return await super()._insert(ctx, documents)

    async def _update_where(
        self, ctx: CallContext, where: Mapping[str, Any], patch: Mapping[str, Any]
    ) -> int:
        if "session_id" in patch:
            await self._require_sessions(ctx, [patch])
        return await super()._update_where(ctx, where, patch)

    async def _upsert(self, ctx: CallContext, key: Mapping[str, Any], data: Mapping[str, Any]) -> R:
        await self._require_sessions(ctx, [{**data, **key}])
        return await super()._upsert(ctx, key, data)
