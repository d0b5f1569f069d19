"""Ask-mode message repository. Append-only, ordered by sent_at."""

from collections.abc import Mapping, Sequence
from datetime import timedelta
from typing import Any

from glass.errors import ErrorCode, ValidationError
from glass.repositories.base import EntitySpec, utcnow
from glass.repositories.session_scoped import SessionScopedRepository
from glass.schemas.records import AiMessageRecord

_ROLES = ("user", "assistant")


def _check_role(message: Mapping[str, Any]) -> None:
    if message.get("role", "user") not in _ROLES:
        raise ValidationError(ErrorCode.E_INVALID_REQUEST, f"Invalid message role: {message.get('role')!r}")


class AiMessageRepository(SessionScopedRepository[AiMessageRecord]):
    spec = EntitySpec(
        name="ai_message",
        table="ai_messages",
        schema=AiMessageRecord,
        encrypted_fields=("content",),
        owner_field="session_id",
        user_scoped=False,
    )

    async def add(self, message: Mapping[str, Any]) -> AiMessageRecord:
        _check_role(message)
        data = {"role": "user", **message}
        data.setdefault("sent_at", utcnow())
        return await self.create(data)

    async def add_batch(self, messages: Sequence[Mapping[str, Any]]) -> list[AiMessageRecord]:
        """Insert messages in one call, keeping their given order."""
        for message in messages:
            _check_role(message)
        base = utcnow()
        prepared = []
        for i, message in enumerate(messages):
            data = {"role": "user", **message}
            data.setdefault("sent_at", base + timedelta(microseconds=i))
            prepared.append(data)
        ctx = self._context()
        return await self._insert(ctx, prepared)

    async def find_by_session_id(self, session_id: str) -> list[AiMessageRecord]:
        ctx = self._context()
        return await self._find(ctx, {"session_id": session_id}, order_by="sent_at")

    async def find_by_owner(self, owner_id: str | None = None) -> list[AiMessageRecord]:
        return await self.find_by_session_id(self._owner(self._context(), owner_id))

    async def find_by_session_and_role(self, session_id: str, role: str) -> list[AiMessageRecord]:
        ctx = self._context()
        return await self._find(ctx, {"session_id": session_id, "role": role}, order_by="sent_at")

    async def count_by_session(self, session_id: str) -> int:
        ctx = self._context()
        return await self._count(ctx, {"session_id": session_id})

    async def total_tokens(self, session_id: str) -> int:
        ctx = self._context()
        return await self._sum(ctx, "tokens", {"session_id": session_id})

    async def delete_by_session_id(self, session_id: str) -> int:
        return await self.delete_by_owner(session_id)
