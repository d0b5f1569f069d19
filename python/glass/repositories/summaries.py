"""Session summary repository."""

from collections.abc import Mapping
from typing import Any

from glass.repositories.base import EntitySpec, utcnow
from glass.repositories.session_scoped import SessionScopedRepository
from glass.schemas.records import SummaryRecord


class SummaryRepository(SessionScopedRepository[SummaryRecord]):
    spec = EntitySpec(
        name="summary",
        table="summaries",
        schema=SummaryRecord,
        encrypted_fields=("tldr", "text", "bullet_json", "action_json"),
        owner_field="session_id",
        user_scoped=False,
    )

    async def add(self, summary: Mapping[str, Any]) -> SummaryRecord:
        data = dict(summary)
        data.setdefault("generated_at", utcnow())
        return await self.create(data)

    async def find_by_session_id(self, session_id: str) -> list[SummaryRecord]:
        """Summaries of a session, newest first."""
        ctx = self._context()
        return await self._find(
            ctx, {"session_id": session_id}, order_by="generated_at", descending=True
        )

    async def find_by_owner(self, owner_id: str | None = None) -> list[SummaryRecord]:
        return await self.find_by_session_id(self._owner(self._context(), owner_id))

    async def find_latest_by_session_id(self, session_id: str) -> SummaryRecord | None:
        ctx = self._context()
        return await self._find_one(
            ctx, {"session_id": session_id}, order_by="generated_at", descending=True
        )

    async def count_by_session(self, session_id: str) -> int:
        ctx = self._context()
        return await self._count(ctx, {"session_id": session_id})

    async def total_tokens_used(self, session_id: str) -> int:
        ctx = self._context()
        return await self._sum(ctx, "tokens_used", {"session_id": session_id})

    async def delete_by_session_id(self, session_id: str) -> int:
        return await self.delete_by_owner(session_id)
