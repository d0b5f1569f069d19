"""Session repository."""

from collections.abc import Mapping
from typing import Any

from glass.db.models import SessionType
from glass.logging import get_logger
from glass.repositories.base import EntitySpec, Repository, utcnow
from glass.schemas.records import SessionRecord

logger = get_logger(__name__)


class SessionRepository(Repository[SessionRecord]):
    spec = EntitySpec(
        name="session",
        table="sessions",
        schema=SessionRecord,
        encrypted_fields=("title",),
    )

    async def create(self, data: Mapping[str, Any] | None = None) -> SessionRecord:
        """Start a new session for the current user."""
        data = dict(data or {})
        now = utcnow()
        data.setdefault("session_type", SessionType.ask.value)
        data.setdefault("started_at", now)
        data.setdefault("title", f"Session @ {now.strftime('%H:%M:%S')}")
        return await super().create(data)

    async def find_by_owner(self, owner_id: str | None = None) -> list[SessionRecord]:
        """All sessions of the current user, newest first."""
        ctx = self._context()
        return await self._find(ctx, order_by="started_at", descending=True)

    async def find_by_owner_and_type(self, session_type: str) -> list[SessionRecord]:
        ctx = self._context()
        return await self._find(
            ctx, {"session_type": session_type}, order_by="started_at", descending=True
        )

    async def find_active(self, session_type: str | None = None) -> SessionRecord | None:
        """Most recently started session that has not ended."""
        ctx = self._context()
        where: dict = {"ended_at": None}
        if session_type is not None:
            where["session_type"] = session_type
        return await self._find_one(ctx, where, order_by="started_at", descending=True)

    async def get_or_create_active(self, session_type: str = SessionType.ask.value) -> SessionRecord:
        """Reuse the active session or start a new one.

        An active ask session is promoted to listen when listening starts,
        since a listen session also records questions.
        """
        ctx = self._context()
        active = await self._find_one(ctx, {"ended_at": None}, order_by="started_at", descending=True)
        if active is None:
            now = utcnow()
            created = await self._insert(
                ctx,
                [
                    {
                        "session_type": session_type,
                        "started_at": now,
                        "title": f"Session @ {now.strftime('%H:%M:%S')}",
                    }
                ],
            )
            logger.info("session_started", session_id=created[0].id, session_type=session_type)
            return created[0]

        patch = {}
        if session_type == SessionType.listen.value and active.session_type != session_type:
            patch["session_type"] = session_type
        await self._update_where(ctx, {"id": active.id}, patch)
        return await self._find_one(ctx, {"id": active.id}) or active

    async def end(self, session_id: str) -> SessionRecord | None:
        """Set ended_at once. Ending an ended session is a no-op."""
        ctx = self._context()
        session = await self._find_one(ctx, {"id": session_id})
        if session is None or session.ended_at is not None:
            return session
        ended_at = max(utcnow(), session.started_at)
        await self._update_where(ctx, {"id": session_id, "ended_at": None}, {"ended_at": ended_at})
        logger.info("session_ended", session_id=session_id)
        return await self._find_one(ctx, {"id": session_id})

    async def end_all_active(self) -> int:
        """End every open session of the current user (zombie cleanup)."""
        ctx = self._context()
        ended = await self._update_where(ctx, {"ended_at": None}, {"ended_at": utcnow()})
        if ended:
            logger.info("sessions_ended", count=ended, backend=ctx.backend.value)
        return ended

    async def update_title(self, session_id: str, title: str) -> SessionRecord | None:
        return await self.update(session_id, {"title": title})

    async def touch(self, session_id: str) -> SessionRecord | None:
        """Bump updated_at."""
        return await self.update(session_id, {})
