"""Speech-to-text transcript repository. Append-only, ordered by start_at."""

from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta
from typing import Any

from glass.repositories.base import EntitySpec, utcnow
from glass.repositories.session_scoped import SessionScopedRepository
from glass.schemas.records import TranscriptRecord


class TranscriptRepository(SessionScopedRepository[TranscriptRecord]):
    spec = EntitySpec(
        name="transcript",
        table="transcripts",
        schema=TranscriptRecord,
        encrypted_fields=("speaker", "text"),
        owner_field="session_id",
        user_scoped=False,
    )

    async def add(self, transcript: Mapping[str, Any]) -> TranscriptRecord:
        data = dict(transcript)
        data.setdefault("start_at", utcnow())
        return await self.create(data)

    async def add_batch(self, transcripts: Sequence[Mapping[str, Any]]) -> list[TranscriptRecord]:
        base = utcnow()
        prepared = []
        for i, transcript in enumerate(transcripts):
            data = dict(transcript)
            data.setdefault("start_at", base + timedelta(microseconds=i))
            prepared.append(data)
        ctx = self._context()
        return await self._insert(ctx, prepared)

    async def find_by_session_id(self, session_id: str) -> list[TranscriptRecord]:
        ctx = self._context()
        return await self._find(ctx, {"session_id": session_id}, order_by="start_at")

    async def find_by_owner(self, owner_id: str | None = None) -> list[TranscriptRecord]:
        return await self.find_by_session_id(self._owner(self._context(), owner_id))

    async def find_by_speaker(self, session_id: str, speaker: str) -> list[TranscriptRecord]:
        # speaker is stored encrypted with a random nonce, so match after decryption
        transcripts = await self.find_by_session_id(session_id)
        return [t for t in transcripts if t.speaker == speaker]

    async def full_text(self, session_id: str) -> str:
        transcripts = await self.find_by_session_id(session_id)
        return " ".join(t.text for t in transcripts if t.text)

    async def find_in_time_range(
        self, session_id: str, start: datetime, end: datetime
    ) -> list[TranscriptRecord]:
        """Segments whose start_at lies in [start, end]."""
        ctx = self._context()
        return await self._find(
            ctx,
            {"session_id": session_id, "start_at": {"$gte": start, "$lte": end}},
            order_by="start_at",
        )

    async def count_by_session(self, session_id: str) -> int:
        ctx = self._context()
        return await self._count(ctx, {"session_id": session_id})

    async def delete_by_session_id(self, session_id: str) -> int:
        return await self.delete_by_owner(session_id)
