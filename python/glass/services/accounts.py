"""Cascading deletes across entities.

Ownership spans two backends without foreign keys, so cascades run here,
children before parents: an interrupted delete leaves parents that can be
deleted again, never orphaned children.
"""

from dataclasses import dataclass

from glass.logging import get_logger
from glass.repositories import (
    AiMessageRepository,
    ModelSelectionsRepository,
    PresetRepository,
    ProviderSettingsRepository,
    SessionRepository,
    SummaryRepository,
    TranscriptRepository,
    UserRepository,
)
from glass.repositories.backend import AuthProvider

logger = get_logger(__name__)


@dataclass
class AccountService:
    auth: AuthProvider
    users: UserRepository
    sessions: SessionRepository
    presets: PresetRepository
    provider_settings: ProviderSettingsRepository
    model_selections: ModelSelectionsRepository
    ai_messages: AiMessageRepository
    summaries: SummaryRepository
    transcripts: TranscriptRepository

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session of the current user with its messages, summaries and transcripts."""
        if await self.sessions.find_by_id(session_id) is None:
            return False
        await self.ai_messages.delete_by_session_id(session_id)
        await self.summaries.delete_by_session_id(session_id)
        await self.transcripts.delete_by_session_id(session_id)
        return await self.sessions.delete(session_id)

    async def delete_account(self) -> dict[str, int]:
        """Delete every record of the current user, then the user itself."""
        user_id = self.auth.get_current_user().user_id
        counts = {"sessions": 0, "presets": 0, "provider_settings": 0}
        for session in await self.sessions.find_by_owner():
            await self.delete_session(session.id)
            counts["sessions"] += 1
        counts["presets"] = await self.presets.delete_by_owner()
        counts["provider_settings"] = await self.provider_settings.delete_by_owner()
        await self.model_selections.remove()
        await self.users.delete(user_id)
        logger.info("account_deleted", user_id=user_id, **counts)
        return counts
