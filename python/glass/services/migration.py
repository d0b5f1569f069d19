"""One-time migration of a user's local data into the remote store.

Runs after the first sign-in of a user whose local record has not been
migrated yet:
1. Read the local user record; absent or has_migrated → nothing to do
2. Read the legacy model-state payload and every local record of the user
3. Upsert each into the remote store through the repositories: provider
   settings by (user_id, provider), model selections by user_id, everything
   else by id (ids are shared by both backends)
4. Set has_migrated on the local user, then delete the legacy payload and
   the migrated local records

Every repository used here is pinned to the user, so the run encrypts and
decrypts with that user's key even if the active key changes mid-run (sign-out
or another sign-in). A user already marked has_migrated only gets leftover
local records removed, completing a cleanup that was interrupted.

Every step is an idempotent upsert, so a crash at any point is repaired by
the next run. Failures are contained in the background task and logged as
migration_failed; the next sign-in retries.
"""

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from glass.db.local_store import LocalStore
from glass.errors import MigrationError
from glass.logging import clear_task_context, configure_task_logging, get_logger
from glass.providers.catalog import PROVIDERS
from glass.repositories import (
    AiMessageRepository,
    Backend,
    ModelSelectionsRepository,
    PresetRepository,
    ProviderSettingsRepository,
    SessionRepository,
    SummaryRepository,
    TranscriptRepository,
    UserRepository,
)
from glass.services import events
from glass.services.crypto import EncryptionService, looks_encrypted
from glass.services.events import EventBus
from glass.services.model_state import provider_for_model

logger = get_logger(__name__)

LEGACY_STATE_TABLE = "legacy_state"

# Fields that belong to the owning record, not to the migrated payload
_IDENTITY_FIELDS = {"id", "user_id"}


@dataclass
class MigrationRepositories:
    users: UserRepository
    sessions: SessionRepository
    presets: PresetRepository
    provider_settings: ProviderSettingsRepository
    model_selections: ModelSelectionsRepository
    ai_messages: AiMessageRepository
    summaries: SummaryRepository
    transcripts: TranscriptRepository


def _payload(record: Any) -> dict[str, Any]:
    return {k: v for k, v in record.model_dump().items() if k not in _IDENTITY_FIELDS}


class MigrationCoordinator:
    def __init__(
        self,
        repositories: MigrationRepositories,
        local_store: LocalStore,
        encryption: EncryptionService,
        event_bus: EventBus,
    ):
        self._repos = repositories
        self._local_store = local_store
        self._encryption = encryption
        self._events = event_bus
        self._tasks: dict[str, asyncio.Task[bool]] = {}

    def schedule(self, user_id: str) -> asyncio.Task[bool]:
        """Run the migration for user_id as a detached task.

        A migration already in flight for the same user is reused.
        """
        task = self._tasks.get(user_id)
        if task is not None and not task.done():
            return task

        task = asyncio.create_task(self._run_detached(user_id), name=f"migration:{user_id}")
        self._tasks[user_id] = task

        def _forget(done: asyncio.Task[bool]) -> None:
            if self._tasks.get(user_id) is done:
                del self._tasks[user_id]

        task.add_done_callback(_forget)
        return task

    async def wait_for_pending(self) -> None:
        """Wait until every scheduled migration has finished."""
        while pending := [t for t in self._tasks.values() if not t.done()]:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _run_detached(self, user_id: str) -> bool:
        configure_task_logging(task_name="migration", task_id=uuid4().hex, user_id=user_id)
        try:
            migrated = await self.run(user_id)
        except MigrationError as e:
            logger.error("migration_failed", user_id=user_id, error=e.message)
            return False
        finally:
            clear_task_context()

        if migrated:
            await self._events.emit(events.MIGRATION_COMPLETED, {"user_id": user_id})
            await self._events.emit(events.SETTINGS_UPDATED)
        return migrated

    async def run(self, user_id: str) -> bool:
        """Migrate user_id's local data. Returns False when there was nothing to do.

        Raises:
            MigrationError: Any step failed; already-written records stay and
                are overwritten by the next run.
        """
        local_users = self._repos.users.pinned(Backend.LOCAL, user_id)
        try:
            user = await local_users.get(user_id)
            if user is None or user.has_migrated:
                logger.info("migration_skipped", user_id=user_id, local_user_exists=user is not None)
                if user is not None:
                    leftovers = await self._remove_local_copies(user_id)
                    if leftovers:
                        logger.info("migration_leftovers_removed", user_id=user_id, count=leftovers)
                return False

            logger.info("migration_started", user_id=user_id)
            counts = await self._copy_to_remote(user_id)
            await local_users.set_migration_complete(user_id)
            await self._remove_local_copies(user_id)
        except MigrationError:
            raise
        except Exception as e:
            raise MigrationError(user_id, str(e)) from e

        logger.info("migration_completed", user_id=user_id, **counts)
        return True

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _legacy_state(self, user_id: str) -> Mapping[str, Any]:
        row = self._local_store.get(LEGACY_STATE_TABLE, user_id)
        return (row or {}).get("payload") or {}

    def _legacy_api_keys(self, user_id: str, legacy: Mapping[str, Any]) -> dict[str, str]:
        encryption = self._encryption.for_user(user_id)
        keys: dict[str, str] = {}
        for provider, stored in (legacy.get("api_keys") or {}).items():
            if provider not in PROVIDERS or not stored:
                continue
            key = encryption.decrypt_field(stored, entity=LEGACY_STATE_TABLE, field="api_keys")
            if looks_encrypted(key):
                logger.warning("legacy_key_unreadable", provider=provider)
                continue
            keys[provider] = key
        return keys

    async def _copy_to_remote(self, user_id: str) -> dict[str, int]:
        local = {name: repo.pinned(Backend.LOCAL, user_id) for name, repo in vars(self._repos).items()}
        remote = {name: repo.pinned(Backend.REMOTE, user_id) for name, repo in vars(self._repos).items()}
        counts = {
            "provider_settings": 0,
            "model_selections": 0,
            "presets": 0,
            "sessions": 0,
            "ai_messages": 0,
            "summaries": 0,
            "transcripts": 0,
        }
        legacy = self._legacy_state(user_id)

        # Provider credentials: local records win over the legacy payload
        migrated_providers = set()
        for settings in await local["provider_settings"].find_by_owner():
            await remote["provider_settings"].upsert(settings.provider, _payload(settings))
            migrated_providers.add(settings.provider)
            counts["provider_settings"] += 1
        for provider, key in self._legacy_api_keys(user_id, legacy).items():
            if provider in migrated_providers:
                continue
            await remote["provider_settings"].upsert(provider, {"api_key": key})
            counts["provider_settings"] += 1

        selections = await local["model_selections"].get()
        legacy_selected = legacy.get("selected_models") or {}
        if selections is not None:
            await remote["model_selections"].upsert(_payload(selections))
            counts["model_selections"] += 1
        elif legacy_selected.get("llm") or legacy_selected.get("stt"):
            await remote["model_selections"].upsert(
                {
                    "selected_llm_provider": provider_for_model("llm", legacy_selected.get("llm")),
                    "selected_llm_model": legacy_selected.get("llm"),
                    "selected_stt_provider": provider_for_model("stt", legacy_selected.get("stt")),
                    "selected_stt_model": legacy_selected.get("stt"),
                }
            )
            counts["model_selections"] += 1

        for preset in await local["presets"].find_by_owner():
            await remote["presets"].upsert({"id": preset.id}, _payload(preset))
            counts["presets"] += 1

        for session in await local["sessions"].find_by_owner():
            await remote["sessions"].upsert({"id": session.id}, _payload(session))
            counts["sessions"] += 1
            for name in ("ai_messages", "summaries", "transcripts"):
                for child in await local[name].find_by_session_id(session.id):
                    await remote[name].upsert({"id": child.id}, _payload(child))
                    counts[name] += 1

        return counts

    async def _remove_local_copies(self, user_id: str) -> int:
        """Delete the user's local records, children first. Returns how many went."""
        local = {name: repo.pinned(Backend.LOCAL, user_id) for name, repo in vars(self._repos).items()}
        removed = 0
        for session in await local["sessions"].find_by_owner():
            for name in ("ai_messages", "summaries", "transcripts"):
                removed += await local[name].delete_by_session_id(session.id)
        removed += await local["sessions"].delete_by_owner()
        removed += await local["presets"].delete_by_owner()
        removed += await local["provider_settings"].delete_by_owner()
        removed += int(await local["model_selections"].remove())
        removed += int(self._local_store.delete(LEGACY_STATE_TABLE, user_id))
        return removed
