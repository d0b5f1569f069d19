"""Application wiring.

Builds every collaborator once and injects it at construction time:
local store, remote store, encryption, auth, repositories, migration,
model state and the event bus.

Subscriptions made here:
- auth state changes reload the model state
- migration-completed reloads the model state for the migrated user
"""

from dataclasses import dataclass

import httpx
from sqlalchemy.engine import Engine

from glass.db.engine import create_db_engine, init_local_schema
from glass.db.local_store import LocalStore
from glass.db.session import create_session_factory
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
from glass.services import events
from glass.services.accounts import AccountService
from glass.services.auth import AuthService
from glass.services.crypto import EncryptionService
from glass.services.events import EventBus
from glass.services.migration import MigrationCoordinator, MigrationRepositories
from glass.services.model_state import ModelStateManager
from glass.storage.client import DocumentStoreBase, get_document_store

logger = get_logger(__name__)


@dataclass
class Container:
    local_store: LocalStore
    remote_store: DocumentStoreBase
    encryption: EncryptionService
    event_bus: EventBus
    auth: AuthService
    users: UserRepository
    sessions: SessionRepository
    presets: PresetRepository
    provider_settings: ProviderSettingsRepository
    model_selections: ModelSelectionsRepository
    ai_messages: AiMessageRepository
    summaries: SummaryRepository
    transcripts: TranscriptRepository
    migration: MigrationCoordinator
    model_state: ModelStateManager
    accounts: AccountService

    async def start(self) -> None:
        """Initialize the default user's key and load model state."""
        await self.auth.initialize()
        await self.model_state.load_for_current_user()

    async def aclose(self) -> None:
        # Migrations are never cancelled mid-flight
        await self.migration.wait_for_pending()
        await self.remote_store.aclose()


def build_container(
    *,
    engine: Engine | None = None,
    remote_store: DocumentStoreBase | None = None,
    encryption: EncryptionService | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Container:
    """Create the object graph.

    Args:
        engine: Local SQLAlchemy engine. If None, uses LOCAL_DATABASE_URL.
        remote_store: Remote store. If None, uses get_document_store().
        encryption: Encryption service. If None, the master key is read from settings.
        http_client: Shared client for provider key validation.
    """
    if engine is None:
        engine = create_db_engine()
    init_local_schema(engine)

    local_store = LocalStore(create_session_factory(engine))
    remote_store = remote_store or get_document_store()
    encryption = encryption or EncryptionService()
    event_bus = EventBus()
    auth = AuthService(encryption, event_bus)

    repo_args = (local_store, remote_store, encryption, auth)
    users = UserRepository(*repo_args)
    sessions = SessionRepository(*repo_args)
    presets = PresetRepository(*repo_args)
    provider_settings = ProviderSettingsRepository(*repo_args)
    model_selections = ModelSelectionsRepository(*repo_args)
    ai_messages = AiMessageRepository(*repo_args)
    summaries = SummaryRepository(*repo_args)
    transcripts = TranscriptRepository(*repo_args)

    migration = MigrationCoordinator(
        MigrationRepositories(
            users=users,
            sessions=sessions,
            presets=presets,
            provider_settings=provider_settings,
            model_selections=model_selections,
            ai_messages=ai_messages,
            summaries=summaries,
            transcripts=transcripts,
        ),
        local_store,
        encryption,
        event_bus,
    )
    auth.bind(users, sessions, migration)

    model_state = ModelStateManager(
        provider_settings, model_selections, auth, event_bus, http_client=http_client
    )
    auth.on_auth_state_changed(lambda _user: model_state.load_for_current_user())
    event_bus.subscribe(events.MIGRATION_COMPLETED, model_state.handle_migration_completed)

    accounts = AccountService(
        auth=auth,
        users=users,
        sessions=sessions,
        presets=presets,
        provider_settings=provider_settings,
        model_selections=model_selections,
        ai_messages=ai_messages,
        summaries=summaries,
        transcripts=transcripts,
    )

    logger.info("container_built", remote_store=type(remote_store).__name__)
    return Container(
        local_store=local_store,
        remote_store=remote_store,
        encryption=encryption,
        event_bus=event_bus,
        auth=auth,
        users=users,
        sessions=sessions,
        presets=presets,
        provider_settings=provider_settings,
        model_selections=model_selections,
        ai_messages=ai_messages,
        summaries=summaries,
        transcripts=transcripts,
        migration=migration,
        model_state=model_state,
        accounts=accounts,
    )
