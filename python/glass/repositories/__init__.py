"""Repository adapters.

Each repository routes every call to the local or remote store according
to the auth snapshot taken when the call starts.
"""

from glass.repositories.ai_messages import AiMessageRepository
from glass.repositories.backend import (
    AuthProvider,
    Backend,
    CallContext,
    CurrentUser,
    select_backend,
)
from glass.repositories.base import EntitySpec, Repository
from glass.repositories.model_selections import ModelSelectionsRepository
from glass.repositories.presets import PresetRepository
from glass.repositories.provider_settings import ProviderSettingsRepository
from glass.repositories.sessions import SessionRepository
from glass.repositories.session_scoped import SessionScopedRepository
from glass.repositories.summaries import SummaryRepository
from glass.repositories.transcripts import TranscriptRepository
from glass.repositories.users import UserRepository

__all__ = [
    "AuthProvider",
    "Backend",
    "CallContext",
    "CurrentUser",
    "select_backend",
    "EntitySpec",
    "Repository",
    "SessionScopedRepository",
    "UserRepository",
    "SessionRepository",
    "PresetRepository",
    "ProviderSettingsRepository",
    "ModelSelectionsRepository",
    "AiMessageRepository",
    "SummaryRepository",
    "TranscriptRepository",
]
