"""Entity record schemas.

Repositories return these models regardless of the backend a record came
from. Encrypted fields are already decrypted (best effort) when a record is
built; timestamps are timezone-aware UTC.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict

MessageRoleName = Literal["user", "assistant"]


class Record(BaseModel):
    """Base class for stored entities."""

    id: str

    model_config = ConfigDict(extra="ignore", from_attributes=True)


class UserRecord(Record):
    """User account.

    id equals the auth provider's user id.
    """

    email: str | None = None
    display_name: str | None = None
    photo_url: str | None = None
    role: str | None = None
    has_migrated: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class SessionRecord(Record):
    user_id: str
    title: str | None = None
    session_type: str = "ask"
    started_at: datetime
    ended_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.ended_at is None


class PresetRecord(Record):
    user_id: str
    title: str | None = None
    prompt: str | None = None
    is_default: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ProviderSettingsRecord(Record):
    """Credentials and preferred models for one provider.

    SECURITY: api_key is plaintext once read; never log or serialize it.
    """

    user_id: str
    provider: str
    api_key: str | None = None
    selected_llm_model: str | None = None
    selected_stt_model: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ModelSelectionsRecord(Record):
    user_id: str
    selected_llm_provider: str | None = None
    selected_llm_model: str | None = None
    selected_stt_provider: str | None = None
    selected_stt_model: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class AiMessageRecord(Record):
    session_id: str
    role: MessageRoleName
    content: str | None = None
    tokens: int | None = None
    model: str | None = None
    sent_at: datetime
    created_at: datetime | None = None


class SummaryRecord(Record):
    session_id: str
    tldr: str | None = None
    text: str | None = None
    bullet_json: str | None = None
    action_json: str | None = None
    model: str | None = None
    tokens_used: int | None = None
    generated_at: datetime
    created_at: datetime | None = None


class TranscriptRecord(Record):
    session_id: str
    speaker: str | None = None
    text: str | None = None
    lang: str = "en"
    start_at: datetime
    end_at: datetime | None = None
    created_at: datetime | None = None
