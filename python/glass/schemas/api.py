"""Request bodies for the bridge API."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ModelType = Literal["llm", "stt"]


class ProfileIn(BaseModel):
    id: str | None = None
    email: str | None = None
    name: str | None = None
    image: str | None = None


class SessionDataIn(BaseModel):
    """Session handed over by the auth provider after sign-in."""

    user_id: str | None = None
    user: ProfileIn | None = None


class ApiKeyIn(BaseModel):
    """Credential for a provider.

    api_key may be omitted for local providers (ollama, whisper).
    With validate=True the provider is asked before the key is stored.
    """

    provider: str
    api_key: str | None = None
    validate_key: bool = Field(default=True, alias="validate")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("api_key")
    @classmethod
    def strip_key(cls, v: str | None) -> str | None:
        return v.strip() if v is not None else None


class SelectedModelIn(BaseModel):
    type: ModelType
    model_id: str = Field(..., min_length=1)


class PresetCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    prompt: str = ""


class PresetUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    prompt: str | None = None


class SessionCreate(BaseModel):
    session_type: Literal["ask", "listen"] = "ask"
