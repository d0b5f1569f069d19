"""Provider settings repository.

One record per (user_id, provider); writes are upserts on that pair.
"""

from collections.abc import Mapping
from typing import Any

from glass.errors import ErrorCode, ValidationError
from glass.repositories.base import EntitySpec, Repository
from glass.schemas.records import ProviderSettingsRecord

_MODEL_FIELDS = {"llm": "selected_llm_model", "stt": "selected_stt_model"}


class ProviderSettingsRepository(Repository[ProviderSettingsRecord]):
    spec = EntitySpec(
        name="provider_settings",
        table="provider_settings",
        schema=ProviderSettingsRecord,
        encrypted_fields=("api_key",),
    )

    async def get(self, provider: str) -> ProviderSettingsRecord | None:
        ctx = self._context()
        return await self._find_one(ctx, {"provider": provider})

    async def find_by_owner(self, owner_id: str | None = None) -> list[ProviderSettingsRecord]:
        """All provider settings of the current user, ordered by provider."""
        ctx = self._context()
        return await self._find(ctx, order_by="provider")

    async def upsert(self, provider: str, data: Mapping[str, Any]) -> ProviderSettingsRecord:  # type: ignore[override]
        ctx = self._context()
        return await self._upsert(ctx, {"provider": provider}, data)

    async def remove(self, provider: str) -> bool:
        """Delete the provider's settings. Returns False if there were none."""
        ctx = self._context()
        return await self._delete_where(ctx, {"provider": provider}) > 0

    async def update_model_selection(
        self, provider: str, model_type: str, model_id: str | None
    ) -> ProviderSettingsRecord | None:
        """Record the provider's preferred model for a type."""
        field = _MODEL_FIELDS.get(model_type)
        if field is None:
            raise ValidationError(ErrorCode.E_MODEL_TYPE_INVALID, f"Unknown model type: {model_type}")
        ctx = self._context()
        await self._update_where(ctx, {"provider": provider}, {field: model_id})
        return await self._find_one(ctx, {"provider": provider})
