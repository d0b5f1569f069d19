"""Global model selection repository (one record per user)."""

from collections.abc import Mapping
from typing import Any

from glass.repositories.base import EntitySpec, Repository
from glass.schemas.records import ModelSelectionsRecord

_SELECTION_FIELDS = (
    "selected_llm_provider",
    "selected_llm_model",
    "selected_stt_provider",
    "selected_stt_model",
)


class ModelSelectionsRepository(Repository[ModelSelectionsRecord]):
    spec = EntitySpec(
        name="model_selections",
        table="model_selections",
        schema=ModelSelectionsRecord,
    )

    async def get(self) -> ModelSelectionsRecord | None:
        ctx = self._context()
        return await self._find_one(ctx, {})

    async def upsert(self, selections: Mapping[str, Any]) -> ModelSelectionsRecord:  # type: ignore[override]
        """Replace the current user's selection fields that are present."""
        values = {k: v for k, v in selections.items() if k in _SELECTION_FIELDS}
        ctx = self._context()
        return await self._upsert(ctx, {}, values)

    async def remove(self) -> bool:
        ctx = self._context()
        return await self._delete_where(ctx) > 0
