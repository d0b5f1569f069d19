"""Prompt preset repository."""

import asyncio
from typing import Any

from glass.errors import StorageError
from glass.repositories.backend import Backend
from glass.repositories.base import EntitySpec, Repository, utcnow
from glass.schemas.records import PresetRecord


class PresetRepository(Repository[PresetRecord]):
    spec = EntitySpec(
        name="preset",
        table="presets",
        schema=PresetRecord,
        encrypted_fields=("title", "prompt"),
    )

    def __init__(self, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        # Shared by pinned copies
        self._default_lock = asyncio.Lock()

    async def find_by_owner(self, owner_id: str | None = None) -> list[PresetRecord]:
        """Presets of the current user, default first, then newest first."""
        ctx = self._context()
        presets = await self._find(ctx, order_by="created_at", descending=True)
        return sorted(presets, key=lambda p: not p.is_default)

    async def find_default(self) -> PresetRecord | None:
        ctx = self._context()
        return await self._find_one(ctx, {"is_default": True}, order_by="updated_at", descending=True)

    async def set_as_default(self, preset_id: str) -> PresetRecord | None:
        """Make one preset the user's only default.

        Returns None if the preset does not belong to the current user.
        """
        ctx = self._context()
        if ctx.backend is Backend.LOCAL:
            row = self._local.set_exclusive_flag(
                self.spec.table,
                self._scoped(ctx),
                preset_id,
                "is_default",
                extra={"updated_at": utcnow()},
            )
            return self._to_record(row) if row is not None else None

        async with self._default_lock:
            target = await self._find_one(ctx, {"id": preset_id})
            if target is None:
                return None
            clear_others = {"is_default": True, "id": {"$ne": preset_id}}
            await self._update_where(ctx, clear_others, {"is_default": False})
            await self._update_where(ctx, {"id": preset_id}, {"is_default": True})
            # Another client may have flagged a preset in between
            await self._update_where(ctx, clear_others, {"is_default": False})
        updated = await self._find_one(ctx, {"id": preset_id})
        if updated is None:
            raise StorageError(self.spec.name, "set_as_default", "preset vanished during update")
        return updated
