"""User repository.

Users are keyed by the auth provider's user id, so every operation takes the
user id explicitly rather than reading it from the auth snapshot.
"""

from collections.abc import Mapping
from typing import Any

from glass.logging import get_logger
from glass.repositories.backend import CurrentUser
from glass.repositories.base import EntitySpec, Repository
from glass.schemas.records import UserRecord

logger = get_logger(__name__)

_PROFILE_FIELDS = ("email", "display_name", "photo_url", "role")


class UserRepository(Repository[UserRecord]):
    spec = EntitySpec(
        name="user",
        table="users",
        schema=UserRecord,
        encrypted_fields=("email", "display_name"),
        owner_field="id",
        user_scoped=False,
    )

    async def get(self, user_id: str) -> UserRecord | None:
        return await self.find_by_id(user_id)

    async def find_or_create(self, profile: CurrentUser | Mapping[str, Any]) -> UserRecord:
        """Create the user on first sight, otherwise refresh the profile.

        has_migrated is never touched here.
        """
        if isinstance(profile, CurrentUser):
            user_id = profile.user_id
            data = {
                "email": profile.email,
                "display_name": profile.display_name,
                "photo_url": profile.photo_url,
            }
        else:
            user_id = str(profile["id"])
            data = {k: profile.get(k) for k in _PROFILE_FIELDS if k in profile}

        ctx = self._context()
        existing = await self._find_one(ctx, {"id": user_id})
        if existing is None:
            created = await self._insert(ctx, [{"id": user_id, **data}])
            logger.info("user_created", user_id=user_id, backend=ctx.backend.value)
            return created[0]

        patch = {k: v for k, v in data.items() if v is not None}
        if patch:
            await self._update_where(ctx, {"id": user_id}, patch)
            return await self._find_one(ctx, {"id": user_id}) or existing
        return existing

    async def update_profile(self, user_id: str, patch: Mapping[str, Any]) -> UserRecord | None:
        return await self.update(user_id, {k: v for k, v in patch.items() if k in _PROFILE_FIELDS})

    async def set_migration_complete(self, user_id: str) -> None:
        ctx = self._context()
        await self._update_where(ctx, {"id": user_id}, {"has_migrated": True})
        logger.info("user_migration_marked", user_id=user_id, backend=ctx.backend.value)
