"""Current user endpoints."""

from typing import Annotated

from fastapi import APIRouter, Depends

from glass.api.deps import get_container
from glass.container import Container
from glass.repositories import Backend
from glass.responses import success_response

router = APIRouter()


@router.get("/me")
async def get_me(container: Annotated[Container, Depends(get_container)]) -> dict:
    """Current user snapshot plus model readiness.

    Returns:
        {"data": {"user_id", "is_logged_in", "email", "display_name",
                  "photo_url", "mode", "has_migrated", "providers_configured"}}
    """
    state = container.auth.user_state()
    # has_migrated lives on the local record
    record = await container.users.pinned(Backend.LOCAL, state["user_id"]).get(state["user_id"])
    state["has_migrated"] = record.has_migrated if record is not None else False
    state["providers_configured"] = container.model_state.are_providers_configured()
    return success_response(state)


@router.delete("/me")
async def delete_me(container: Annotated[Container, Depends(get_container)]) -> dict:
    """Delete every record of the current user.

    A signed-in user is signed out afterwards.

    Returns:
        {"data": {"deleted": {"sessions", "presets", "provider_settings"}}}
    """
    counts = await container.accounts.delete_account()
    if container.auth.get_current_user().is_logged_in:
        await container.auth.sign_out()
    else:
        await container.auth.initialize()
        await container.model_state.load_for_current_user()
    return success_response({"deleted": counts})
