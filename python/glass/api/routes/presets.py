"""Prompt preset routes."""

from typing import Annotated

from fastapi import APIRouter, Depends

from glass.api.deps import get_container
from glass.container import Container
from glass.errors import ErrorCode, NotFoundError
from glass.responses import success_response
from glass.schemas.api import PresetCreate, PresetUpdate

router = APIRouter()


def _not_found(preset_id: str) -> NotFoundError:
    return NotFoundError(ErrorCode.E_PRESET_NOT_FOUND, f"Preset {preset_id} not found")


@router.get("/presets")
async def list_presets(container: Annotated[Container, Depends(get_container)]) -> dict:
    """Presets of the current user, default first."""
    presets = await container.presets.find_by_owner()
    return success_response([p.model_dump(mode="json") for p in presets])


@router.post("/presets", status_code=201)
async def create_preset(
    body: PresetCreate,
    container: Annotated[Container, Depends(get_container)],
) -> dict:
    preset = await container.presets.create(body.model_dump())
    return success_response(preset.model_dump(mode="json"))


@router.patch("/presets/{preset_id}")
async def update_preset(
    preset_id: str,
    body: PresetUpdate,
    container: Annotated[Container, Depends(get_container)],
) -> dict:
    """Update title and/or prompt.

    Errors:
        E_PRESET_NOT_FOUND (404): Preset doesn't exist or is not owned by the current user
    """
    preset = await container.presets.update(preset_id, body.model_dump(exclude_none=True))
    if preset is None:
        raise _not_found(preset_id)
    return success_response(preset.model_dump(mode="json"))


@router.delete("/presets/{preset_id}")
async def delete_preset(
    preset_id: str,
    container: Annotated[Container, Depends(get_container)],
) -> dict:
    if not await container.presets.delete(preset_id):
        raise _not_found(preset_id)
    return success_response({"deleted": preset_id})


@router.post("/presets/{preset_id}/default")
async def set_default_preset(
    preset_id: str,
    container: Annotated[Container, Depends(get_container)],
) -> dict:
    """Make the preset the user's only default."""
    preset = await container.presets.set_as_default(preset_id)
    if preset is None:
        raise _not_found(preset_id)
    return success_response(preset.model_dump(mode="json"))
