"""Model registry and selection routes."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from glass.api.deps import get_container
from glass.container import Container
from glass.providers import MODEL_TYPES
from glass.responses import success_response
from glass.schemas.api import ModelType, SelectedModelIn

router = APIRouter()


def _selection_out(container: Container) -> dict:
    manager = container.model_state
    current = {}
    for model_type in MODEL_TYPES:
        info = manager.get_current_model_info(model_type)
        current[model_type] = (
            {"provider": info.provider, "model": info.model} if info is not None else None
        )
    return {
        "selected_models": manager.get_selected_models(),
        "current": current,
        "providers_configured": manager.are_providers_configured(),
    }


@router.get("/models")
async def list_models(
    container: Annotated[Container, Depends(get_container)],
    model_type: Annotated[ModelType, Query(alias="type")],
) -> dict:
    """Models of a type offered by providers with a usable key.

    Returns:
        {"data": [{"id", "name", "provider"}, ...]}
    """
    manager = container.model_state
    models = manager.get_available_models(model_type)
    return success_response(
        [
            {
                "id": m.id,
                "name": m.name,
                "provider": manager.get_provider_for_model(model_type, m.id),
            }
            for m in models
        ]
    )


@router.get("/models/selected")
async def get_selected(container: Annotated[Container, Depends(get_container)]) -> dict:
    return success_response(_selection_out(container))


@router.put("/models/selected")
async def set_selected(
    body: SelectedModelIn,
    container: Annotated[Container, Depends(get_container)],
) -> dict:
    """Select a model for a type.

    Errors:
        E_MODEL_NOT_AVAILABLE (400): No provider with a usable key offers the model
    """
    await container.model_state.set_selected_model(body.type, body.model_id)
    return success_response(_selection_out(container))
