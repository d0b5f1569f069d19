"""Provider credential routes.

Keys never leave the process: responses carry fingerprints only.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from glass.api.deps import get_container
from glass.container import Container
from glass.errors import ErrorCode, NotFoundError, ValidationError
from glass.providers import PROVIDERS
from glass.responses import success_response
from glass.schemas.api import ApiKeyIn

router = APIRouter()


def _keys_out(container: Container) -> list[dict]:
    fingerprints = container.model_state.public_state()["api_keys"]
    return [
        {
            "provider": provider.id,
            "name": provider.name,
            "is_local": provider.is_local,
            "configured": fingerprints.get(provider.id) is not None,
            "key_fingerprint": fingerprints.get(provider.id),
        }
        for provider in PROVIDERS.values()
    ]


@router.get("/keys")
async def list_keys(container: Annotated[Container, Depends(get_container)]) -> dict:
    """One entry per catalog provider, in catalog order."""
    return success_response(_keys_out(container))


@router.post("/keys")
async def set_key(
    body: ApiKeyIn,
    container: Annotated[Container, Depends(get_container)],
) -> dict:
    """Store a provider credential, validating it first unless validate=false.

    Errors:
        E_PROVIDER_INVALID (400): Unknown provider
        E_KEY_INVALID_FORMAT (400): Empty key for an API provider
        E_KEY_REJECTED (400): The provider rejected the key
    """
    manager = container.model_state
    if body.validate_key:
        result = await manager.validate_and_set_api_key(body.provider, body.api_key or "")
        if not result.success:
            raise ValidationError(ErrorCode.E_KEY_REJECTED, result.error or "API key rejected")
    else:
        await manager.set_api_key(body.provider, body.api_key)
    return success_response(_keys_out(container))


@router.delete("/keys/{provider}")
async def remove_key(
    provider: str,
    container: Annotated[Container, Depends(get_container)],
) -> dict:
    """Remove a provider credential.

    Errors:
        E_PROVIDER_INVALID (400): Unknown provider
        E_NOT_FOUND (404): No credential stored for the provider
    """
    if not await container.model_state.remove_api_key(provider):
        raise NotFoundError(message=f"No API key stored for {provider}")
    return success_response(_keys_out(container))
