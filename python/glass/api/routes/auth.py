"""Auth transition endpoints.

The OAuth exchange happens in the desktop shell; it posts the resulting
session here.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from glass.api.deps import get_container
from glass.container import Container
from glass.responses import success_response
from glass.schemas.api import SessionDataIn

router = APIRouter()


@router.post("/auth/session")
async def sign_in(
    body: SessionDataIn,
    container: Annotated[Container, Depends(get_container)],
) -> dict:
    """Switch to the signed-in user and schedule their migration.

    Errors:
        E_INVALID_REQUEST (400): Session has no user id
    """
    await container.auth.sign_in(body.model_dump(exclude_none=True))
    return success_response(container.auth.user_state())


@router.post("/auth/sign-out")
async def sign_out(container: Annotated[Container, Depends(get_container)]) -> dict:
    await container.auth.sign_out()
    return success_response(container.auth.user_state())
