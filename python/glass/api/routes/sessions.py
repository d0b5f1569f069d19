"""Session routes.

Child collections (messages, summary, transcripts) are only served for
sessions owned by the current user.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from glass.api.deps import get_container
from glass.container import Container
from glass.errors import ErrorCode, NotFoundError
from glass.responses import success_response
from glass.schemas.api import SessionCreate
from glass.schemas.records import SessionRecord

router = APIRouter()


def _session_out(session: SessionRecord) -> dict:
    return {**session.model_dump(mode="json"), "is_active": session.is_active}


async def _require_session(container: Container, session_id: str) -> SessionRecord:
    session = await container.sessions.find_by_id(session_id)
    if session is None:
        raise NotFoundError(ErrorCode.E_SESSION_NOT_FOUND, f"Session {session_id} not found")
    return session


@router.get("/sessions")
async def list_sessions(container: Annotated[Container, Depends(get_container)]) -> dict:
    """Sessions of the current user, most recently started first."""
    sessions = await container.sessions.find_by_owner()
    return success_response([_session_out(s) for s in sessions])


@router.post("/sessions")
async def open_session(
    body: SessionCreate,
    container: Annotated[Container, Depends(get_container)],
) -> dict:
    """Return the active session, creating one if none is open.

    An active ask session is promoted when a listen session is requested.
    """
    session = await container.sessions.get_or_create_active(body.session_type)
    return success_response(_session_out(session))


@router.post("/sessions/{session_id}/end")
async def end_session(
    session_id: str,
    container: Annotated[Container, Depends(get_container)],
) -> dict:
    await _require_session(container, session_id)
    session = await container.sessions.end(session_id)
    return success_response(_session_out(session))


@router.delete("/sessions/{session_id}")
async def delete_session(
    session_id: str,
    container: Annotated[Container, Depends(get_container)],
) -> dict:
    """Delete a session with its messages, summaries and transcripts."""
    if not await container.accounts.delete_session(session_id):
        raise NotFoundError(ErrorCode.E_SESSION_NOT_FOUND, f"Session {session_id} not found")
    return success_response({"deleted": session_id})


@router.get("/sessions/{session_id}/messages")
async def list_messages(
    session_id: str,
    container: Annotated[Container, Depends(get_container)],
) -> dict:
    await _require_session(container, session_id)
    messages = await container.ai_messages.find_by_session_id(session_id)
    return success_response([m.model_dump(mode="json") for m in messages])


@router.get("/sessions/{session_id}/summary")
async def get_summary(
    session_id: str,
    container: Annotated[Container, Depends(get_container)],
) -> dict:
    """Latest summary of the session, or null."""
    await _require_session(container, session_id)
    summary = await container.summaries.find_latest_by_session_id(session_id)
    return success_response(summary.model_dump(mode="json") if summary is not None else None)


@router.get("/sessions/{session_id}/transcripts")
async def list_transcripts(
    session_id: str,
    container: Annotated[Container, Depends(get_container)],
) -> dict:
    await _require_session(container, session_id)
    transcripts = await container.transcripts.find_by_session_id(session_id)
    return success_response([t.model_dump(mode="json") for t in transcripts])
