"""Session metadata CRUD, backed by RedisSessionStore."""

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from agentloop.core.errors import SessionConflictError, SessionDuplicateError, SessionNotFoundError
from agentloop.core.logging import get_logger
from agentloop.core.models import AgentMode, ExecutionMode
from agentloop.sessions.store import AgentSession, RedisSessionStore, get_session_store

log = get_logger(__name__)
router = APIRouter(prefix="/api/sessions", tags=["sessions"])


class SessionCreate(BaseModel):
    id: str | None = None
    user_id: str
    name: str
    mode: AgentMode = AgentMode.INTERACTIVE
    execution_mode: ExecutionMode = ExecutionMode.PLANNING
    memory_enabled: bool = True
    max_graph_steps: int = 100
    max_iterations: int = 15


class SessionUpdate(BaseModel):
    name: str | None = None
    mode: AgentMode | None = None
    execution_mode: ExecutionMode | None = None
    memory_enabled: bool | None = None
    max_graph_steps: int | None = None
    max_iterations: int | None = None


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_session(body: SessionCreate, store: RedisSessionStore = Depends(get_session_store)):
    fields = body.model_dump(exclude_none=True)
    session = AgentSession(**fields)
    try:
        await store.save(session)
    except SessionDuplicateError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except SessionConflictError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return session


@router.get("/users/{user_id}")
async def list_sessions(user_id: str, store: RedisSessionStore = Depends(get_session_store)):
    sessions = await store.list_sessions(user_id)
    return {"user_id": user_id, "count": len(sessions), "sessions": sessions}


@router.get("/{session_id}")
async def get_session(session_id: str, user_id: str, store: RedisSessionStore = Depends(get_session_store)):
    session = await store.get(session_id, user_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@router.put("/{session_id}")
async def update_session(
    session_id: str,
    user_id: str,
    body: SessionUpdate,
    store: RedisSessionStore = Depends(get_session_store),
):
    current = await store.get(session_id, user_id)
    if current is None:
        raise HTTPException(status_code=404, detail="Session not found")
    try:
        return await store.update(current.model_copy(update=body.model_dump(exclude_none=True)))
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")
    except SessionConflictError as exc:
        raise HTTPException(status_code=503, detail=str(exc))


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(session_id: str, user_id: str, store: RedisSessionStore = Depends(get_session_store)):
    try:
        await store.delete(session_id, user_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")
    except SessionConflictError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    log.info("session_removed", session_id=session_id, user_id=user_id)
