from fastapi import APIRouter

from agentloop.sessions.store import get_redis

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    """Health check endpoint. Verifies Redis (session store) is reachable."""
    try:
        await get_redis().ping()
        redis_status = "ok"
    except Exception as exc:
        redis_status = f"error: {exc}"

    return {"status": "ok", "redis": redis_status}
