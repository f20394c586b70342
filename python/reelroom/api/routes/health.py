"""Health check endpoints."""

from fastapi import APIRouter

from reelroom.responses import success_response

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Liveness check. Does not touch the database or Redis."""
    return success_response({"status": "ok"})
