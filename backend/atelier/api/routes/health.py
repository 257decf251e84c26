"""Health check endpoints."""

from datetime import UTC, datetime

from fastapi import APIRouter

from atelier.core.config import get_settings
from atelier.schemas import ApiResponse, ok

router = APIRouter()


@router.get("", response_model=ApiResponse[dict[str, str]], summary="Service health status")
async def healthcheck() -> ApiResponse[dict[str, str]]:
    """Return application health metadata."""
    settings = get_settings()
    return ok(
        {
            "status": "ok",
            "service": settings.app_name,
            "timestamp": datetime.now(UTC).isoformat(),
            "environment": settings.app_env,
        }
    )
