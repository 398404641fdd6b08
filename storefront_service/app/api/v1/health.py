"""
Health API endpoints
"""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ...core.settings import StorefrontSettings
from ...utils.envelope import success_response
from ..deps import SettingsDep

router = APIRouter()


@router.get("/health")
async def health_check(settings: StorefrontSettings = SettingsDep) -> JSONResponse:
    """Liveness check; does not call the commerce backend."""
    return success_response(
        {
            "status": "healthy",
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "backendMode": settings.BACKEND_MODE,
        }
    )
