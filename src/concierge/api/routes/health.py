"""
Health check endpoint.
"""

from __future__ import annotations

from fastapi import APIRouter

from concierge.api.dependencies import DB, AppSettings
from concierge.models.chat_models import DatabaseHealth, HealthResponse
from concierge.utils.db_utils import check_pool_health

router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Service version and database pool statistics.",
    responses={
        200: {
            "description": "System health status",
            "content": {
                "application/json": {
                    "example": {
                        "status": "healthy",
                        "version": "1.0.0",
                        "database": {
                            "healthy": True,
                            "pool_size": 10,
                            "free_connections": 8,
                            "used_connections": 2,
                        },
                    }
                }
            },
        }
    },
    tags=["Health"],
)
async def health_check(db: DB, settings: AppSettings) -> HealthResponse:
    """Report database pool health."""
    stats = await check_pool_health(db)
    database = DatabaseHealth(**stats)
    return HealthResponse(
        status="healthy" if database.healthy else "unhealthy",
        version=settings.app_version,
        database=database,
    )
