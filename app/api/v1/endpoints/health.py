"""Health check API endpoints."""

from typing import Annotated, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.core.config import settings
from app.core.database import db_client
from app.core.exceptions import AppError
from app.core.prefect_client import PrefectClient, get_prefect_client
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

router = APIRouter()


class HealthCheckResponse(BaseModel):
    status: str = Field(..., description="Health check status")
    version: str = Field(..., description="Running application version")
    service: str = Field(..., description="Service name")
    checks: Dict[str, str] = Field(default_factory=dict, description="Status of each dependency")


@router.get(
    "",
    response_model=HealthCheckResponse,
    tags=["Health"],
    summary="Health check endpoint",
    description="Check the database and, when configured, the workflow scheduler",
    operation_id="get_service_health_status",
)
async def health_check(
    prefect: Annotated[PrefectClient, Depends(get_prefect_client)],
) -> HealthCheckResponse:
    """Health check endpoint."""
    db_health = await db_client.health_check()
    checks = {"database": db_health["status"]}

    if prefect.enabled:
        try:
            await prefect.health_check()
            checks["prefect"] = "healthy"
        except AppError as e:
            LOGGER.warning(f"Prefect health check failed: {e.message}")
            checks["prefect"] = "unhealthy"
    else:
        checks["prefect"] = "disabled"

    degraded = any(value == "unhealthy" for value in checks.values())
    return HealthCheckResponse(
        status="degraded" if degraded else "healthy",
        version=settings.app_version,
        service=settings.app_name,
        checks=checks,
    )
