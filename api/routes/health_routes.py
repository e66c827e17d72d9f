"""Health check endpoints."""

from fastapi import APIRouter

from core.telemetry import SERVICE_NAME
from schemas import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Liveness check; does not touch storage."""
    return HealthResponse(status="healthy", service=SERVICE_NAME)
