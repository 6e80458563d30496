"""
Health check endpoint for monitoring.
"""
from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Request, status

from transit_envelope.schemas.subject_key import HealthResponse
from transit_envelope.utils.logger import get_logger

logger = get_logger("health")
router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check application status and transit client availability",
    responses={
        200: {"description": "Service is healthy"},
        503: {"description": "Service is unhealthy"}
    }
)
async def health_check(request: Request) -> HealthResponse:
    """
    Health check endpoint.

    Checks:
    - Application is running
    - A transit client is configured and open

    Does not call the transit service; a failing dependency should not make
    liveness probes hammer it.
    """
    client = getattr(request.app.state, "transit_client", None)

    if client is not None and not client.closed:
        logger.debug("Health check: all systems operational")
        return HealthResponse(
            status="healthy",
            transit="configured",
            timestamp=datetime.now(timezone.utc)
        )

    transit_state = "not_configured" if client is None else "closed"
    logger.warning("Health check: transit client unavailable", transit=transit_state)
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={
            "status": "degraded",
            "transit": transit_state,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    )
