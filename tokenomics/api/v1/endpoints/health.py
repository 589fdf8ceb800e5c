from datetime import datetime, timezone

from fastapi import APIRouter

from tokenomics.models.market import HealthResponse

router = APIRouter()


@router.api_route(
    "/health-check", methods=["GET", "HEAD"], response_model=HealthResponse
)
async def healthcheck() -> HealthResponse:
    """Lightweight liveness probe."""
    return HealthResponse(
        status="ok", timestamp=datetime.now(timezone.utc).isoformat()
    )
