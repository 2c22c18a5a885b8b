"""Liveness, readiness and dependency health."""

from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel
from sqlalchemy import text

from casesync.api.dependencies import ServicesDep
from casesync.services import Services

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Dependency health of one casesync process."""

    status: str
    timestamp: datetime
    database: str
    remote_configured: bool
    remote_source: str
    payments_configured: bool
    background_sync: str


async def _database_reachable(services: Services) -> bool:
    try:
        async with services.session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception:
        return False
    return True


@router.get("/health", response_model=HealthResponse)
async def health_check(services: ServicesDep) -> HealthResponse:
    """Report database reachability and which config tier is in use.

    An unconfigured remote system is reported, not treated as degraded:
    the cache and alert endpoints keep working without it.
    """
    database_ok = await _database_reachable(services)
    remote = await services.resolver.resolve()
    payments = await services.resolver.resolve_payment_processor()
    engine = services.background

    return HealthResponse(
        status="healthy" if database_ok else "degraded",
        timestamp=datetime.now(timezone.utc),
        database="healthy" if database_ok else "unhealthy",
        remote_configured=remote.enabled,
        remote_source=remote.source,
        payments_configured=payments.enabled,
        background_sync=engine.state.value if engine is not None else "off",
    )


@router.get("/ready")
async def readiness_check(services: ServicesDep) -> dict[str, str]:
    """Ready once services are wired and the database answers."""
    if not await _database_reachable(services):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unreachable",
        )
    return {"status": "ready"}


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    return {"status": "alive"}
