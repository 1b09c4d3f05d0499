from fastapi import APIRouter, Depends

from app.api import deps
from app.core.health import live_payload, ready_payload, status_summary_payload
from app.core.limiter import limiter
from app.services.steps import StepRegistry

router = APIRouter(tags=["health"])


# Health checks and the status page are polled by the platform, never throttled.
@router.get("/health/live", summary="Applicant portal process is up")
@limiter.exempt
async def health_live() -> dict:
    return await live_payload()


@router.get("/health/ready", summary="Draft storage and the applications database are reachable")
@limiter.exempt
async def health_ready() -> dict:
    return await ready_payload()


@router.get("/status/summary", tags=["status"], summary="Portal version, dependencies and wizard shape")
@limiter.exempt
async def status_summary(registry: StepRegistry = Depends(deps.get_registry)) -> dict:
    return await status_summary_payload(applicant_steps=len(registry))
