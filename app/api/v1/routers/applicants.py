import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from app.api import deps
from app.core.context import set_applicant
from app.core.limiter import limiter
from app.core.settings import settings
from app.schemas.application import normalize_email
from app.schemas.application_form import PreRegistrationRequest, PreRegistrationResponse
from app.services.identity import ApplicantIdentity, ApplicantMarkerStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/applicants", tags=["applicants"])


@router.post(
    "/pre-register",
    response_model=PreRegistrationResponse,
    status_code=201,
    summary="Remember who is applying in this browser session",
)
@limiter.limit(lambda: f"{settings.rate_limit_per_minute}/minute")
async def pre_register(
    payload: PreRegistrationRequest,
    request: Request,
    session_id: Optional[str] = Header(default=None, alias="X-Applicant-Session"),
    markers: ApplicantMarkerStore = Depends(deps.get_marker_store),
) -> PreRegistrationResponse:
    email = normalize_email(payload.email)
    set_applicant(email)
    session_id = await markers.remember(
        ApplicantIdentity(email=email, display_name=payload.full_name.strip()),
        session_id=session_id,
    )
    logger.info("Applicant pre-registered")
    return PreRegistrationResponse(session_id=session_id, email=email)
