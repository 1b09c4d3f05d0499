from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.db.session import get_db
from app.schemas.admin import (
    AgentApplicationDetail,
    AgentApplicationListResponse,
    AgentApplicationSummary,
    InternalSectionsUpdateRequest,
    StatusUpdateRequest,
)
from app.schemas.application import ApplicationStatus
from app.services import admin_review
from app.services.notifications import NotificationTrigger

router = APIRouter(prefix="/admin/applications", tags=["admin-applications"])


@router.get("", response_model=AgentApplicationListResponse, summary="List submitted applications")
async def list_applications(
    status: Optional[ApplicationStatus] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    _: str = Depends(deps.require_admin),
    db: AsyncSession = Depends(get_db),
) -> AgentApplicationListResponse:
    page = await admin_review.list_applications(db, status=status, limit=limit, offset=offset)
    return AgentApplicationListResponse(
        items=[AgentApplicationSummary.model_validate(item) for item in page.items],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
    )


@router.get("/{application_id}", response_model=AgentApplicationDetail, summary="Application detail")
async def get_application(
    application_id: UUID,
    _: str = Depends(deps.require_admin),
    db: AsyncSession = Depends(get_db),
) -> AgentApplicationDetail:
    application = await admin_review.get_application(db, application_id)
    return AgentApplicationDetail.model_validate(application)


@router.post(
    "/{application_id}/status",
    response_model=AgentApplicationDetail,
    summary="Approve or reject a pending application",
)
async def update_status(
    application_id: UUID,
    payload: StatusUpdateRequest,
    actor: str = Depends(deps.require_admin),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationTrigger = Depends(deps.get_notifier),
) -> AgentApplicationDetail:
    application = await admin_review.update_status(
        db,
        application_id,
        status=payload.status,
        feedback=payload.feedback,
        actor=actor,
        notifier=notifier,
    )
    return AgentApplicationDetail.model_validate(application)


@router.patch(
    "/{application_id}/internal",
    response_model=AgentApplicationDetail,
    summary="Record assessment and system activation details",
)
async def update_internal(
    application_id: UUID,
    payload: InternalSectionsUpdateRequest,
    actor: str = Depends(deps.require_admin),
    db: AsyncSession = Depends(get_db),
) -> AgentApplicationDetail:
    application = await admin_review.update_internal_sections(
        db,
        application_id,
        assessment=payload.assessment,
        activation=payload.activation,
        actor=actor,
    )
    return AgentApplicationDetail.model_validate(application)
