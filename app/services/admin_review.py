from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import PortalError
from app.models.agent_application import AgentApplication
from app.schemas.application import ApplicationStatus, Assessment, SystemActivation
from app.services.audit import model_snapshot, record_audit_log
from app.services.notifications import NotificationKind, NotificationTrigger

logger = logging.getLogger(__name__)

REVIEW_SNAPSHOT_FIELDS = ("status", "review_feedback", "reviewed_at")

# pending is the only non-terminal status.
_ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    ApplicationStatus.PENDING.value: frozenset(
        {ApplicationStatus.APPROVED.value, ApplicationStatus.REJECTED.value}
    ),
    ApplicationStatus.APPROVED.value: frozenset(),
    ApplicationStatus.REJECTED.value: frozenset(),
}


class ApplicationNotFound(PortalError):
    status_code = 404
    code = "application_not_found"


class InvalidStatusTransition(PortalError):
    status_code = 409
    code = "invalid_status_transition"


@dataclass(frozen=True, slots=True)
class ApplicationPage:
    items: list[AgentApplication]
    total: int
    limit: int
    offset: int


def can_transition(current: str, target: str) -> bool:
    return target in _ALLOWED_TRANSITIONS.get(current, frozenset())


async def list_applications(
    db: AsyncSession,
    *,
    status: ApplicationStatus | str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> ApplicationPage:
    filters = []
    if status is not None:
        filters.append(AgentApplication.status == ApplicationStatus(status).value)
    total = (
        await db.execute(select(func.count()).select_from(AgentApplication).where(*filters))
    ).scalar_one()
    result = await db.execute(
        select(AgentApplication)
        .where(*filters)
        .order_by(AgentApplication.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    return ApplicationPage(items=list(result.scalars().all()), total=total, limit=limit, offset=offset)


async def get_application(
    db: AsyncSession, application_id: uuid.UUID, *, for_update: bool = False
) -> AgentApplication:
    stmt = select(AgentApplication).where(AgentApplication.id == application_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    application = result.scalar_one_or_none()
    if application is None:
        raise ApplicationNotFound("Application not found", details={"id": str(application_id)})
    return application


async def update_status(
    db: AsyncSession,
    application_id: uuid.UUID,
    *,
    status: ApplicationStatus | str,
    feedback: str | None,
    actor: str,
    notifier: NotificationTrigger | None = None,
) -> AgentApplication:
    """Approve or reject a pending application, audit the change, and tell the applicant."""
    target = ApplicationStatus(status).value
    application = await get_application(db, application_id, for_update=True)
    if not can_transition(application.status, target):
        raise InvalidStatusTransition(
            f"Cannot move an application from {application.status} to {target}",
            details={"from": application.status, "to": target},
        )

    before = model_snapshot(application, include=REVIEW_SNAPSHOT_FIELDS)
    application.status = target
    application.review_feedback = feedback or None
    application.reviewed_at = datetime.now(timezone.utc)
    record_audit_log(
        db,
        actor=actor,
        action="agent_application.status_changed",
        resource_type="agent_application",
        resource_id=str(application.id),
        old_value=before,
        new_value=model_snapshot(application, include=REVIEW_SNAPSHOT_FIELDS),
    )
    await db.commit()
    await db.refresh(application)

    if notifier is not None:
        sent = await notifier.send(
            NotificationKind.APPLICATION_STATUS_UPDATE,
            application.email,
            {
                "full_name": application.full_name,
                "application_id": application.reference,
                "status": target,
                "feedback": feedback or "",
                "is_approved": target == ApplicationStatus.APPROVED.value,
                "is_rejected": target == ApplicationStatus.REJECTED.value,
            },
        )
        if not sent:
            logger.warning("Status update email not delivered for %s", application.reference)
    return application


async def update_internal_sections(
    db: AsyncSession,
    application_id: uuid.UUID,
    *,
    assessment: dict[str, Any] | None,
    activation: dict[str, Any] | None,
    actor: str,
) -> AgentApplication:
    """Fill in the staff-only assessment and activation sections of a submitted record."""
    application = await get_application(db, application_id, for_update=True)
    form_data = dict(application.form_data or {})
    before = {"assessment": form_data.get("assessment"), "activation": form_data.get("activation")}
    try:
        if assessment is not None:
            merged = {**(form_data.get("assessment") or {}), **assessment}
            form_data["assessment"] = Assessment.model_validate(merged).model_dump(mode="json")
        if activation is not None:
            merged = {**(form_data.get("activation") or {}), **activation}
            form_data["activation"] = SystemActivation.model_validate(merged).model_dump(mode="json")
    except ValidationError as exc:
        raise PortalError(
            "Invalid internal section values",
            code="invalid_field",
            status_code=422,
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc

    application.form_data = form_data
    record_audit_log(
        db,
        actor=actor,
        action="agent_application.internal_updated",
        resource_type="agent_application",
        resource_id=str(application.id),
        old_value=before,
        new_value={"assessment": form_data.get("assessment"), "activation": form_data.get("activation")},
    )
    await db.commit()
    await db.refresh(application)
    return application
