from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError
from sqlalchemy import exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import applicant_reference
from app.core.settings import settings
from app.models.agent_application import AgentApplication
from app.models.agent_draft import AgentDraft
from app.schemas.application import ApplicationDraftData
from app.services.notifications import NotificationKind, NotificationTrigger
from app.services.steps import StepRegistry, get_step_registry, project_progress

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ReminderRun:
    checked: int
    sent: int
    skipped: int
    failed: int


def reminder_cutoffs(now: datetime) -> tuple[datetime, datetime]:
    """Return (idle_before, reminded_before) for a run at ``now``."""
    return (
        now - timedelta(hours=settings.reminder_idle_hours),
        now - timedelta(days=settings.reminder_interval_days),
    )


async def find_stale_drafts(db: AsyncSession, now: datetime) -> list[AgentDraft]:
    idle_before, reminded_before = reminder_cutoffs(now)
    result = await db.execute(
        select(AgentDraft)
        .where(AgentDraft.saved_at <= idle_before)
        # Applicants who already submitted are never reminded.
        .where(~exists().where(AgentApplication.email == AgentDraft.email))
        .where(
            or_(
                AgentDraft.last_reminder_sent_at.is_(None),
                AgentDraft.last_reminder_sent_at <= reminded_before,
            )
        )
        .order_by(AgentDraft.saved_at.asc())
    )
    return list(result.scalars().all())


async def send_stale_draft_reminders(
    db: AsyncSession,
    notifier: NotificationTrigger,
    *,
    now: datetime | None = None,
    registry: StepRegistry | None = None,
) -> ReminderRun:
    """Nudge applicants whose drafts have gone quiet.

    A draft is reminded at most once per ``REMINDER_INTERVAL_DAYS``; the
    reminder timestamp only moves when the email was actually accepted.
    """
    now = now or datetime.now(timezone.utc)
    registry = registry or get_step_registry()
    drafts = await find_stale_drafts(db, now)
    sent = skipped = failed = 0

    for draft in drafts:
        try:
            data = ApplicationDraftData.model_validate(draft.form_data or {})
        except ValidationError as exc:
            logger.warning(
                "Skipping reminder for unreadable draft of %s: %s",
                applicant_reference(draft.email),
                exc.error_count(),
            )
            skipped += 1
            continue

        step_index = min(max(draft.step_index or 0, 0), registry.last_index)
        progress = project_progress(step_index, registry)
        ok = await notifier.send(
            NotificationKind.APPLICATION_REMINDER,
            draft.email,
            {
                "full_name": data.full_name or draft.email,
                "progress_percentage": progress.percent,
                "current_step": progress.current_title,
                "expiry_date": draft.saved_at + timedelta(days=settings.draft_ttl_days),
            },
        )
        if ok:
            draft.last_reminder_sent_at = now
            sent += 1
        else:
            failed += 1

    if sent:
        await db.commit()
    logger.info(
        "Reminder run checked=%s sent=%s skipped=%s failed=%s", len(drafts), sent, skipped, failed
    )
    return ReminderRun(checked=len(drafts), sent=sent, skipped=skipped, failed=failed)
