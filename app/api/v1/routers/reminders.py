from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.limiter import limiter
from app.db.session import get_db
from app.schemas.admin import ReminderRunResponse
from app.services import reminders
from app.services.notifications import NotificationTrigger

router = APIRouter(prefix="/internal/reminders", tags=["internal"])


@router.post("/run", response_model=ReminderRunResponse, summary="Email applicants with stale drafts")
@limiter.exempt
async def run_reminders(
    _: None = Depends(deps.require_cron_secret),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationTrigger = Depends(deps.get_notifier),
) -> ReminderRunResponse:
    run = await reminders.send_stale_draft_reminders(db, notifier)
    return ReminderRunResponse(checked=run.checked, sent=run.sent, skipped=run.skipped, failed=run.failed)
