import hmac
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, HTTPException, status

from app.core.settings import settings
from app.db.session import AsyncSessionLocal
from app.services.draft_store import (
    DatabaseDraftStore,
    DraftStore,
    InMemoryMedium,
    KeyValueDraftStore,
    KeyValueMedium,
    RedisMedium,
)
from app.services.identity import ApplicantMarkerStore, IdentityResolver
from app.services.notifications import EmailNotifier, NotificationTrigger
from app.services.orchestrator import ApplicationFormOrchestrator
from app.services.steps import StepRegistry, get_step_registry
from app.services.submission import DatabaseSubmissionSink, RetryPolicy, SubmissionSink
from app.utils.redis_client import get_redis_client


@lru_cache(maxsize=1)
def _memory_medium() -> InMemoryMedium:
    return InMemoryMedium()


def get_key_value_medium() -> KeyValueMedium:
    if settings.draft_store_backend == "memory":
        return _memory_medium()
    return RedisMedium(get_redis_client())


def get_draft_store(medium: KeyValueMedium = Depends(get_key_value_medium)) -> DraftStore:
    if settings.draft_store_backend == "database":
        return DatabaseDraftStore(AsyncSessionLocal)
    return KeyValueDraftStore(
        medium,
        encrypt=settings.encrypt_drafts,
        ttl_seconds=settings.draft_ttl_days * 86400,
    )


def get_submission_sink() -> SubmissionSink:
    return DatabaseSubmissionSink(AsyncSessionLocal)


def get_notifier() -> NotificationTrigger:
    return EmailNotifier()


def get_marker_store(medium: KeyValueMedium = Depends(get_key_value_medium)) -> ApplicantMarkerStore:
    return ApplicantMarkerStore(medium, ttl_seconds=settings.applicant_marker_ttl_hours * 3600)


def get_identity_resolver(
    markers: ApplicantMarkerStore = Depends(get_marker_store),
) -> IdentityResolver:
    return IdentityResolver(markers)


def get_registry() -> StepRegistry:
    return get_step_registry()


def get_orchestrator(
    draft_store: DraftStore = Depends(get_draft_store),
    submission_sink: SubmissionSink = Depends(get_submission_sink),
    notifier: NotificationTrigger = Depends(get_notifier),
    identity_resolver: IdentityResolver = Depends(get_identity_resolver),
    registry: StepRegistry = Depends(get_registry),
) -> ApplicationFormOrchestrator:
    return ApplicationFormOrchestrator(
        draft_store=draft_store,
        submission_sink=submission_sink,
        notifier=notifier,
        identity_resolver=identity_resolver,
        registry=registry,
        retry_policy=RetryPolicy.from_settings(),
    )


def _secret_matches(provided: Optional[str], expected: Optional[str]) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


async def require_admin(x_admin_key: Optional[str] = Header(default=None, alias="X-Admin-Key")) -> str:
    """Guard for the review endpoints; returns the actor label recorded in audit logs."""
    if not settings.admin_api_key:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access is disabled")
    if not _secret_matches(x_admin_key, settings.admin_api_key):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin key")
    return "admin"


async def require_cron_secret(
    x_cron_secret: Optional[str] = Header(default=None, alias="X-Cron-Secret"),
) -> None:
    if not _secret_matches(x_cron_secret, settings.cron_secret):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
