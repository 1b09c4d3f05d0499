from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.settings import settings
from app.models.agent_application import AgentApplication
from app.schemas.application import ApplicationDraftData, ApplicationStatus, normalize_email

logger = logging.getLogger(__name__)


class SubmissionError(RuntimeError):
    """A single write to the submission sink failed; the write may be retried."""


class DuplicateSubmissionError(SubmissionError):
    """An application already exists for this applicant under a different submission."""


class SubmissionFailed(SubmissionError):
    def __init__(self, attempts: int, last_error: BaseException | None) -> None:
        message = str(last_error) if last_error is not None else "Submission failed"
        super().__init__(message or type(last_error).__name__)
        self.attempts = attempts
        self.last_error = last_error


@dataclass(frozen=True, slots=True)
class ApplicationSubmission:
    email: str
    data: ApplicationDraftData
    idempotency_key: str


@dataclass(frozen=True, slots=True)
class SubmissionReceipt:
    application_id: str
    reference: str
    status: str
    created_at: datetime | None = None
    replayed: bool = False
    idempotency_key: str | None = None


class SubmissionSink(Protocol):
    async def insert(self, submission: ApplicationSubmission) -> SubmissionReceipt: ...

    async def find_by_email(self, email: str) -> SubmissionReceipt | None: ...


def make_reference(application_id: uuid.UUID) -> str:
    return f"APP-{application_id.hex[:8].upper()}"


def _receipt(application: AgentApplication, *, replayed: bool = False) -> SubmissionReceipt:
    return SubmissionReceipt(
        application_id=str(application.id),
        reference=application.reference,
        status=application.status,
        created_at=application.created_at,
        replayed=replayed,
        idempotency_key=application.submit_idempotency_key,
    )


def build_application(submission: ApplicationSubmission) -> AgentApplication:
    data = submission.data
    application_id = uuid.uuid4()
    return AgentApplication(
        id=application_id,
        reference=make_reference(application_id),
        email=normalize_email(submission.email),
        full_name=data.full_name,
        phone_number=data.personal.phone_number or None,
        plan=data.packages.plan,
        latitude=data.location.latitude,
        longitude=data.location.longitude,
        status=ApplicationStatus.PENDING.value,
        form_data=data.model_dump(mode="json"),
        submit_idempotency_key=submission.idempotency_key,
    )


class DatabaseSubmissionSink:
    """Writes submitted applications to ``agent_applications``; one row per email."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | Callable[[], Awaitable[AsyncSession]],
    ) -> None:
        self._session_factory = session_factory

    @staticmethod
    async def _existing(session: AsyncSession, email: str) -> AgentApplication | None:
        result = await session.execute(select(AgentApplication).where(AgentApplication.email == email))
        return result.scalar_one_or_none()

    @staticmethod
    def _replay_or_reject(
        existing: AgentApplication, submission: ApplicationSubmission
    ) -> SubmissionReceipt:
        if existing.submit_idempotency_key == submission.idempotency_key:
            return _receipt(existing, replayed=True)
        raise DuplicateSubmissionError("An application has already been submitted for this email")

    async def find_by_email(self, email: str) -> SubmissionReceipt | None:
        key = normalize_email(email)
        try:
            async with self._session_factory() as session:
                existing = await self._existing(session, key)
        except SQLAlchemyError as exc:
            raise SubmissionError(str(exc)) from exc
        return _receipt(existing) if existing else None

    async def insert(self, submission: ApplicationSubmission) -> SubmissionReceipt:
        key = normalize_email(submission.email)
        try:
            async with self._session_factory() as session:
                existing = await self._existing(session, key)
                if existing is not None:
                    return self._replay_or_reject(existing, submission)
                application = build_application(submission)
                session.add(application)
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    existing = await self._existing(session, key)
                    if existing is not None:
                        return self._replay_or_reject(existing, submission)
                    raise
                await session.refresh(application)
                return _receipt(application)
        except DuplicateSubmissionError:
            raise
        except SQLAlchemyError as exc:
            raise SubmissionError("Application storage is unavailable") from exc


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    delay_seconds: float = 1.0
    attempt_timeout_seconds: float | None = 15.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.submission_max_attempts,
            delay_seconds=settings.submission_retry_delay_seconds,
            attempt_timeout_seconds=settings.submission_attempt_timeout_seconds,
        )


def _discard_late_result(task: asyncio.Future) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Timed-out submission attempt finished with error: %s", exc)
    else:
        logger.info("Timed-out submission attempt completed after its deadline")


async def _attempt(
    sink: SubmissionSink, submission: ApplicationSubmission, timeout: float | None
) -> SubmissionReceipt:
    if timeout is None:
        return await sink.insert(submission)
    task = asyncio.ensure_future(sink.insert(submission))
    try:
        # Shielded: a write that outlives its deadline is allowed to finish.
        return await asyncio.wait_for(asyncio.shield(task), timeout)
    except asyncio.TimeoutError:
        task.add_done_callback(_discard_late_result)
        raise


async def submit_with_retry(
    sink: SubmissionSink,
    submission: ApplicationSubmission,
    policy: RetryPolicy | None = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> SubmissionReceipt:
    """Write ``submission`` with a fixed number of attempts and a fixed delay between them.

    The same idempotency key is carried by every attempt, so an attempt whose
    response was lost is replayed rather than duplicated. Duplicate-submission
    rejections are not retried.
    """
    policy = policy or RetryPolicy.from_settings()
    last_error: BaseException | None = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            receipt = await _attempt(sink, submission, policy.attempt_timeout_seconds)
        except DuplicateSubmissionError:
            raise
        except (SubmissionError, asyncio.TimeoutError, OSError) as exc:
            last_error = exc
            logger.warning(
                "Submission attempt %s/%s failed: %s",
                attempt,
                policy.max_attempts,
                exc if str(exc) else type(exc).__name__,
            )
            if attempt < policy.max_attempts and policy.delay_seconds:
                await sleep(policy.delay_seconds)
            continue
        logger.info("Application submitted on attempt %s (replayed=%s)", attempt, receipt.replayed)
        return receipt
    raise SubmissionFailed(policy.max_attempts, last_error)
