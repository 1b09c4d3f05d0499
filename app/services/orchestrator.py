from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Mapping

from app.core.context import set_applicant
from app.core.errors import PortalError
from app.core.settings import settings
from app.schemas.application import ApplicationDraftData
from app.services import navigation
from app.services.draft_store import DraftStore, DraftStoreError
from app.services.form_state import (
    Advance,
    FormAction,
    FormPhase,
    FormState,
    Hydrate,
    MarkAlreadySubmitted,
    Retreat,
    SaveFailed,
    SaveSucceeded,
    SetFields,
    StartFresh,
    SubmitFailed,
    SubmitStarted,
    SubmitSucceeded,
    apply_action,
    initial_state,
)
from app.services.identity import ApplicantIdentity, IdentityResolver
from app.services.notifications import NotificationKind, NotificationTrigger
from app.services.steps import StepRegistry, get_step_registry
from app.services.submission import (
    ApplicationSubmission,
    DuplicateSubmissionError,
    RetryPolicy,
    SubmissionError,
    SubmissionFailed,
    SubmissionReceipt,
    SubmissionSink,
    submit_with_retry,
)

logger = logging.getLogger(__name__)

SAVE_FAILED_NOTICE = "Your progress could not be saved. Keep this page open and try again."
DRAFT_UNAVAILABLE_NOTICE = "Your saved progress could not be loaded right now."


class IdentityRequired(PortalError):
    status_code = 401
    code = "identity_required"


class AlreadySubmitted(PortalError):
    status_code = 409
    code = "already_submitted"


@dataclass(frozen=True, slots=True)
class CommandResult:
    state: FormState
    moved: bool = False
    submitted: bool = False

    @property
    def missing_fields(self) -> tuple[str, ...]:
        return self.state.missing_fields


class ApplicationFormOrchestrator:
    """Drives one applicant's wizard from mount to a terminal submission state.

    Each public method takes the current :class:`FormState`, performs the
    command, and returns the new state. Collaborator failures are converted to
    state (``save_status``, ``last_error``, ``notice``) rather than raised; only
    a missing identity and a duplicate submission escape as errors.
    """

    def __init__(
        self,
        *,
        draft_store: DraftStore,
        submission_sink: SubmissionSink,
        notifier: NotificationTrigger,
        identity_resolver: IdentityResolver,
        registry: StepRegistry | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        token_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self.draft_store = draft_store
        self.submission_sink = submission_sink
        self.notifier = notifier
        self.identity_resolver = identity_resolver
        self.registry = registry or get_step_registry()
        self.retry_policy = retry_policy or RetryPolicy.from_settings()
        self._sleep = sleep
        self._token_factory = token_factory

    def _apply(self, state: FormState, action: FormAction) -> FormState:
        return apply_action(state, action, registry=self.registry)

    async def resolve_identity(
        self, *, explicit_email: str | None = None, session_id: str | None = None
    ) -> ApplicantIdentity:
        identity = await self.identity_resolver.resolve(explicit_email, session_id)
        if identity is None:
            raise IdentityRequired(
                "Sign in or register before starting an application",
                details={"redirect_to": settings.identity_redirect_url},
            )
        set_applicant(identity.email)
        return identity

    async def _existing_submission(self, email: str) -> SubmissionReceipt | None:
        try:
            return await self.submission_sink.find_by_email(email)
        except SubmissionError as exc:
            logger.warning("Could not check for an existing application: %s", exc)
            return None

    async def _settle_leftover_draft(self, email: str, receipt: SubmissionReceipt) -> str | None:
        """Finish a submission whose success never reached the applicant.

        A draft that outlives its application means the insert committed but
        the draft removal and confirmation email never ran. Returns the
        draft's submission token when it is the one the record was written
        with, so the applicant can be recognised as its owner.
        """
        try:
            leftover = await self.draft_store.load(email)
        except DraftStoreError as exc:
            logger.warning("Could not check for a leftover draft: %s", exc)
            return None
        if leftover is None:
            return None

        logger.info("Clearing draft left behind by application %s", receipt.reference)
        if not await self.draft_store.delete(email):
            logger.warning("Leftover draft for application %s could not be removed", receipt.reference)
        token = leftover.submission_token
        if token is None or token != receipt.idempotency_key:
            return None
        await self._notify_submitted(email, leftover.data.full_name, receipt)
        return token

    async def mount(
        self, *, explicit_email: str | None = None, session_id: str | None = None
    ) -> FormState:
        identity = await self.resolve_identity(explicit_email=explicit_email, session_id=session_id)
        state = initial_state(identity.email)

        existing = await self._existing_submission(state.email)
        if existing is not None:
            token = await self._settle_leftover_draft(state.email, existing)
            return self._apply(
                state,
                MarkAlreadySubmitted(
                    application_id=existing.application_id, reference=existing.reference, token=token
                ),
            )

        fresh = ApplicationDraftData.for_applicant(state.email, identity.display_name)
        try:
            saved = await self.draft_store.load(state.email)
        except DraftStoreError as exc:
            logger.warning("Draft load failed; starting from defaults: %s", exc)
            return self._apply(state, StartFresh(draft=fresh, notice=DRAFT_UNAVAILABLE_NOTICE))

        if saved is None:
            return self._apply(state, StartFresh(draft=fresh))
        logger.info("Resuming draft at step %s", saved.step_index)
        return self._apply(
            state,
            Hydrate(
                draft=saved.data,
                step_index=saved.step_index,
                saved_at=saved.saved_at,
                submission_token=saved.submission_token,
            ),
        )

    async def _persist(self, state: FormState) -> FormState:
        result = await self.draft_store.save(
            state.email, state.draft, state.step_index, submission_token=state.submission_token
        )
        if result.ok:
            return self._apply(state, SaveSucceeded(saved_at=result.saved_at))
        return self._apply(state, SaveFailed(error=SAVE_FAILED_NOTICE))

    def update_fields(self, state: FormState, changes: Mapping[str, Any] | None) -> FormState:
        if not changes:
            return state
        return self._apply(state, SetFields(changes=dict(changes)))

    async def advance(
        self, state: FormState, changes: Mapping[str, Any] | None = None
    ) -> CommandResult:
        state = self.update_fields(state, changes)
        moved = self._apply(state, Advance())
        if moved.step_index == state.step_index:
            return CommandResult(state=moved)
        return CommandResult(state=await self._persist(moved), moved=True)

    async def retreat(
        self, state: FormState, changes: Mapping[str, Any] | None = None
    ) -> CommandResult:
        state = self.update_fields(state, changes)
        moved = self._apply(state, Retreat())
        if moved.step_index == state.step_index:
            return CommandResult(state=moved)
        return CommandResult(state=await self._persist(moved), moved=True)

    async def save_progress(
        self, state: FormState, changes: Mapping[str, Any] | None = None
    ) -> CommandResult:
        state = self.update_fields(state, changes)
        return CommandResult(state=await self._persist(state))

    @staticmethod
    def _already_submitted(application_id: str | None, reference: str | None) -> AlreadySubmitted:
        return AlreadySubmitted(
            "An application has already been submitted for this email",
            details={"application_id": application_id, "reference": reference},
        )

    async def submit(
        self,
        state: FormState,
        changes: Mapping[str, Any] | None = None,
        *,
        idempotency_key: str | None = None,
    ) -> CommandResult:
        token = idempotency_key or state.submission_token

        if state.phase is FormPhase.SUBMITTED_SUCCESS:
            # A retry of the submission that created the record is answered with it.
            existing = await self._existing_submission(state.email) if token else None
            if existing is not None and existing.idempotency_key == token:
                return CommandResult(state=state, submitted=True)
            raise self._already_submitted(state.application_id, state.application_reference)

        state = self.update_fields(state, changes)
        decision = navigation.decide_submit(state.step_index, state.draft, self.registry)
        if not decision.allowed:
            return CommandResult(state=replace(state, missing_fields=decision.missing_fields))

        existing = await self._existing_submission(state.email)
        if existing is not None:
            if token is None or existing.idempotency_key != token:
                raise self._already_submitted(existing.application_id, existing.reference)
            return await self._complete(self._apply(state, SubmitStarted(token=token)), existing)

        token = token or self._token_factory()
        state = self._apply(state, SubmitStarted(token=token))
        state = await self._persist(state)

        submission = ApplicationSubmission(email=state.email, data=state.draft, idempotency_key=token)
        try:
            receipt = await submit_with_retry(
                self.submission_sink, submission, self.retry_policy, sleep=self._sleep
            )
        except DuplicateSubmissionError as exc:
            raise AlreadySubmitted(str(exc)) from exc
        except SubmissionFailed as exc:
            logger.error("Submission failed after %s attempts: %s", exc.attempts, exc)
            failed = self._apply(
                state,
                SubmitFailed(
                    error="We could not submit your application. Your answers are saved; please try again."
                ),
            )
            return CommandResult(state=failed)

        return await self._complete(state, receipt)

    async def _complete(self, state: FormState, receipt: SubmissionReceipt) -> CommandResult:
        state = self._apply(
            state, SubmitSucceeded(application_id=receipt.application_id, reference=receipt.reference)
        )
        if not await self.draft_store.delete(state.email):
            logger.warning("Submitted application %s but the draft could not be removed", receipt.reference)
        await self._notify_submitted(state.email, state.draft.full_name, receipt)
        return CommandResult(state=state, moved=True, submitted=True)

    async def _notify_submitted(self, email: str, full_name: str, receipt: SubmissionReceipt) -> None:
        try:
            sent = await self.notifier.send(
                NotificationKind.APPLICATION_SUBMITTED,
                email,
                {
                    "email": email,
                    "full_name": full_name,
                    "application_id": receipt.reference,
                },
            )
        except Exception:  # the record is already durable; never undo success over email
            logger.exception("Submission notification raised for %s", receipt.reference)
            return
        if not sent:
            logger.warning("Submission notification not delivered for %s", receipt.reference)

    async def lookup_submission(
        self, *, explicit_email: str | None = None, session_id: str | None = None
    ) -> SubmissionReceipt | None:
        identity = await self.resolve_identity(explicit_email=explicit_email, session_id=session_id)
        return await self.submission_sink.find_by_email(identity.email)
