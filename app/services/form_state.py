"""Immutable wizard state and the transition function that evolves it.

Every mutation of an applicant's form goes through :func:`apply_action`, which
returns a new :class:`FormState` and never touches the previous one. Navigation
gating lives in :mod:`app.services.navigation`; a refused transition returns the
state unchanged rather than raising.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from pydantic import ValidationError

from app.core.errors import PortalError
from app.schemas.application import ApplicationDraftData, normalize_email
from app.services import navigation
from app.services.steps import StepRegistry


class FormPhase(str, Enum):
    LOADING_DRAFT = "loading_draft"
    EDITING = "editing"
    SUBMITTING = "submitting"
    SUBMITTED_SUCCESS = "submitted_success"
    SUBMITTED_ERROR = "submitted_error"


class SaveStatus(str, Enum):
    NEVER_SAVED = "never_saved"
    SAVED = "saved"
    UNSAVED_CHANGES = "unsaved_changes"
    NOT_SAVED = "not_saved"


EDITABLE_PHASES = frozenset({FormPhase.EDITING, FormPhase.SUBMITTED_ERROR})


class FormStateError(PortalError):
    code = "invalid_form_action"


@dataclass(frozen=True, slots=True)
class FormState:
    email: str
    draft: ApplicationDraftData
    step_index: int = 0
    phase: FormPhase = FormPhase.LOADING_DRAFT
    save_status: SaveStatus = SaveStatus.NEVER_SAVED
    last_saved_at: datetime | None = None
    last_error: str | None = None
    notice: str | None = None
    application_id: str | None = None
    application_reference: str | None = None
    submission_token: str | None = None
    missing_fields: tuple[str, ...] = ()

    @property
    def editable(self) -> bool:
        return self.phase in EDITABLE_PHASES


# -- Actions -----------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Hydrate:
    draft: ApplicationDraftData
    step_index: int
    saved_at: datetime | None
    submission_token: str | None = None


@dataclass(frozen=True, slots=True)
class StartFresh:
    draft: ApplicationDraftData
    notice: str | None = None


@dataclass(frozen=True, slots=True)
class MarkAlreadySubmitted:
    application_id: str
    reference: str
    token: str | None = None


@dataclass(frozen=True, slots=True)
class SetFields:
    changes: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Advance:
    pass


@dataclass(frozen=True, slots=True)
class Retreat:
    pass


@dataclass(frozen=True, slots=True)
class SaveSucceeded:
    saved_at: datetime


@dataclass(frozen=True, slots=True)
class SaveFailed:
    error: str


@dataclass(frozen=True, slots=True)
class SubmitStarted:
    token: str


@dataclass(frozen=True, slots=True)
class SubmitSucceeded:
    application_id: str
    reference: str


@dataclass(frozen=True, slots=True)
class SubmitFailed:
    error: str


FormAction = (
    Hydrate
    | StartFresh
    | MarkAlreadySubmitted
    | SetFields
    | Advance
    | Retreat
    | SaveSucceeded
    | SaveFailed
    | SubmitStarted
    | SubmitSucceeded
    | SubmitFailed
)


def initial_state(email: str) -> FormState:
    email = normalize_email(email)
    return FormState(email=email, draft=ApplicationDraftData.for_applicant(email))


# -- Field changes -------------------------------------------------------------


def _assign(data: dict, path: str, value: Any) -> None:
    parts = path.split(".")
    target: Any = data
    for part in parts[:-1]:
        if not isinstance(target, dict) or part not in target or target[part] is None:
            raise FormStateError(
                f"Unknown field path: {path}", code="invalid_field", details={"field": path}
            )
        target = target[part]
    leaf = parts[-1]
    if not isinstance(target, dict) or leaf not in target:
        raise FormStateError(
            f"Unknown field path: {path}", code="invalid_field", details={"field": path}
        )
    target[leaf] = value


def apply_changes(
    draft: ApplicationDraftData, changes: Mapping[str, Any], *, email: str
) -> ApplicationDraftData:
    """Apply dotted-path changes as one batch and re-validate the whole draft."""
    if not changes:
        return draft
    data = draft.model_dump(mode="python")
    for path, value in changes.items():
        if path == "personal.email":
            candidate = (value or "").strip().lower() if isinstance(value, str) else value
            if candidate != email:
                raise FormStateError(
                    "The applicant email cannot be changed once the application has started",
                    code="email_immutable",
                    details={"field": path},
                )
            value = candidate
        _assign(data, path, value)
    try:
        return ApplicationDraftData.model_validate(data)
    except ValidationError as exc:
        raise FormStateError(
            "One or more fields are invalid",
            code="invalid_field",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc


# -- Transition function ---------------------------------------------------------


def _require_editable(state: FormState, action: Any) -> None:
    if not state.editable:
        raise FormStateError(
            f"Cannot apply {type(action).__name__} while the form is {state.phase.value}",
            code="form_locked",
            details={"phase": state.phase.value},
            status_code=409,
        )


def apply_action(state: FormState, action: FormAction, *, registry: StepRegistry) -> FormState:
    if isinstance(action, Hydrate):
        return replace(
            state,
            draft=action.draft,
            step_index=min(max(action.step_index, 0), registry.last_index),
            phase=FormPhase.EDITING,
            save_status=SaveStatus.SAVED,
            last_saved_at=action.saved_at,
            submission_token=action.submission_token,
        )

    if isinstance(action, StartFresh):
        return replace(
            state,
            draft=action.draft,
            step_index=0,
            phase=FormPhase.EDITING,
            save_status=SaveStatus.NEVER_SAVED,
            notice=action.notice,
        )

    if isinstance(action, MarkAlreadySubmitted):
        return replace(
            state,
            phase=FormPhase.SUBMITTED_SUCCESS,
            application_id=action.application_id,
            application_reference=action.reference,
            submission_token=action.token,
        )

    if isinstance(action, SetFields):
        _require_editable(state, action)
        draft = apply_changes(state.draft, action.changes, email=state.email)
        if draft == state.draft:
            return state
        return replace(
            state,
            draft=draft,
            phase=FormPhase.EDITING,
            save_status=SaveStatus.UNSAVED_CHANGES,
            missing_fields=(),
        )

    if isinstance(action, Advance):
        _require_editable(state, action)
        decision = navigation.decide_advance(state.step_index, state.draft, registry)
        if not decision.allowed:
            return replace(state, missing_fields=decision.missing_fields)
        return replace(state, step_index=decision.to_index, phase=FormPhase.EDITING, missing_fields=())

    if isinstance(action, Retreat):
        _require_editable(state, action)
        decision = navigation.decide_retreat(state.step_index)
        if not decision.allowed:
            return state
        return replace(state, step_index=decision.to_index, phase=FormPhase.EDITING, missing_fields=())

    if isinstance(action, SaveSucceeded):
        return replace(state, save_status=SaveStatus.SAVED, last_saved_at=action.saved_at)

    if isinstance(action, SaveFailed):
        return replace(state, save_status=SaveStatus.NOT_SAVED, notice=action.error)

    if isinstance(action, SubmitStarted):
        _require_editable(state, action)
        return replace(
            state,
            phase=FormPhase.SUBMITTING,
            submission_token=action.token,
            last_error=None,
        )

    if isinstance(action, SubmitSucceeded):
        if state.phase is not FormPhase.SUBMITTING:
            raise FormStateError("No submission in progress", code="invalid_transition")
        return replace(
            state,
            phase=FormPhase.SUBMITTED_SUCCESS,
            application_id=action.application_id,
            application_reference=action.reference,
            last_error=None,
        )

    if isinstance(action, SubmitFailed):
        if state.phase is not FormPhase.SUBMITTING:
            raise FormStateError("No submission in progress", code="invalid_transition")
        return replace(state, phase=FormPhase.SUBMITTED_ERROR, last_error=action.error)

    raise FormStateError(f"Unsupported action: {type(action).__name__}", code="invalid_transition")
