from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from app.api import deps
from app.schemas.application_form import (
    ApplicationStatusResponse,
    FieldChangesRequest,
    FormCommandResponse,
    FormStateOut,
    ProgressOut,
    StepOut,
    StepsResponse,
)
from app.services.form_state import FormState
from app.services.orchestrator import ApplicationFormOrchestrator, CommandResult
from app.services.submission import SubmissionError
from app.services.steps import StepDescriptor, StepRegistry, project_progress

router = APIRouter(prefix="/application-form", tags=["application-form"])


@dataclass(slots=True)
class ApplicantLocator:
    email: Optional[str]
    session_id: Optional[str]


async def get_applicant_locator(
    email: Optional[str] = Query(default=None, description="Applicant email; must match the applicant of the session"),
    session_id: Optional[str] = Header(default=None, alias="X-Applicant-Session"),
) -> ApplicantLocator:
    return ApplicantLocator(email=email, session_id=session_id)


def _step_out(step: StepDescriptor) -> StepOut:
    return StepOut(
        index=step.index,
        id=step.id,
        title=step.title,
        required_fields=list(step.required_fields),
        internal=step.internal,
    )


def _progress_out(index: int, registry: StepRegistry) -> ProgressOut:
    progress = project_progress(index, registry)
    return ProgressOut(
        current_index=progress.current_index,
        total_steps=progress.total_steps,
        percent=progress.percent,
        label=progress.label,
        current_title=progress.current_title,
        segments=[
            {
                "index": segment.index,
                "id": segment.id,
                "title": segment.title,
                "filled": segment.filled,
                "current": segment.current,
            }
            for segment in progress.segments
        ],
    )


def _form_out(state: FormState, registry: StepRegistry) -> FormStateOut:
    return FormStateOut(
        email=state.email,
        phase=state.phase.value,
        step_index=state.step_index,
        step=_step_out(registry[state.step_index]),
        is_last_step=registry.is_last(state.step_index),
        progress=_progress_out(state.step_index, registry),
        save_status=state.save_status.value,
        last_saved_at=state.last_saved_at,
        last_error=state.last_error,
        notice=state.notice,
        application_id=state.application_id,
        application_reference=state.application_reference,
        missing_fields=list(state.missing_fields),
        data=state.draft,
    )


def _command_out(result: CommandResult, registry: StepRegistry) -> FormCommandResponse:
    return FormCommandResponse(
        moved=result.moved,
        submitted=result.submitted,
        missing_fields=list(result.missing_fields),
        form=_form_out(result.state, registry),
    )


async def _mount(orchestrator: ApplicationFormOrchestrator, locator: ApplicantLocator) -> FormState:
    return await orchestrator.mount(explicit_email=locator.email, session_id=locator.session_id)


@router.get("/steps", response_model=StepsResponse, summary="Wizard steps and the initial progress bar")
async def list_steps(registry: StepRegistry = Depends(deps.get_registry)) -> StepsResponse:
    return StepsResponse(
        steps=[_step_out(step) for step in registry],
        progress=_progress_out(0, registry),
    )


@router.get("", response_model=FormStateOut, summary="Open the applicant's form, resuming any saved draft")
async def open_form(
    locator: ApplicantLocator = Depends(get_applicant_locator),
    orchestrator: ApplicationFormOrchestrator = Depends(deps.get_orchestrator),
) -> FormStateOut:
    state = await _mount(orchestrator, locator)
    return _form_out(state, orchestrator.registry)


@router.patch("/fields", response_model=FormStateOut, summary="Apply field changes without saving")
async def update_fields(
    payload: FieldChangesRequest,
    locator: ApplicantLocator = Depends(get_applicant_locator),
    orchestrator: ApplicationFormOrchestrator = Depends(deps.get_orchestrator),
) -> FormStateOut:
    state = await _mount(orchestrator, locator)
    state = orchestrator.update_fields(state, payload.changes)
    return _form_out(state, orchestrator.registry)


@router.post("/advance", response_model=FormCommandResponse, summary="Move to the next step")
async def advance(
    payload: Optional[FieldChangesRequest] = None,
    locator: ApplicantLocator = Depends(get_applicant_locator),
    orchestrator: ApplicationFormOrchestrator = Depends(deps.get_orchestrator),
) -> FormCommandResponse:
    state = await _mount(orchestrator, locator)
    result = await orchestrator.advance(state, payload.changes if payload else None)
    return _command_out(result, orchestrator.registry)


@router.post("/retreat", response_model=FormCommandResponse, summary="Move to the previous step")
async def retreat(
    payload: Optional[FieldChangesRequest] = None,
    locator: ApplicantLocator = Depends(get_applicant_locator),
    orchestrator: ApplicationFormOrchestrator = Depends(deps.get_orchestrator),
) -> FormCommandResponse:
    state = await _mount(orchestrator, locator)
    result = await orchestrator.retreat(state, payload.changes if payload else None)
    return _command_out(result, orchestrator.registry)


@router.post("/save", response_model=FormCommandResponse, summary="Save progress without validating")
async def save_progress(
    payload: Optional[FieldChangesRequest] = None,
    locator: ApplicantLocator = Depends(get_applicant_locator),
    orchestrator: ApplicationFormOrchestrator = Depends(deps.get_orchestrator),
) -> FormCommandResponse:
    state = await _mount(orchestrator, locator)
    result = await orchestrator.save_progress(state, payload.changes if payload else None)
    return _command_out(result, orchestrator.registry)


@router.post("/submit", response_model=FormCommandResponse, summary="Submit the completed application")
async def submit(
    payload: Optional[FieldChangesRequest] = None,
    locator: ApplicantLocator = Depends(get_applicant_locator),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    orchestrator: ApplicationFormOrchestrator = Depends(deps.get_orchestrator),
) -> FormCommandResponse:
    state = await _mount(orchestrator, locator)
    result = await orchestrator.submit(
        state, payload.changes if payload else None, idempotency_key=idempotency_key
    )
    return _command_out(result, orchestrator.registry)


@router.get("/status", response_model=ApplicationStatusResponse, summary="Status of the applicant's submission")
async def application_status(
    locator: ApplicantLocator = Depends(get_applicant_locator),
    orchestrator: ApplicationFormOrchestrator = Depends(deps.get_orchestrator),
) -> ApplicationStatusResponse:
    try:
        receipt = await orchestrator.lookup_submission(
            explicit_email=locator.email, session_id=locator.session_id
        )
    except SubmissionError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "storage_unavailable", "message": "Application status is unavailable", "details": {}},
        ) from exc
    if receipt is None:
        return ApplicationStatusResponse(submitted=False)
    return ApplicationStatusResponse(
        submitted=True,
        application_id=receipt.application_id,
        reference=receipt.reference,
        status=receipt.status,
        created_at=receipt.created_at,
    )
