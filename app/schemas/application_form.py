from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, EmailStr, Field

from app.schemas.application import ApplicationDraftData


class PreRegistrationRequest(BaseModel):
    email: EmailStr
    full_name: str = Field(min_length=1, max_length=255)


class PreRegistrationResponse(BaseModel):
    session_id: str
    email: str
    next: str = "/application-form"


class FieldChangesRequest(BaseModel):
    """Dotted field paths mapped to their new values, applied as one batch."""

    changes: dict[str, Any] = Field(default_factory=dict)


class StepOut(BaseModel):
    index: int
    id: str
    title: str
    required_fields: list[str]
    internal: bool = False


class ProgressSegmentOut(BaseModel):
    index: int
    id: str
    title: str
    filled: bool
    current: bool


class ProgressOut(BaseModel):
    current_index: int
    total_steps: int
    percent: int
    label: str
    current_title: str
    segments: list[ProgressSegmentOut]


class StepsResponse(BaseModel):
    steps: list[StepOut]
    progress: ProgressOut


class FormStateOut(BaseModel):
    email: str
    phase: str
    step_index: int
    step: StepOut
    is_last_step: bool
    progress: ProgressOut
    save_status: str
    last_saved_at: datetime | None = None
    last_error: str | None = None
    notice: str | None = None
    application_id: str | None = None
    application_reference: str | None = None
    missing_fields: list[str] = Field(default_factory=list)
    data: ApplicationDraftData


class FormCommandResponse(BaseModel):
    moved: bool
    submitted: bool = False
    missing_fields: list[str] = Field(default_factory=list)
    form: FormStateOut


class ApplicationStatusResponse(BaseModel):
    submitted: bool
    application_id: str | None = None
    reference: str | None = None
    status: str | None = None
    created_at: datetime | None = None
