from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.application import ApplicationStatus


class AgentApplicationSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    reference: str
    email: str
    full_name: str
    phone_number: str | None = None
    plan: str | None = None
    status: str
    created_at: datetime
    reviewed_at: datetime | None = None


class AgentApplicationDetail(AgentApplicationSummary):
    latitude: float | None = None
    longitude: float | None = None
    review_feedback: str | None = None
    form_data: dict[str, Any]
    updated_at: datetime


class AgentApplicationListResponse(BaseModel):
    items: list[AgentApplicationSummary]
    total: int
    limit: int
    offset: int


class StatusUpdateRequest(BaseModel):
    status: ApplicationStatus
    feedback: str | None = Field(default=None, max_length=2000)


class InternalSectionsUpdateRequest(BaseModel):
    assessment: dict[str, Any] | None = None
    activation: dict[str, Any] | None = None


class ReminderRunResponse(BaseModel):
    checked: int
    sent: int
    skipped: int
    failed: int
