from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from app.schemas.application import ApplicationDraftData, FileSlot, YesNo
from app.services.steps import StepDescriptor, StepRegistry

BUSINESS_PERMIT_PATH = f"requirements.files.{FileSlot.BUSINESS_PERMIT.value}"


@dataclass(frozen=True, slots=True)
class NavigationDecision:
    allowed: bool
    from_index: int
    to_index: int
    missing_fields: tuple[str, ...] = field(default_factory=tuple)


def field_value(draft: ApplicationDraftData, path: str) -> Any:
    value: Any = draft
    for part in path.split("."):
        if value is None:
            return None
        value = getattr(value, part)
    return value


def is_filled(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        # Checkbox-style fields only count once ticked.
        return value
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, tuple, dict)):
        return bool(value)
    return True


def requires_business_permit(draft: ApplicationDraftData) -> bool:
    """The business permit upload is required when the applicant runs an existing business."""
    return draft.experience.existing_business == YesNo.YES.value


def required_fields_for(step: StepDescriptor, draft: ApplicationDraftData) -> tuple[str, ...]:
    required = step.required_fields
    if step.id == "requirements" and requires_business_permit(draft):
        required = required + (BUSINESS_PERMIT_PATH,)
    return required


def missing_fields(step: StepDescriptor, draft: ApplicationDraftData) -> tuple[str, ...]:
    return tuple(
        path for path in required_fields_for(step, draft) if not is_filled(field_value(draft, path))
    )


def decide_advance(
    index: int, draft: ApplicationDraftData, registry: StepRegistry
) -> NavigationDecision:
    if index >= registry.last_index:
        return NavigationDecision(allowed=False, from_index=index, to_index=index)
    missing = missing_fields(registry[index], draft)
    if missing:
        return NavigationDecision(
            allowed=False, from_index=index, to_index=index, missing_fields=missing
        )
    return NavigationDecision(allowed=True, from_index=index, to_index=index + 1)


def decide_retreat(index: int) -> NavigationDecision:
    if index <= 0:
        return NavigationDecision(allowed=False, from_index=index, to_index=index)
    return NavigationDecision(allowed=True, from_index=index, to_index=index - 1)


def decide_submit(
    index: int, draft: ApplicationDraftData, registry: StepRegistry
) -> NavigationDecision:
    if not registry.is_last(index):
        return NavigationDecision(allowed=False, from_index=index, to_index=index)
    missing = missing_fields(registry[index], draft)
    return NavigationDecision(
        allowed=not missing, from_index=index, to_index=index, missing_fields=missing
    )
