from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from app.core.settings import settings


@dataclass(frozen=True, slots=True)
class StepDescriptor:
    index: int
    id: str
    title: str
    required_fields: tuple[str, ...]
    internal: bool = False


# Field paths are evaluated by app.services.navigation; conditional requirements
# (business permit) are resolved there against the whole draft.
_ALL_STEPS: tuple[StepDescriptor, ...] = (
    StepDescriptor(
        index=0,
        id="personal",
        title="Personal Information",
        required_fields=(
            "personal.first_name",
            "personal.last_name",
            "personal.email",
            "personal.phone_number",
            "personal.date_of_birth",
            "personal.nationality",
            "personal.civil_status",
        ),
    ),
    StepDescriptor(
        index=1,
        id="business",
        title="Business Experience",
        required_fields=(
            "experience.first_time_business",
            "experience.existing_business",
        ),
    ),
    StepDescriptor(
        index=2,
        id="location",
        title="Business Location",
        required_fields=(
            "location.proposed_location",
            "location.address.region",
            "location.address.city",
            "location.address.street",
            "location.address.zip_code",
            "location.latitude",
            "location.longitude",
        ),
    ),
    StepDescriptor(
        index=3,
        id="packages",
        title="Business Packages",
        required_fields=("packages.plan",),
    ),
    StepDescriptor(
        index=4,
        id="requirements",
        title="Requirements & Signature",
        required_fields=(
            "requirements.signature",
            "requirements.certification",
            "requirements.terms_and_conditions",
            "requirements.files.valid_id_front",
            "requirements.files.valid_id_back",
            "requirements.files.selfie_with_id",
            "requirements.files.proof_of_address",
        ),
    ),
    StepDescriptor(index=5, id="assessment", title="Assessment", required_fields=(), internal=True),
    StepDescriptor(
        index=6, id="activation", title="System Activation", required_fields=(), internal=True
    ),
)


class StepRegistry:
    """Fixed, ordered sequence of wizard steps."""

    def __init__(self, *, include_internal: bool = False) -> None:
        steps = [step for step in _ALL_STEPS if include_internal or not step.internal]
        # Re-number so indices stay contiguous when internal steps are hidden.
        self._steps: tuple[StepDescriptor, ...] = tuple(
            StepDescriptor(
                index=position,
                id=step.id,
                title=step.title,
                required_fields=step.required_fields,
                internal=step.internal,
            )
            for position, step in enumerate(steps)
        )
        self.include_internal = include_internal

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self):
        return iter(self._steps)

    def __getitem__(self, index: int) -> StepDescriptor:
        return self._steps[index]

    @property
    def last_index(self) -> int:
        return len(self._steps) - 1

    def is_last(self, index: int) -> bool:
        return index == self.last_index

    def by_id(self, step_id: str) -> StepDescriptor | None:
        for step in self._steps:
            if step.id == step_id:
                return step
        return None


@lru_cache(maxsize=2)
def get_step_registry(include_internal: bool | None = None) -> StepRegistry:
    if include_internal is None:
        include_internal = settings.form_include_internal_steps
    return StepRegistry(include_internal=include_internal)


@dataclass(frozen=True, slots=True)
class ProgressSegment:
    index: int
    id: str
    title: str
    filled: bool
    current: bool


@dataclass(frozen=True, slots=True)
class ProgressState:
    current_index: int
    total_steps: int
    percent: int
    label: str
    current_title: str
    segments: tuple[ProgressSegment, ...]


def project_progress(current_index: int, registry: StepRegistry) -> ProgressState:
    """Project the current step onto the progress bar: segments up to and including it are filled."""
    total = len(registry)
    segments = tuple(
        ProgressSegment(
            index=step.index,
            id=step.id,
            title=step.title,
            filled=step.index <= current_index,
            current=step.index == current_index,
        )
        for step in registry
    )
    return ProgressState(
        current_index=current_index,
        total_steps=total,
        percent=round((current_index + 1) * 100 / total),
        label=f"Step {current_index + 1} of {total}",
        current_title=registry[current_index].title,
        segments=segments,
    )
