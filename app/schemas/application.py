from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


DEFAULT_COUNTRY = "Philippines"


class YesNo(str, Enum):
    YES = "yes"
    NO = "no"


class BusinessPlan(str, Enum):
    BASIC = "basic"
    PLUS = "plus"
    PREMIUM = "premium"


class EnterprisePackage(str, Enum):
    ENTERPRISE = "enterprise"
    ENTERPRISE_DELUXE = "enterprise-deluxe"


class BusinessType(str, Enum):
    SOLE_PROPRIETOR = "sole_proprietor"
    PARTNERSHIP = "partnership"
    CORPORATION = "corporation"
    OTHER = "other"


class FileSlot(str, Enum):
    VALID_ID_FRONT = "valid_id_front"
    VALID_ID_BACK = "valid_id_back"
    SELFIE_WITH_ID = "selfie_with_id"
    PROOF_OF_ADDRESS = "proof_of_address"
    BUSINESS_PERMIT = "business_permit"


class ApplicationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", use_enum_values=True)


class Address(_Section):
    number: str = ""
    street: str = ""
    brgy: str = ""
    city: str = ""
    region: str = ""
    country: str = DEFAULT_COUNTRY
    zip_code: str = ""


class LocationAddress(Address):
    province: str = ""


class FileReference(_Section):
    """Uploaded file: opaque storage handle plus the name shown to the applicant."""

    handle: str = Field(min_length=1)
    name: str = Field(min_length=1)


class PersonalInfo(_Section):
    first_name: str = ""
    middle_name: str = ""
    last_name: str = ""
    nationality: str = ""
    place_of_birth: str = ""
    date_of_birth: str = ""
    civil_status: str = ""
    email: str = ""
    phone_number: str = ""
    gender: str = ""
    id_type: str = ""
    id_number: str = ""
    address: Address = Field(default_factory=Address)
    tin_number: str = ""
    first_time_applying: YesNo | None = YesNo.YES
    ever_charged: YesNo | None = YesNo.NO
    declared_bankruptcy: YesNo | None = YesNo.NO
    details: str = ""
    income_source: str = ""
    employment_company: str = ""


class BusinessDetails(_Section):
    name: str = ""
    years_operating: str = ""
    type: BusinessType | None = None
    nature: str = ""
    position: str = ""
    address: str = ""


class AdditionalBusiness(_Section):
    name: str = ""
    years_operating: str = ""
    type: str = ""


class BusinessExperience(_Section):
    first_time_business: YesNo | None = YesNo.YES
    existing_business: YesNo | None = YesNo.NO
    add_platapay: YesNo | None = YesNo.NO
    business: BusinessDetails = Field(default_factory=BusinessDetails)
    additional_business: AdditionalBusiness = Field(default_factory=AdditionalBusiness)


class BusinessLocation(_Section):
    proposed_location: str = ""
    address: LocationAddress = Field(default_factory=LocationAddress)
    landmark: str = ""
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)

    @model_validator(mode="after")
    def _coordinates_paired(self) -> "BusinessLocation":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must be provided together")
        return self


class BusinessPackages(_Section):
    plan: BusinessPlan | None = None
    enterprise_package: EnterprisePackage | None = None


class RequirementFiles(_Section):
    valid_id_front: FileReference | None = None
    valid_id_back: FileReference | None = None
    selfie_with_id: FileReference | None = None
    proof_of_address: FileReference | None = None
    business_permit: FileReference | None = None


class Requirements(_Section):
    certification: bool = False
    terms_and_conditions: bool = False
    signature: str = ""
    documents: tuple[str, ...] = ()
    files: RequirementFiles = Field(default_factory=RequirementFiles)
    terms_agree: bool = False
    data_privacy: bool = False
    info_accuracy: bool = False


class Assessment(_Section):
    assessor_name: str = ""
    assessment_date: str = ""
    assessment_result: str = ""
    assessor_signature: str = ""
    remarks: str = ""
    account_name: str = ""


class SystemActivation(_Section):
    account_number: str = ""
    account_type: str = ""
    activation_date: str = ""
    agent: str = ""


class ApplicationDraftData(_Section):
    """Complete field bag of one in-progress application, grouped by wizard section."""

    personal: PersonalInfo = Field(default_factory=PersonalInfo)
    experience: BusinessExperience = Field(default_factory=BusinessExperience)
    location: BusinessLocation = Field(default_factory=BusinessLocation)
    packages: BusinessPackages = Field(default_factory=BusinessPackages)
    requirements: Requirements = Field(default_factory=Requirements)
    assessment: Assessment = Field(default_factory=Assessment)
    activation: SystemActivation = Field(default_factory=SystemActivation)

    @property
    def email(self) -> str:
        return self.personal.email

    @property
    def full_name(self) -> str:
        parts = [self.personal.first_name, self.personal.middle_name, self.personal.last_name]
        return " ".join(part.strip() for part in parts if part and part.strip())

    @classmethod
    def for_applicant(cls, email: str, display_name: str | None = None) -> "ApplicationDraftData":
        """Defaults for a fresh draft, with identity fields prefilled."""
        first_name, last_name = _split_display_name(display_name)
        return cls(
            personal=PersonalInfo(email=email, first_name=first_name, last_name=last_name)
        )


def _split_display_name(display_name: str | None) -> tuple[str, str]:
    if not display_name or not display_name.strip():
        return "", ""
    parts = display_name.strip().split()
    if len(parts) == 1:
        return parts[0], ""
    return " ".join(parts[:-1]), parts[-1]


def normalize_email(email: str | None) -> str:
    cleaned = (email or "").strip().lower()
    if not cleaned:
        raise ValueError("Applicant email must be non-empty")
    return cleaned
