from datetime import date
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from onboarding.errors import (
    DuplicateAccountError,
    ErrorCategory,
    FatalSubmissionError,
    FieldError,
    PolicyRejectionError,
    SubmissionError,
    ValidationError,
)


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"
    UNSPECIFIED = "unspecified"


class Origin(str, Enum):
    MANUAL = "manual"
    APPLE = "social:apple"
    GOOGLE = "social:google"

    @property
    def is_social(self) -> bool:
        return self is not Origin.MANUAL


class StepId(str, Enum):
    IDENTITY = "identity"
    PERSONAL = "personal"
    CREDENTIALS = "credentials"
    ADDRESS = "address"
    PHONE = "phone"


class Phase(str, Enum):
    EDITING = "editing"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"


MANUAL_FLOW: Tuple[StepId, ...] = (
    StepId.IDENTITY,
    StepId.PERSONAL,
    StepId.CREDENTIALS,
    StepId.ADDRESS,
    StepId.PHONE,
)

SOCIAL_FLOW: Tuple[StepId, ...] = (
    StepId.IDENTITY,
    StepId.PERSONAL,
    StepId.ADDRESS,
    StepId.PHONE,
)


def flow_for(origin: Origin) -> Tuple[StepId, ...]:
    return SOCIAL_FLOW if origin.is_social else MANUAL_FLOW


class RegistrationRecord(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    given_name: Optional[str] = Field(default=None, description="First name")
    family_name: Optional[str] = Field(default=None, description="Last name")
    full_name: Optional[str] = Field(default=None, description="Display name, derived at submission")
    username: Optional[str] = Field(default=None, description="Unique handle, never contains '@'")

    email: Optional[str] = Field(default=None, description="Login email")
    password: Optional[str] = None
    confirm_password: Optional[str] = None

    date_of_birth: Optional[Union[str, date]] = Field(default=None, description="Calendar date as entered")
    gender: Optional[Gender] = None

    phone_country: str = Field(default="GB", description="ISO-3166 alpha-2 country of the phone number")
    phone_national: Optional[str] = Field(default=None, description="Phone digits as typed")
    phone_e164: Optional[str] = Field(default=None, description="Normalized phone, set after normalization")

    address_line1: Optional[str] = None
    address_line2: Optional[str] = None
    city: Optional[str] = None
    state_or_province: Optional[str] = None
    postal_code: Optional[str] = None
    country_code: Optional[str] = None

    origin: Origin = Origin.MANUAL

    @classmethod
    def field_for_key(cls, key: str) -> Optional[str]:
        """Resolve a snake_case name or camelCase alias to the model field name."""
        if key in cls.model_fields:
            return key
        for name, info in cls.model_fields.items():
            if info.alias == key:
                return name
        return None


class SocialSeed(BaseModel):
    """Pre-fill data handed over by a social sign-in provider. Every field is optional."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: Optional[str] = None
    email: Optional[str] = None
    given_name: Optional[str] = None
    family_name: Optional[str] = None
    email_verified: bool = True


class UniquenessState(str, Enum):
    IDLE = "idle"
    CHECKING = "checking"
    AVAILABLE = "available"
    TAKEN = "taken"
    ERROR = "error"


class UniquenessCheckResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    candidate: str = ""
    state: UniquenessState = UniquenessState.IDLE
    message: Optional[str] = None

    @property
    def blocks_advance(self) -> bool:
        return self.state in (UniquenessState.CHECKING, UniquenessState.TAKEN)


class SubmittedAccount(BaseModel):
    username: str
    email: Optional[str] = None
    phone_e164: str
    user_sub: Optional[str] = None
    confirmation_required: bool = True


class SubmissionFailure(BaseModel):
    """Serializable form of a submission error, kept on graph and wizard state."""

    category: ErrorCategory
    message: str
    field: Optional[str] = None
    error_code: Optional[str] = None
    field_errors: List[FieldError] = Field(default_factory=list)

    @classmethod
    def from_exception(cls, exc: Exception) -> "SubmissionFailure":
        if isinstance(exc, ValidationError):
            return cls(
                category=exc.category,
                message=exc.message,
                field_errors=exc.errors,
            )
        if isinstance(exc, SubmissionError):
            return cls(
                category=exc.category,
                message=exc.message,
                field=exc.field,
                error_code=exc.error_code,
            )
        return cls(category=ErrorCategory.UNKNOWN, message=str(exc))

    def to_exception(self) -> Exception:
        if self.category is ErrorCategory.VALIDATION:
            return ValidationError(self.field_errors)
        kwargs = dict(category=self.category, field=self.field, error_code=self.error_code)
        if self.category in (
            ErrorCategory.DUPLICATE_USERNAME,
            ErrorCategory.DUPLICATE_EMAIL,
            ErrorCategory.DUPLICATE_PHONE,
        ):
            return DuplicateAccountError(self.message, **kwargs)
        if self.category in (
            ErrorCategory.INVALID_PHONE,
            ErrorCategory.INVALID_PASSWORD,
            ErrorCategory.PARAMETER_INVALID,
        ):
            return PolicyRejectionError(self.message, **kwargs)
        return FatalSubmissionError(self.message, **kwargs)


class WizardState(BaseModel):
    model_config = ConfigDict(frozen=True)

    record: RegistrationRecord = Field(default_factory=RegistrationRecord)
    step_index: int = 0
    phase: Phase = Phase.EDITING
    read_only_fields: Tuple[str, ...] = ()

    username_check: UniquenessCheckResult = Field(default_factory=UniquenessCheckResult)
    step_errors: List[FieldError] = Field(default_factory=list)
    submission_error: Optional[SubmissionFailure] = None
    address_lookup_error: Optional[str] = None
    account: Optional[SubmittedAccount] = None

    @property
    def steps(self) -> Tuple[StepId, ...]:
        return flow_for(self.record.origin)

    @property
    def current_step(self) -> StepId:
        return self.steps[self.step_index]

    @property
    def is_last_step(self) -> bool:
        return self.step_index == len(self.steps) - 1

    def errors_by_field(self) -> Dict[str, str]:
        return {e.field: e.message for e in self.step_errors}
