"""
Error taxonomy for the onboarding workflow.

Local errors (``FormatError``, ``ValidationError``) are raised synchronously by
the normalizers and validators. Remote errors describe how the identity
backend answered a lookup or a submission. None of them is allowed to escape
the wizard: the controller and the submission coordinator turn them into
state the presentation layer can render.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel


class ErrorCategory(str, Enum):
    FORMAT = "format"
    VALIDATION = "validation"
    AVAILABILITY = "availability"
    DUPLICATE_USERNAME = "duplicate_username"
    DUPLICATE_EMAIL = "duplicate_email"
    DUPLICATE_PHONE = "duplicate_phone"
    INVALID_PHONE = "invalid_phone"
    INVALID_PASSWORD = "invalid_password"
    PARAMETER_INVALID = "parameter_invalid"
    NETWORK = "network"
    UNKNOWN = "unknown"


class FieldError(BaseModel):
    field: str
    message: str


class OnboardingError(Exception):
    """Base class for every error the onboarding core produces."""

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def __str__(self) -> str:
        return self.message


class FormatError(OnboardingError):
    """A value could not be converted to its canonical wire form."""

    category = ErrorCategory.FORMAT


class ValidationError(OnboardingError):
    """Required fields are missing or cross-field constraints fail."""

    category = ErrorCategory.VALIDATION

    def __init__(self, errors: List[FieldError]) -> None:
        fields = ", ".join(e.field for e in errors) or "record"
        super().__init__(f"Please correct the following fields: {fields}")
        self.errors = list(errors)


class AvailabilityCheckError(OnboardingError):
    """The username lookup itself failed (network, timeout, server error)."""

    category = ErrorCategory.AVAILABILITY


class BackendUnavailableError(OnboardingError):
    """Transport-level failure talking to a remote collaborator."""

    category = ErrorCategory.NETWORK


class SubmissionError(OnboardingError):
    """Base for errors reported by the registration operation."""

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory,
        field: Optional[str] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message, field=field)
        self.category = category
        self.error_code = error_code


class DuplicateAccountError(SubmissionError):
    """Username, email or phone number is already registered."""


class PolicyRejectionError(SubmissionError):
    """Backend rejected a value that passed local validation."""


class FatalSubmissionError(SubmissionError):
    """Unexpected backend response or transport failure."""


_EXISTS_WORDS = ("exist", "already", "taken", "in use", "registered")
_INVALID_WORDS = ("invalid", "format", "malformed")
_POLICY_WORDS = ("policy", "conform", "invalid", "constraint", "too short", "weak")


def _mentions(text: str, words) -> bool:
    return any(w in text for w in words)


def classify_backend_failure(
    error_code: Optional[str],
    message: Optional[str],
    status: Optional[int] = None,
) -> SubmissionError:
    """
    Map an unstructured identity-provider rejection onto the error taxonomy.

    Checks run from the most specific to the least specific category, so a
    message that mentions both a username and a password conflict is
    reported as a duplicate username.
    """
    code = error_code or ""
    detail = (message or "").strip()
    text = f"{code} {detail}".lower()

    if code == "UsernameExistsException" or ("username" in text and _mentions(text, _EXISTS_WORDS)):
        return DuplicateAccountError(
            "That username is already taken. Please choose a different username.",
            category=ErrorCategory.DUPLICATE_USERNAME,
            field="username",
            error_code=code or None,
        )
    if "email" in text and (code == "AliasExistsException" or _mentions(text, _EXISTS_WORDS)):
        return DuplicateAccountError(
            "An account with this email already exists. Try signing in instead.",
            category=ErrorCategory.DUPLICATE_EMAIL,
            field="email",
            error_code=code or None,
        )
    if "phone" in text and (code == "AliasExistsException" or _mentions(text, _EXISTS_WORDS)):
        return DuplicateAccountError(
            "This phone number is already registered to another account.",
            category=ErrorCategory.DUPLICATE_PHONE,
            field="phone_national",
            error_code=code or None,
        )
    if "phone" in text and _mentions(text, _INVALID_WORDS):
        return PolicyRejectionError(
            "The phone number was rejected. Please check the number and country code."
            + (f" ({detail})" if detail else ""),
            category=ErrorCategory.INVALID_PHONE,
            field="phone_national",
            error_code=code or None,
        )
    if code == "InvalidPasswordException" or ("password" in text and _mentions(text, _POLICY_WORDS)):
        return PolicyRejectionError(
            "The password does not meet the account requirements."
            + (f" ({detail})" if detail else ""),
            category=ErrorCategory.INVALID_PASSWORD,
            field="password",
            error_code=code or None,
        )
    if code == "InvalidParameterException" or status == 400 or "invalid" in text:
        return PolicyRejectionError(
            "Some of the details were rejected. Please review them and try again."
            + (f" ({detail})" if detail else ""),
            category=ErrorCategory.PARAMETER_INVALID,
            error_code=code or None,
        )
    return FatalSubmissionError(
        "Registration failed. Please try again.",
        category=ErrorCategory.UNKNOWN,
        error_code=code or None,
    )
