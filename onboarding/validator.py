from datetime import date
from typing import Callable, Collection, Dict, List, Optional

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from onboarding.errors import FieldError, FormatError
from onboarding.normalizer import normalize_phone, parse_calendar_date
from onboarding.phone import PhoneRegistry, default_registry
from onboarding.state import (
    RegistrationRecord,
    StepId,
    UniquenessCheckResult,
    flow_for,
)

_EMAIL = TypeAdapter(EmailStr)
PASSWORD_SYMBOLS = "!@#$%^&*()_+-=[]{};':\"\\|,.<>/?"
PASSWORD_MIN_LENGTH = 8


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def is_valid_email(value: Optional[str]) -> bool:
    if not value:
        return False
    try:
        _EMAIL.validate_python(value)
    except PydanticValidationError:
        return False
    return True


def password_policy_errors(password: Optional[str]) -> List[str]:
    """All four character classes are mandatory, on top of the minimum length."""
    password = password or ""
    problems: List[str] = []
    if len(password) < PASSWORD_MIN_LENGTH:
        problems.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    if not any(c.isupper() for c in password):
        problems.append("Password must contain an uppercase letter")
    if not any(c.islower() for c in password):
        problems.append("Password must contain a lowercase letter")
    if not any(c.isdigit() for c in password):
        problems.append("Password must contain a number")
    if not any(c in PASSWORD_SYMBOLS for c in password):
        problems.append("Password must contain a symbol")
    return problems


def age_on(born: date, today: date) -> int:
    return today.year - born.year - ((today.month, today.day) < (born.month, born.day))


class StepValidator:
    def __init__(
        self,
        registry: Optional[PhoneRegistry] = None,
        *,
        min_age: int = 13,
        max_age: int = 120,
        today: Callable[[], date] = date.today,
    ):
        self.registry = registry or default_registry()
        self.min_age = min_age
        self.max_age = max_age
        self.today = today

        self._checks: Dict[StepId, Callable[[RegistrationRecord], List[FieldError]]] = {
            StepId.IDENTITY: self._identity_errors,
            StepId.PERSONAL: self._personal_errors,
            StepId.CREDENTIALS: self._credentials_errors,
            StepId.ADDRESS: self._address_errors,
            StepId.PHONE: self._phone_errors,
        }

    def errors_for(
        self,
        step: StepId,
        record: RegistrationRecord,
        read_only: Collection[str] = (),
    ) -> List[FieldError]:
        errors = self._checks[step](record)
        return [e for e in errors if e.field not in read_only]

    def can_advance(
        self,
        step: StepId,
        record: RegistrationRecord,
        username_check: Optional[UniquenessCheckResult] = None,
        read_only: Collection[str] = (),
    ) -> bool:
        if self.errors_for(step, record, read_only):
            return False
        if step is StepId.IDENTITY and username_check is not None:
            if username_check.candidate == (record.username or "") and username_check.blocks_advance:
                return False
        return True

    def errors_for_all(
        self,
        record: RegistrationRecord,
        read_only: Collection[str] = (),
    ) -> List[FieldError]:
        errors: List[FieldError] = []
        for step in flow_for(record.origin):
            errors.extend(self.errors_for(step, record, read_only))
        return errors

    def normalized_phone(self, record: RegistrationRecord) -> str:
        profile = self.registry.get(record.phone_country)
        if profile is None:
            raise FormatError(
                f"Phone numbers for {record.phone_country or 'this country'} are not supported",
                field="phone_country",
            )
        return normalize_phone(record.phone_national or "", profile)

    def _identity_errors(self, record: RegistrationRecord) -> List[FieldError]:
        errors: List[FieldError] = []
        if _blank(record.given_name):
            errors.append(FieldError(field="given_name", message="First name is required"))
        if _blank(record.family_name):
            errors.append(FieldError(field="family_name", message="Last name is required"))
        if _blank(record.username):
            errors.append(FieldError(field="username", message="Username is required"))
        elif "@" in record.username:
            errors.append(
                FieldError(
                    field="username",
                    message="Username cannot be an email address. Please choose a unique username.",
                )
            )
        # social flows have no credentials step, so an editable email is checked here
        if record.origin.is_social and not is_valid_email(record.email):
            errors.append(FieldError(field="email", message="Please enter a valid email address"))
        return errors

    def _personal_errors(self, record: RegistrationRecord) -> List[FieldError]:
        errors: List[FieldError] = []
        if record.gender is None:
            errors.append(FieldError(field="gender", message="Please select a gender"))

        if _blank(record.date_of_birth):
            errors.append(FieldError(field="date_of_birth", message="Date of birth is required"))
            return errors

        try:
            born = parse_calendar_date(record.date_of_birth)
        except FormatError as exc:
            errors.append(FieldError(field="date_of_birth", message=exc.message))
            return errors

        age = age_on(born, self.today())
        if age < self.min_age:
            errors.append(
                FieldError(
                    field="date_of_birth",
                    message=f"You must be at least {self.min_age} years old",
                )
            )
        elif age > self.max_age:
            errors.append(FieldError(field="date_of_birth", message="Please enter a valid date of birth"))
        return errors

    def _credentials_errors(self, record: RegistrationRecord) -> List[FieldError]:
        errors: List[FieldError] = []
        if not is_valid_email(record.email):
            errors.append(FieldError(field="email", message="Please enter a valid email address"))

        if record.password != record.confirm_password:
            errors.append(FieldError(field="confirm_password", message="Passwords do not match"))

        for problem in password_policy_errors(record.password):
            errors.append(FieldError(field="password", message=problem))
        return errors

    def _address_errors(self, record: RegistrationRecord) -> List[FieldError]:
        errors: List[FieldError] = []
        if _blank(record.address_line1):
            errors.append(FieldError(field="address_line1", message="Address is required"))
        if _blank(record.city):
            errors.append(FieldError(field="city", message="City is required"))
        if _blank(record.country_code):
            errors.append(FieldError(field="country_code", message="Country is required"))
        return errors

    def _phone_errors(self, record: RegistrationRecord) -> List[FieldError]:
        try:
            self.normalized_phone(record)
        except FormatError as exc:
            return [FieldError(field=exc.field or "phone_national", message=exc.message)]
        return []
