import re
from datetime import date, datetime
from typing import Union

from onboarding.errors import FormatError
from onboarding.phone import CountryPhoneProfile

E164_PATTERN = re.compile(r"^\+[1-9]\d{1,14}$")
CALENDAR_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ].*)?$")
_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")


def is_e164(value: str) -> bool:
    return bool(value) and bool(E164_PATTERN.match(value))


def parse_calendar_date(raw: Union[str, date]) -> date:
    """Return the calendar date described by ``raw`` (ISO or MM/DD/YYYY)."""
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw

    text = (raw or "").strip()
    if not text:
        raise FormatError("Date of birth is required", field="date_of_birth")

    iso = _ISO_DATE.match(text)
    us = _US_DATE.match(text)
    if iso:
        year, month, day = (int(p) for p in iso.groups())
    elif us:
        month, day, year = (int(p) for p in us.groups())
    else:
        raise FormatError(
            "Invalid date format. Use YYYY-MM-DD or MM/DD/YYYY.", field="date_of_birth"
        )

    try:
        return date(year, month, day)
    except ValueError:
        raise FormatError(f"{text} is not a valid calendar date", field="date_of_birth") from None


def normalize_date(raw: Union[str, date]) -> str:
    value = parse_calendar_date(raw)
    out = f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
    if len(out) != 10 or not CALENDAR_DATE_PATTERN.match(out):
        raise FormatError(
            "Invalid date format. Please select your date of birth again.", field="date_of_birth"
        )
    return out


def normalize_phone(raw: str, country: CountryPhoneProfile) -> str:
    digits = re.sub(r"\D", "", raw or "")
    if not digits:
        raise FormatError("Phone number is required", field="phone_national")

    national = digits.lstrip("0")

    if country.validator is not None:
        if not country.validator(national):
            raise FormatError(
                f"Invalid phone number format for {country.label}. Example: {country.example}",
                field="phone_national",
            )
    elif not country.accepts_length(national):
        raise FormatError(
            f"Invalid phone number length. Expected {country.describe_lengths()} digits "
            f"for {country.label}. Example: {country.example}",
            field="phone_national",
        )

    formatted = f"{country.calling_code}{national}"
    if not is_e164(formatted):
        raise FormatError(
            f"Invalid phone number format. Must be in E.164 format "
            f"(e.g. {country.calling_code}1234567890)",
            field="phone_national",
        )
    return formatted
