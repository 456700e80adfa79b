import re
from typing import Callable, Dict, Iterator, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator

NationalNumberValidator = Callable[[str], bool]

_UK_MOBILE = re.compile(r"^7\d{9}$")


def uk_mobile(number: str) -> bool:
    return bool(_UK_MOBILE.match(number.lstrip("0")))


class CountryPhoneProfile(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    country: str
    label: str
    calling_code: str
    expected_lengths: Tuple[int, ...]
    example: str
    validator: Optional[NationalNumberValidator] = None

    @field_validator("calling_code")
    @classmethod
    def _calling_code_shape(cls, v: str) -> str:
        if not re.fullmatch(r"\+[1-9]\d{0,2}", v):
            raise ValueError("calling code must look like +<1-3 digits>")
        return v

    @field_validator("expected_lengths", mode="before")
    @classmethod
    def _lengths_as_tuple(cls, v):
        if isinstance(v, int):
            return (v,)
        return tuple(v)

    def accepts_length(self, digits: str) -> bool:
        return len(digits) in self.expected_lengths

    def describe_lengths(self) -> str:
        return " or ".join(str(n) for n in self.expected_lengths)


class PhoneRegistry:
    def __init__(self, profiles=()):
        self._profiles: Dict[str, CountryPhoneProfile] = {}
        for profile in profiles:
            self.register(profile)

    def register(self, profile: CountryPhoneProfile) -> None:
        self._profiles[profile.country.upper()] = profile

    def get(self, country: str) -> Optional[CountryPhoneProfile]:
        return self._profiles.get((country or "").upper())

    def __contains__(self, country: str) -> bool:
        return self.get(country) is not None

    def __iter__(self) -> Iterator[CountryPhoneProfile]:
        return iter(self._profiles.values())

    def __len__(self) -> int:
        return len(self._profiles)


DEFAULT_PROFILES = (
    CountryPhoneProfile(
        country="GB",
        label="United Kingdom",
        calling_code="+44",
        expected_lengths=10,
        example="07912 345678",
        validator=uk_mobile,
    ),
    CountryPhoneProfile(
        country="US",
        label="United States",
        calling_code="+1",
        expected_lengths=10,
        example="(555) 123-4567",
    ),
    CountryPhoneProfile(
        country="CA",
        label="Canada",
        calling_code="+1",
        expected_lengths=10,
        example="(555) 123-4567",
    ),
    CountryPhoneProfile(
        country="AU",
        label="Australia",
        calling_code="+61",
        expected_lengths=9,
        example="0412 345 678",
    ),
    CountryPhoneProfile(
        country="DE",
        label="Germany",
        calling_code="+49",
        expected_lengths=(10, 11),
        example="0171 1234567",
    ),
    CountryPhoneProfile(
        country="FR",
        label="France",
        calling_code="+33",
        expected_lengths=9,
        example="06 12 34 56 78",
    ),
    CountryPhoneProfile(
        country="ES",
        label="Spain",
        calling_code="+34",
        expected_lengths=9,
        example="612 34 56 78",
    ),
    CountryPhoneProfile(
        country="IT",
        label="Italy",
        calling_code="+39",
        expected_lengths=(9, 10),
        example="342 123 4567",
    ),
    CountryPhoneProfile(
        country="NL",
        label="Netherlands",
        calling_code="+31",
        expected_lengths=9,
        example="06 12345678",
    ),
    CountryPhoneProfile(
        country="IN",
        label="India",
        calling_code="+91",
        expected_lengths=10,
        example="98765 43210",
    ),
)


def default_registry() -> PhoneRegistry:
    return PhoneRegistry(DEFAULT_PROFILES)
