from typing import Dict, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from onboarding.normalizer import CALENDAR_DATE_PATTERN, E164_PATTERN


class RegistrationPayload(BaseModel):
    """Consolidated body sent to the identity provider."""

    username: str
    name: str
    given_name: str
    family_name: str
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(default=None, repr=False)
    phone_number: str
    birthdate: str
    address: str
    gender: str

    city: Optional[str] = None
    postcode: Optional[str] = None

    @field_validator("username")
    @classmethod
    def _username_not_email(cls, v: str) -> str:
        if "@" in v:
            raise ValueError("username must not contain '@'")
        return v

    @field_validator("phone_number")
    @classmethod
    def _phone_is_e164(cls, v: str) -> str:
        if not E164_PATTERN.match(v):
            raise ValueError("phone_number must be E.164")
        return v

    @field_validator("birthdate")
    @classmethod
    def _birthdate_fixed_width(cls, v: str) -> str:
        if len(v) != 10 or not CALENDAR_DATE_PATTERN.match(v):
            raise ValueError("birthdate must be YYYY-MM-DD")
        return v

    def to_register_body(self) -> Dict[str, str]:
        body = self.model_dump(exclude={"city", "postcode"})
        return {k: (str(v) if v is not None else "") for k, v in body.items()}

    def to_profile_body(self) -> Dict[str, str]:
        body = {
            "username": self.username,
            "firstName": self.given_name,
            "lastName": self.family_name,
            "email": str(self.email) if self.email else None,
            "phone": self.phone_number,
            "address": self.address,
            "city": self.city,
            "postcode": self.postcode,
            "birthdate": self.birthdate,
            "gender": self.gender,
        }
        return {k: v for k, v in body.items() if v is not None}
