import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

DEFAULT_ENCRYPT_KEYS = ["record", "overrides", "payload"]


def _csv(value: Optional[str], default: List[str]) -> List[str]:
    if not value:
        return list(default)
    return [part.strip() for part in value.split(",") if part.strip()]


class OnboardingSettings(BaseModel):
    api_base_url: str = Field(default="http://localhost:3000", description="Identity backend root URL")
    places_api_key: Optional[str] = Field(default=None, description="Google Places API key")

    username_check_debounce_ms: int = Field(default=800, ge=0)
    username_check_timeout_s: float = Field(default=8.0, gt=0)
    username_min_length: int = Field(default=3, ge=1)

    min_age: int = 13
    max_age: int = 120

    http_timeout_s: float = Field(default=15.0, gt=0)
    log_level: str = "INFO"

    checkpoint_encrypt_keys: List[str] = Field(default_factory=lambda: list(DEFAULT_ENCRYPT_KEYS))

    @property
    def debounce_seconds(self) -> float:
        return self.username_check_debounce_ms / 1000.0

    @classmethod
    def from_env(cls) -> "OnboardingSettings":
        return cls(
            api_base_url=os.getenv("API_BASE_URL", "http://localhost:3000"),
            places_api_key=os.getenv("GOOGLE_MAPS_API_KEY") or None,
            username_check_debounce_ms=int(os.getenv("USERNAME_CHECK_DEBOUNCE_MS", "800")),
            username_check_timeout_s=float(os.getenv("USERNAME_CHECK_TIMEOUT_S", "8")),
            username_min_length=int(os.getenv("USERNAME_MIN_LENGTH", "3")),
            min_age=int(os.getenv("MIN_AGE", "13")),
            max_age=int(os.getenv("MAX_AGE", "120")),
            http_timeout_s=float(os.getenv("HTTP_TIMEOUT_S", "15")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            checkpoint_encrypt_keys=_csv(os.getenv("CHECKPOINT_ENCRYPT_KEYS"), DEFAULT_ENCRYPT_KEYS),
        )
