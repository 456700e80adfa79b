"""Shared fixtures for the onboarding tests."""

import os
from datetime import date
from unittest.mock import AsyncMock

# base64 of a 32-byte test key
os.environ.setdefault("ENCRYPTION_KEY", "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY=")

import pytest

from config.onboarding import OnboardingSettings
from onboarding.backend import BackendResponse, UsernameAvailability
from onboarding.state import Gender, RegistrationRecord
from onboarding.validator import StepValidator

TODAY = date(2026, 1, 1)


@pytest.fixture
def backend():
    """Identity backend double: every username is free, every submission succeeds."""
    mock = AsyncMock()
    mock.check_username_availability = AsyncMock(return_value=UsernameAvailability(exists=False))
    mock.register_account = AsyncMock(
        return_value=BackendResponse(success=True, status=200, user_sub="sub-123")
    )
    mock.complete_profile = AsyncMock(return_value=BackendResponse(success=True, status=200))
    return mock


@pytest.fixture
def validator():
    return StepValidator(today=lambda: TODAY)


@pytest.fixture
def settings():
    return OnboardingSettings(username_check_debounce_ms=10, username_check_timeout_s=1.0)


@pytest.fixture
def complete_record():
    return RegistrationRecord(
        given_name="Jane",
        family_name="Doe",
        username="janedoe",
        email="jane.doe@gmail.com",
        password="Passw0rd!",
        confirm_password="Passw0rd!",
        date_of_birth="1990-03-07",
        gender=Gender.FEMALE,
        phone_country="GB",
        phone_national="07912 345678",
        address_line1="10 Downing Street",
        city="London",
        postal_code="SW1A 2AA",
        country_code="GB",
    )
