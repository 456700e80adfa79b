# tests/test_wizard.py

from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError as PydanticValidationError

from onboarding.address import PlaceAddress
from onboarding.backend import BackendResponse, UsernameAvailability
from onboarding.errors import (
    BackendUnavailableError,
    DuplicateAccountError,
    ErrorCategory,
    FatalSubmissionError,
    ValidationError,
)
from onboarding.reducer import CHECKING_MESSAGE, SubmissionStarted, UpdateField, reduce
from onboarding.state import Origin, Phase, SocialSeed, StepId, UniquenessState, WizardState
from onboarding.wizard import ADDRESS_LOOKUP_UNAVAILABLE, WizardController


def _wizard(backend, settings, validator, **kwargs):
    return WizardController(backend, settings=settings, validator=validator, **kwargs)


async def _fill(wizard, record):
    skip = {"origin", "phone_e164", "full_name", *wizard.state.read_only_fields}
    for key, value in record.model_dump(exclude=skip).items():
        if value is not None:
            wizard.update_field(key, value)
    await wizard.checker.drain()


async def _fill_to_last_step(wizard, record):
    await _fill(wizard, record)
    while not wizard.state.is_last_step:
        before = wizard.state.step_index
        wizard.next()
        assert wizard.state.step_index == before + 1, wizard.state.step_errors


@pytest.mark.asyncio
async def test_next_blocked_until_step_valid(backend, settings, validator):
    wizard = _wizard(backend, settings, validator)

    state = wizard.next()
    assert state.current_step is StepId.IDENTITY
    assert {"given_name", "family_name", "username"} <= set(state.errors_by_field())

    wizard.update_field("givenName", "Jane")
    state = wizard.state
    assert "given_name" not in state.errors_by_field()


@pytest.mark.asyncio
async def test_pending_username_check_blocks_identity_step(backend, settings, validator):
    wizard = _wizard(backend, settings, validator)
    wizard.update_field("given_name", "Jane")
    wizard.update_field("family_name", "Doe")
    wizard.update_field("username", "janedoe")

    assert wizard.state.username_check.state is UniquenessState.CHECKING
    assert not wizard.can_advance()
    state = wizard.next()
    assert state.step_index == 0
    assert state.errors_by_field() == {"username": CHECKING_MESSAGE}

    await wizard.checker.drain()
    assert wizard.state.username_check.state is UniquenessState.AVAILABLE
    assert wizard.next().current_step is StepId.PERSONAL
    backend.check_username_availability.assert_awaited_once_with("janedoe")


@pytest.mark.asyncio
async def test_taken_username_blocks_until_edited(backend, settings, validator):
    backend.check_username_availability = AsyncMock(
        side_effect=lambda c: UsernameAvailability(exists=c == "janedoe")
    )
    wizard = _wizard(backend, settings, validator)
    wizard.update_field("given_name", "Jane")
    wizard.update_field("family_name", "Doe")
    wizard.update_field("username", "janedoe")
    await wizard.checker.drain()

    assert wizard.state.username_check.state is UniquenessState.TAKEN
    assert wizard.next().step_index == 0

    wizard.update_field("username", "janedoe2")
    await wizard.checker.drain()
    assert wizard.state.username_check.state is UniquenessState.AVAILABLE
    assert wizard.next().current_step is StepId.PERSONAL


@pytest.mark.asyncio
async def test_back_navigation_preserves_record(backend, settings, validator, complete_record):
    wizard = _wizard(backend, settings, validator)
    await _fill(wizard, complete_record)
    before = wizard.state.record

    wizard.next()
    wizard.next()
    assert wizard.state.current_step is StepId.CREDENTIALS
    wizard.back()
    state = wizard.back()

    assert state.step_index == 0
    assert state.record == before
    assert state.record.model_dump() == before.model_dump()


@pytest.mark.asyncio
async def test_jump_only_goes_backwards(backend, settings, validator, complete_record):
    wizard = _wizard(backend, settings, validator)
    await _fill(wizard, complete_record)

    assert wizard.jump(StepId.PHONE).current_step is StepId.IDENTITY
    wizard.next()
    wizard.next()
    assert wizard.jump(StepId.IDENTITY).current_step is StepId.IDENTITY


@pytest.mark.asyncio
async def test_social_seed_prefills_and_locks_email(backend, settings, validator):
    seed = SocialSeed(name="Jane Doe", email="jane.doe@gmail.com")
    wizard = _wizard(backend, settings, validator, origin=Origin.GOOGLE, seed=seed)

    state = wizard.state
    assert state.steps == (StepId.IDENTITY, StepId.PERSONAL, StepId.ADDRESS, StepId.PHONE)
    assert state.record.given_name == "Jane"
    assert state.record.family_name == "Doe"
    assert "email" in state.read_only_fields

    wizard.update_field("email", "someone.else@gmail.com")
    assert wizard.state.record.email == "jane.doe@gmail.com"


@pytest.mark.asyncio
async def test_unverified_social_email_stays_editable(backend, settings, validator):
    seed = SocialSeed(email="jane.doe@gmail.com", email_verified=False)
    wizard = _wizard(backend, settings, validator, origin=Origin.APPLE, seed=seed)

    wizard.update_field("email", "jane@gmail.com")
    assert wizard.state.record.email == "jane@gmail.com"


def test_phone_edit_clears_normalized_phone(validator, complete_record):
    state = WizardState(record=complete_record.model_copy(update={"phone_e164": "+447912345678"}))

    state = reduce(state, UpdateField(key="phoneNational", value="07700 900123"), validator)

    assert state.record.phone_national == "07700 900123"
    assert state.record.phone_e164 is None


@pytest.mark.parametrize("key", ["phone_e164", "phoneE164", "full_name", "fullName", "origin"])
def test_derived_fields_cannot_be_edited(validator, complete_record, key):
    state = WizardState(record=complete_record)

    assert reduce(state, UpdateField(key=key, value="garbage"), validator) is state


def test_actions_are_immutable():
    action = UpdateField(key="givenName", value="Jane")

    with pytest.raises(PydanticValidationError):
        action.value = "Janet"


def test_edits_are_refused_while_submitting(validator, complete_record):
    state = reduce(WizardState(record=complete_record), SubmissionStarted(), validator)
    assert state.phase is Phase.SUBMITTING

    assert reduce(state, UpdateField(key="givenName", value="Janet"), validator) is state


@pytest.mark.asyncio
async def test_submit_success(backend, settings, validator, complete_record):
    wizard = _wizard(backend, settings, validator)
    seen = []
    wizard.subscribe(seen.append)
    await _fill_to_last_step(wizard, complete_record)

    result = await wizard.submit()

    assert result.ok
    assert result.account.phone_e164 == "+447912345678"
    assert result.account.user_sub == "sub-123"
    body = backend.register_account.call_args.args[0]
    assert body["phone_number"] == "+447912345678"
    assert body["birthdate"] == "1990-03-07"
    assert body["name"] == "Jane Doe"
    assert "@" not in body["username"]

    state = wizard.state
    assert state.phase is Phase.SUBMITTED
    assert state.record.phone_e164 == "+447912345678"
    assert state.record.full_name == "Jane Doe"
    assert Phase.SUBMITTING in [s.phase for s in seen]

    wizard.update_field("city", "Leeds")
    assert wizard.state.record.city == "London"


@pytest.mark.asyncio
async def test_duplicate_username_keeps_record_for_retry(backend, settings, validator, complete_record):
    backend.register_account = AsyncMock(
        return_value=BackendResponse(success=False, status=400, error_code="UsernameExistsException")
    )
    wizard = _wizard(backend, settings, validator)
    await _fill_to_last_step(wizard, complete_record)
    before = wizard.state.record

    result = await wizard.submit()

    assert isinstance(result.error, DuplicateAccountError)
    assert result.error.field == "username"
    state = wizard.state
    assert state.phase is Phase.EDITING
    assert state.record == before
    assert state.submission_error.category is ErrorCategory.DUPLICATE_USERNAME
    assert "username" in state.errors_by_field()

    backend.register_account = AsyncMock(
        return_value=BackendResponse(success=True, status=200, user_sub="sub-456")
    )
    assert (await wizard.submit()).ok
    assert wizard.state.phase is Phase.SUBMITTED


@pytest.mark.asyncio
async def test_network_failure_is_reported_not_raised(backend, settings, validator, complete_record):
    backend.register_account = AsyncMock(side_effect=BackendUnavailableError("connection refused"))
    wizard = _wizard(backend, settings, validator)
    await _fill_to_last_step(wizard, complete_record)

    result = await wizard.submit()

    assert isinstance(result.error, FatalSubmissionError)
    assert result.error.category is ErrorCategory.NETWORK
    assert wizard.state.phase is Phase.EDITING


@pytest.mark.asyncio
async def test_submit_before_last_step_is_refused(backend, settings, validator, complete_record):
    wizard = _wizard(backend, settings, validator)
    await _fill(wizard, complete_record)

    result = await wizard.submit()

    assert isinstance(result.error, ValidationError)
    backend.register_account.assert_not_awaited()


@pytest.mark.asyncio
async def test_invalid_phone_on_last_step_is_not_submitted(backend, settings, validator, complete_record):
    wizard = _wizard(backend, settings, validator)
    await _fill_to_last_step(wizard, complete_record)
    wizard.update_field("phone_national", "0207 123 4567")

    result = await wizard.submit()

    assert isinstance(result.error, ValidationError)
    assert "phone_national" in wizard.state.errors_by_field()
    backend.register_account.assert_not_awaited()


@pytest.mark.asyncio
async def test_social_submit_completes_profile(backend, settings, validator, complete_record):
    seed = SocialSeed(name="Jane Doe", email="jane.doe@gmail.com")
    wizard = _wizard(backend, settings, validator, origin=Origin.GOOGLE, seed=seed)
    await _fill_to_last_step(wizard, complete_record)

    result = await wizard.submit()

    assert result.ok
    assert not result.account.confirmation_required
    backend.register_account.assert_not_awaited()
    body = backend.complete_profile.call_args.args[0]
    assert body["firstName"] == "Jane"
    assert body["phone"] == "+447912345678"


@pytest.mark.asyncio
async def test_address_lookup_without_places_client(backend, settings, validator):
    wizard = _wizard(backend, settings, validator)

    assert await wizard.search_addresses("10 Downing") == []
    assert wizard.state.address_lookup_error == ADDRESS_LOOKUP_UNAVAILABLE


@pytest.mark.asyncio
async def test_address_lookup_failure_keeps_manual_entry(backend, settings, validator):
    places = AsyncMock()
    places.place_details = AsyncMock(side_effect=BackendUnavailableError("denied"))
    wizard = _wizard(backend, settings, validator, places=places)
    wizard.update_field("city", "London")

    state = await wizard.lookup_address("abc")

    assert state.address_lookup_error == ADDRESS_LOOKUP_UNAVAILABLE
    assert state.record.city == "London"


@pytest.mark.asyncio
async def test_address_lookup_fills_fields(backend, settings, validator):
    places = AsyncMock()
    places.place_details = AsyncMock(
        return_value=PlaceAddress(
            street_number="10",
            route="Downing Street",
            locality="London",
            administrative_area_level_1="England",
            postal_code="SW1A 2AA",
            country_code="gb",
        )
    )
    wizard = _wizard(backend, settings, validator, places=places)

    record = (await wizard.lookup_address("abc")).record

    assert record.address_line1 == "10 Downing Street"
    assert record.city == "London"
    assert record.state_or_province == "England"
    assert record.country_code == "GB"
    assert wizard.state.address_lookup_error is None
