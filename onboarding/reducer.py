from typing import Any, Dict, Optional, Union

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from onboarding.address import PlaceAddress, apply_place_address
from onboarding.errors import FieldError, ValidationError
from onboarding.state import (
    Phase,
    RegistrationRecord,
    SocialSeed,
    StepId,
    SubmissionFailure,
    SubmittedAccount,
    UniquenessCheckResult,
    WizardState,
    Origin,
)
from onboarding.validator import StepValidator

PHONE_FIELDS = ("phone_country", "phone_national")
# filled in at submission, never typed by the user
DERIVED_FIELDS = ("origin", "phone_e164", "full_name")
ADDRESS_FIELDS = (
    "address_line1",
    "address_line2",
    "city",
    "state_or_province",
    "postal_code",
    "country_code",
)
CHECKING_MESSAGE = "Checking username availability..."


class _Action(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


class UpdateField(_Action):
    key: str
    value: Any = None


class Next(_Action):
    pass


class Back(_Action):
    pass


class JumpTo(_Action):
    step: StepId


class UsernameChecked(_Action):
    result: UniquenessCheckResult


class SubmissionStarted(_Action):
    pass


class SubmissionFinished(_Action):
    submitted: RegistrationRecord
    error: Optional[Exception] = None
    account: Optional[SubmittedAccount] = None
    overrides: Dict[str, str] = Field(default_factory=dict)


class AddressLookedUp(_Action):
    place: Optional[PlaceAddress] = None
    error: Optional[str] = None


Action = Union[
    UpdateField,
    Next,
    Back,
    JumpTo,
    UsernameChecked,
    SubmissionStarted,
    SubmissionFinished,
    AddressLookedUp,
]


def initial_state(origin: Origin = Origin.MANUAL, seed: Optional[SocialSeed] = None) -> WizardState:
    if seed is None:
        return WizardState(record=RegistrationRecord(origin=origin))

    given, family = seed.given_name, seed.family_name
    if seed.name and not (given or family):
        parts = seed.name.strip().split(maxsplit=1)
        given = parts[0] if parts else None
        family = parts[1] if len(parts) > 1 else None

    record = RegistrationRecord(
        origin=origin,
        given_name=given,
        family_name=family,
        full_name=seed.name,
        email=seed.email,
    )
    read_only = ("email",) if origin.is_social and seed.email and seed.email_verified else ()
    return WizardState(record=record, read_only_fields=read_only)


def _update_field(state: WizardState, action: UpdateField) -> WizardState:
    if state.phase is not Phase.EDITING:
        logger.debug(f"Ignoring update for {action.key!r} in phase={state.phase.value}")
        return state

    name = RegistrationRecord.field_for_key(action.key)
    if name is None:
        logger.warning(f"Ignoring update for unknown field {action.key!r}")
        return state
    if name in DERIVED_FIELDS:
        logger.warning(f"Ignoring update for derived field {name!r}")
        return state
    if name in state.read_only_fields:
        logger.debug(f"Ignoring update for read-only field {name!r}")
        return state

    data = state.record.model_dump()
    data[name] = action.value
    if name in PHONE_FIELDS:
        data["phone_e164"] = None
    try:
        record = RegistrationRecord.model_validate(data)
    except PydanticValidationError:
        logger.warning(f"Rejected value of unexpected type for field {name!r}")
        return state

    update: Dict[str, Any] = {
        "record": record,
        "step_errors": [e for e in state.step_errors if e.field != name],
    }
    if name == "username":
        # every edit invalidates the previous availability answer
        update["username_check"] = UniquenessCheckResult(candidate=record.username or "")
    return state.model_copy(update=update)


def _next(state: WizardState, validator: StepValidator) -> WizardState:
    if state.phase is not Phase.EDITING or state.is_last_step:
        return state

    step = state.current_step
    errors = validator.errors_for(step, state.record, state.read_only_fields)
    if not errors and not validator.can_advance(
        step, state.record, state.username_check, state.read_only_fields
    ):
        errors = [
            FieldError(
                field="username",
                message=state.username_check.message or CHECKING_MESSAGE,
            )
        ]
    if errors:
        return state.model_copy(update={"step_errors": errors})

    return state.model_copy(update={"step_index": state.step_index + 1, "step_errors": []})


def _back(state: WizardState) -> WizardState:
    if state.phase is not Phase.EDITING or state.step_index == 0:
        return state
    return state.model_copy(update={"step_index": state.step_index - 1, "step_errors": []})


def _jump(state: WizardState, action: JumpTo) -> WizardState:
    if state.phase is not Phase.EDITING or action.step not in state.steps:
        return state
    target = state.steps.index(action.step)
    if target >= state.step_index:
        return state
    return state.model_copy(update={"step_index": target, "step_errors": []})


def _username_checked(state: WizardState, action: UsernameChecked) -> WizardState:
    # keyed by candidate: an answer for anything but the live value is stale
    if action.result.candidate != (state.record.username or ""):
        return state
    return state.model_copy(update={"username_check": action.result})


def _submission_finished(state: WizardState, action: SubmissionFinished) -> WizardState:
    if action.error is None and action.account is not None:
        record = action.submitted.model_copy(update=action.overrides)
        return state.model_copy(
            update={
                "record": record,
                "phase": Phase.SUBMITTED,
                "account": action.account,
                "submission_error": None,
                "step_errors": [],
            }
        )

    failure = SubmissionFailure.from_exception(action.error)
    if isinstance(action.error, ValidationError):
        step_errors = list(action.error.errors)
    elif failure.field:
        step_errors = [FieldError(field=failure.field, message=failure.message)]
    else:
        step_errors = []
    return state.model_copy(
        update={
            "phase": Phase.EDITING,
            "submission_error": failure,
            "step_errors": step_errors,
        }
    )


def _address_looked_up(state: WizardState, action: AddressLookedUp) -> WizardState:
    if state.phase is not Phase.EDITING:
        return state
    if action.place is None:
        return state.model_copy(update={"address_lookup_error": action.error})
    return state.model_copy(
        update={
            "record": apply_place_address(state.record, action.place),
            "address_lookup_error": None,
            "step_errors": [e for e in state.step_errors if e.field not in ADDRESS_FIELDS],
        }
    )


def reduce(state: WizardState, action: Action, validator: StepValidator) -> WizardState:
    if isinstance(action, UpdateField):
        return _update_field(state, action)
    if isinstance(action, Next):
        return _next(state, validator)
    if isinstance(action, Back):
        return _back(state)
    if isinstance(action, JumpTo):
        return _jump(state, action)
    if isinstance(action, UsernameChecked):
        return _username_checked(state, action)
    if isinstance(action, SubmissionStarted):
        if state.phase is not Phase.EDITING:
            return state
        return state.model_copy(update={"phase": Phase.SUBMITTING, "submission_error": None})
    if isinstance(action, SubmissionFinished):
        return _submission_finished(state, action)
    if isinstance(action, AddressLookedUp):
        return _address_looked_up(state, action)
    raise TypeError(f"Unknown wizard action: {action!r}")
