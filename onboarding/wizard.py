"""Onboarding state machine: dispatches actions to the reducers and owns every side effect."""

from typing import Any, Callable, List, Optional
from uuid import uuid4

from loguru import logger

from config.onboarding import OnboardingSettings
from onboarding.address import PlaceSuggestion, PlacesClient
from onboarding.backend import IdentityBackend
from onboarding.errors import FieldError, FormatError, ValidationError
from onboarding.reducer import (
    Action,
    AddressLookedUp,
    Back,
    JumpTo,
    Next,
    SubmissionFinished,
    SubmissionStarted,
    UpdateField,
    UsernameChecked,
    initial_state,
    reduce,
)
from onboarding.state import (
    Origin,
    Phase,
    RegistrationRecord,
    SocialSeed,
    StepId,
    UniquenessCheckResult,
    WizardState,
)
from onboarding.submission import SubmissionCoordinator, SubmissionResult
from onboarding.uniqueness import UniquenessChecker
from onboarding.validator import StepValidator

StateListener = Callable[[WizardState], None]

ADDRESS_LOOKUP_UNAVAILABLE = "Address lookup is unavailable. Please enter your address manually."


class WizardController:
    def __init__(
        self,
        backend: IdentityBackend,
        *,
        origin: Origin = Origin.MANUAL,
        seed: Optional[SocialSeed] = None,
        settings: Optional[OnboardingSettings] = None,
        validator: Optional[StepValidator] = None,
        checker: Optional[UniquenessChecker] = None,
        coordinator: Optional[SubmissionCoordinator] = None,
        places: Optional[PlacesClient] = None,
        checkpointer: Any = None,
    ) -> None:
        settings = settings or OnboardingSettings()
        self.validator = validator or StepValidator(min_age=settings.min_age, max_age=settings.max_age)
        self.checker = checker or UniquenessChecker(
            backend.check_username_availability,
            debounce=settings.debounce_seconds,
            timeout=settings.username_check_timeout_s,
            min_length=settings.username_min_length,
        )
        self.coordinator = coordinator or SubmissionCoordinator(
            backend, self.validator, checkpointer=checkpointer
        )
        self.places = places

        self.session_id = uuid4().hex
        self._attempts = 0
        self._listeners: List[StateListener] = []
        self._state = initial_state(origin, seed)

        self.checker.subscribe(self._on_username_checked)

    @property
    def state(self) -> WizardState:
        return self._state

    def subscribe(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def dispatch(self, action: Action) -> WizardState:
        previous = self._state
        self._state = reduce(previous, action, self.validator)
        if self._state is not previous:
            for listener in list(self._listeners):
                listener(self._state)
        return self._state

    def update_field(self, key: str, value: Any) -> WizardState:
        before = self._state.record
        state = self.dispatch(UpdateField(key=key, value=value))
        if state.record is not before and RegistrationRecord.field_for_key(key) == "username":
            immediate = self.checker.check(state.record.username or "")
            state = self.dispatch(UsernameChecked(result=immediate))
        return state

    def next(self) -> WizardState:
        return self.dispatch(Next())

    def back(self) -> WizardState:
        return self.dispatch(Back())

    def jump(self, step: StepId) -> WizardState:
        return self.dispatch(JumpTo(step=step))

    def can_advance(self) -> bool:
        state = self._state
        return self.validator.can_advance(
            state.current_step, state.record, state.username_check, state.read_only_fields
        )

    def current_errors(self) -> List[FieldError]:
        state = self._state
        return self.validator.errors_for(state.current_step, state.record, state.read_only_fields)

    def _on_username_checked(self, result: UniquenessCheckResult) -> None:
        self.dispatch(UsernameChecked(result=result))

    async def search_addresses(self, query: str, *, country: Optional[str] = None) -> List[PlaceSuggestion]:
        if self.places is None:
            self.dispatch(AddressLookedUp(error=ADDRESS_LOOKUP_UNAVAILABLE))
            return []
        try:
            return await self.places.autocomplete(query, country=country)
        except Exception as exc:
            logger.warning(f"Address search failed: {exc!r}")
            self.dispatch(AddressLookedUp(error=ADDRESS_LOOKUP_UNAVAILABLE))
            return []

    async def lookup_address(self, place_id: str) -> WizardState:
        if self.places is None:
            return self.dispatch(AddressLookedUp(error=ADDRESS_LOOKUP_UNAVAILABLE))
        try:
            place = await self.places.place_details(place_id)
        except Exception as exc:
            logger.warning(f"Place details lookup failed: {exc!r}")
            return self.dispatch(AddressLookedUp(error=ADDRESS_LOOKUP_UNAVAILABLE))
        return self.dispatch(AddressLookedUp(place=place))

    async def submit(self) -> SubmissionResult:
        state = self._state
        if state.phase is not Phase.EDITING or not state.is_last_step:
            logger.warning(f"Submit ignored in phase={state.phase.value} step={state.current_step.value}")
            return SubmissionResult(
                error=ValidationError(
                    [FieldError(field="step", message="Complete the previous steps before submitting")]
                )
            )

        record = state.record
        try:
            phone = self.validator.normalized_phone(record)
        except FormatError as exc:
            error = ValidationError([FieldError(field=exc.field or "phone_national", message=exc.message)])
            self.dispatch(SubmissionFinished(submitted=record, error=error))
            return SubmissionResult(error=error)

        # computed here and handed over directly: the record may not reflect them yet
        full_name = f"{(record.given_name or '').strip()} {(record.family_name or '').strip()}".strip()
        overrides = {"phone_e164": phone, "full_name": full_name}

        self.dispatch(SubmissionStarted())
        self._attempts += 1
        result = await self.coordinator.submit(
            record,
            overrides,
            read_only=state.read_only_fields,
            thread_id=f"{self.session_id}-{self._attempts}",
        )
        self.dispatch(
            SubmissionFinished(
                submitted=record,
                error=result.error,
                account=result.account,
                overrides=overrides,
            )
        )
        return result

    async def close(self) -> None:
        self.checker.cancel()
