from typing import Any, Dict, List, Literal, Optional

from langgraph.graph import END, START, StateGraph
from loguru import logger
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from onboarding.address import format_address
from onboarding.backend import BackendResponse, IdentityBackend
from onboarding.errors import (
    BackendUnavailableError,
    ErrorCategory,
    FatalSubmissionError,
    FieldError,
    FormatError,
    ValidationError,
    classify_backend_failure,
)
from onboarding.normalizer import normalize_date
from onboarding.payload import RegistrationPayload
from onboarding.state import RegistrationRecord, SubmissionFailure, SubmittedAccount
from onboarding.validator import StepValidator

OVERRIDABLE_FIELDS = ("phone_e164", "full_name")


class SubmissionState(BaseModel):
    record: RegistrationRecord
    overrides: Dict[str, str] = Field(default_factory=dict)
    read_only_fields: List[str] = Field(default_factory=list)

    payload: Optional[RegistrationPayload] = None
    failure: Optional[SubmissionFailure] = None
    account: Optional[SubmittedAccount] = None

    def effective_record(self) -> RegistrationRecord:
        update = {k: v for k, v in self.overrides.items() if k in OVERRIDABLE_FIELDS and v}
        return self.record.model_copy(update=update)


def _payload_field(loc) -> str:
    name = str(loc[0]) if loc else "record"
    return {
        "phone_number": "phone_national",
        "birthdate": "date_of_birth",
        "name": "full_name",
        "address": "address_line1",
    }.get(name, name)


class SubmissionGraphFactory:
    def __init__(self, validator: StepValidator, backend: IdentityBackend):
        self.validator = validator
        self.backend = backend

    def validate_record(self, state: SubmissionState) -> SubmissionState:
        """
        Full pass over every step of the flow. Navigating back never
        revalidates completed steps, so this is the only place the whole
        record is checked together.
        """
        record = state.effective_record()
        errors = self.validator.errors_for_all(record, read_only=state.read_only_fields)
        if not errors:
            return state.model_copy(update={"failure": None})

        logger.info(f"Submission blocked by {len(errors)} validation error(s)")
        failure = SubmissionFailure.from_exception(ValidationError(errors))
        return state.model_copy(update={"failure": failure})

    def assemble_payload(self, state: SubmissionState) -> SubmissionState:
        record = state.effective_record()
        try:
            # a stored phone_e164 is never trusted unless the caller computed it
            phone = state.overrides.get("phone_e164") or self.validator.normalized_phone(state.record)
            birthdate = normalize_date(record.date_of_birth)
        except FormatError as exc:
            failure = SubmissionFailure.from_exception(
                ValidationError([FieldError(field=exc.field or "record", message=exc.message)])
            )
            return state.model_copy(update={"failure": failure})

        given = (record.given_name or "").strip()
        family = (record.family_name or "").strip()
        full_name = (record.full_name or f"{given} {family}").strip()

        try:
            payload = RegistrationPayload(
                username=(record.username or "").strip(),
                name=full_name,
                given_name=given,
                family_name=family,
                email=(record.email or "").strip() or None,
                password=record.password,
                phone_number=phone,
                birthdate=birthdate,
                address=format_address(record),
                gender=record.gender.value if record.gender else "",
                city=record.city,
                postcode=record.postal_code,
            )
        except PydanticValidationError as exc:
            errors = [
                FieldError(field=_payload_field(err["loc"]), message=err["msg"])
                for err in exc.errors()
            ]
            failure = SubmissionFailure.from_exception(ValidationError(errors))
            return state.model_copy(update={"failure": failure})

        return state.model_copy(update={"payload": payload})

    async def register(self, state: SubmissionState) -> SubmissionState:
        payload = state.payload
        social = state.record.origin.is_social
        try:
            if social:
                response: BackendResponse = await self.backend.complete_profile(payload.to_profile_body())
            else:
                response = await self.backend.register_account(payload.to_register_body())
        except BackendUnavailableError as exc:
            failure = SubmissionFailure.from_exception(
                FatalSubmissionError(
                    "We couldn't reach the account service. Check your connection and try again.",
                    category=ErrorCategory.NETWORK,
                )
            )
            logger.warning(f"Registration transport failure: {exc}")
            return state.model_copy(update={"failure": failure})
        except Exception:
            logger.exception("Unexpected error while calling the registration operation")
            failure = SubmissionFailure.from_exception(
                FatalSubmissionError("Registration failed. Please try again.", category=ErrorCategory.UNKNOWN)
            )
            return state.model_copy(update={"failure": failure})

        if not response.success:
            error = classify_backend_failure(response.error_code, response.message, response.status)
            logger.info(
                f"Registration rejected: status={response.status} code={response.error_code} "
                f"category={error.category.value}"
            )
            return state.model_copy(update={"failure": SubmissionFailure.from_exception(error)})

        account = SubmittedAccount(
            username=payload.username,
            email=str(payload.email) if payload.email else None,
            phone_e164=payload.phone_number,
            user_sub=response.user_sub,
            confirmation_required=not social,
        )
        logger.info(f"Account submitted for username {payload.username!r}")
        return state.model_copy(update={"account": account})

    @staticmethod
    def route_after_validation(state: SubmissionState) -> Literal["assemble", "end"]:
        return "end" if state.failure is not None else "assemble"

    @staticmethod
    def route_after_assembly(state: SubmissionState) -> Literal["register", "end"]:
        return "end" if state.failure is not None else "register"

    def build(self) -> StateGraph:
        g = StateGraph(SubmissionState)

        g.add_node("validate", self.validate_record)
        g.add_node("assemble", self.assemble_payload)
        g.add_node("register", self.register)

        g.add_edge(START, "validate")
        g.add_conditional_edges(
            "validate",
            self.route_after_validation,
            {"assemble": "assemble", "end": END},
        )
        g.add_conditional_edges(
            "assemble",
            self.route_after_assembly,
            {"register": "register", "end": END},
        )
        g.add_edge("register", END)

        return g

    def compile(self, checkpointer: Any = None):
        return self.build().compile(checkpointer=checkpointer)
