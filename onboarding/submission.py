"""Single choke point between the wizard and the identity provider."""

from typing import Any, Collection, Dict, Optional
from uuid import uuid4

from loguru import logger
from pydantic import BaseModel, ConfigDict

from onboarding.backend import IdentityBackend
from onboarding.errors import ErrorCategory, FatalSubmissionError, OnboardingError
from onboarding.graph import SubmissionGraphFactory, SubmissionState
from onboarding.payload import RegistrationPayload
from onboarding.state import RegistrationRecord, SubmittedAccount
from onboarding.validator import StepValidator


class SubmissionResult(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    account: Optional[SubmittedAccount] = None
    error: Optional[OnboardingError] = None
    payload: Optional[RegistrationPayload] = None

    @property
    def ok(self) -> bool:
        return self.account is not None and self.error is None


class SubmissionCoordinator:
    def __init__(
        self,
        backend: IdentityBackend,
        validator: Optional[StepValidator] = None,
        *,
        checkpointer: Any = None,
    ):
        self.validator = validator or StepValidator()
        self.checkpointer = checkpointer
        self.graph = SubmissionGraphFactory(self.validator, backend).compile(checkpointer=checkpointer)

    async def submit(
        self,
        record: RegistrationRecord,
        overrides: Optional[Dict[str, str]] = None,
        *,
        read_only: Collection[str] = (),
        thread_id: Optional[str] = None,
    ) -> SubmissionResult:
        """
        ``overrides`` carries values computed on the final step (normalized
        phone, concatenated full name) that take precedence over the record.
        """
        inputs = {
            "record": record,
            "overrides": dict(overrides or {}),
            "read_only_fields": list(read_only),
        }
        config = None
        if self.checkpointer is not None:
            config = {"configurable": {"thread_id": thread_id or f"submission-{uuid4()}"}}

        try:
            out = await self.graph.ainvoke(inputs, config)
        except Exception:
            logger.exception("Submission graph failed")
            return SubmissionResult(
                error=FatalSubmissionError(
                    "Registration failed. Please try again.", category=ErrorCategory.UNKNOWN
                )
            )

        state = out if isinstance(out, SubmissionState) else SubmissionState.model_validate(out)
        if state.failure is not None:
            return SubmissionResult(error=state.failure.to_exception(), payload=state.payload)
        if state.account is None:
            logger.error("Submission graph finished without an account or a failure")
            return SubmissionResult(
                error=FatalSubmissionError(
                    "Registration failed. Please try again.", category=ErrorCategory.UNKNOWN
                ),
                payload=state.payload,
            )
        return SubmissionResult(account=state.account, payload=state.payload)
