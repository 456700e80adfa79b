import asyncio
from typing import Any, Dict, Optional, Protocol, Tuple

import aiohttp
from loguru import logger
from pydantic import BaseModel, Field

from onboarding.errors import BackendUnavailableError, FieldError, ValidationError
from onboarding.validator import password_policy_errors


class UsernameAvailability(BaseModel):
    exists: bool = False
    error: Optional[str] = None


class BackendResponse(BaseModel):
    success: bool
    status: Optional[int] = None
    error_code: Optional[str] = None
    message: Optional[str] = None
    user_sub: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class IdentityBackend(Protocol):
    async def check_username_availability(self, candidate: str) -> UsernameAvailability: ...

    async def register_account(self, payload: Dict[str, str]) -> BackendResponse: ...

    async def complete_profile(self, payload: Dict[str, str]) -> BackendResponse: ...


def _error_code(data: Dict[str, Any]) -> Optional[str]:
    for key in ("errorCode", "error", "code", "name", "__type"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return None


class HttpIdentityBackend:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 15.0,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "HttpIdentityBackend":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _send(self, method: str, path: str, body: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        session = await self._get_session()
        url = f"{self.base_url}{path}"
        try:
            async with session.request(method, url, json=body) as resp:
                try:
                    data = await resp.json(content_type=None)
                except ValueError:
                    data = {"message": await resp.text()}
                if not isinstance(data, dict):
                    data = {"data": data}
                return resp.status, data
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning(f"{method} {path} failed: {exc!r}")
            raise BackendUnavailableError(f"Could not reach the account service: {exc}") from exc

    def _response(self, status: int, data: Dict[str, Any]) -> BackendResponse:
        ok = 200 <= status < 300 and data.get("success", True) is not False
        return BackendResponse(
            success=ok,
            status=status,
            error_code=None if ok else _error_code(data),
            message=data.get("message"),
            user_sub=data.get("cognitoUserSub") or data.get("userSub"),
            data=data,
        )

    async def check_username_availability(self, candidate: str) -> UsernameAvailability:
        try:
            status, data = await self._send("POST", "/auth/check-user-status", {"username": candidate})
        except BackendUnavailableError:
            return UsernameAvailability(exists=False, error="Network error. Username availability unknown.")

        if status == 200:
            return UsernameAvailability(exists=bool(data.get("username")))
        if status == 404 or data.get("error") == "UserNotFoundException":
            return UsernameAvailability(exists=False)
        if status == 400 and "username" in str(data.get("message", "")).lower():
            return UsernameAvailability(exists=False, error="Invalid username format")
        if status >= 500:
            return UsernameAvailability(exists=False, error="Server error. Please try again.")

        logger.warning(f"Unexpected username check response: status={status}")
        return UsernameAvailability(exists=False, error="Unable to verify username availability")

    async def register_account(self, payload: Dict[str, str]) -> BackendResponse:
        status, data = await self._send("POST", "/auth/register", payload)
        return self._response(status, data)

    async def complete_profile(self, payload: Dict[str, str]) -> BackendResponse:
        status, data = await self._send("PUT", "/profile", payload)
        return self._response(status, data)

    async def confirm_sign_up(self, username: str, code: str) -> BackendResponse:
        status, data = await self._send(
            "POST", "/auth/confirm-signup", {"username": username, "code": code.strip()}
        )
        return self._response(status, data)

    async def resend_verification(self, username: str) -> BackendResponse:
        status, data = await self._send(
            "POST", "/auth/send-verification-email", {"username": username}
        )
        return self._response(status, data)

    async def forgot_password(self, username: str) -> BackendResponse:
        status, data = await self._send("POST", "/auth/forgot-password", {"username": username})
        return self._response(status, data)

    async def confirm_forgot_password(
        self, username: str, code: str, new_password: str
    ) -> BackendResponse:
        problems = password_policy_errors(new_password)
        if problems:
            raise ValidationError([FieldError(field="password", message=p) for p in problems])

        status, data = await self._send(
            "POST",
            "/auth/confirm-forgot-password",
            {"username": username, "confirmationCode": code.strip(), "newPassword": new_password},
        )
        return self._response(status, data)
