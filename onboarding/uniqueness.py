"""
Debounced username availability checks.

A lookup only publishes its result if its generation is still the newest when
it resolves.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional, Set

from loguru import logger

from onboarding.backend import UsernameAvailability
from onboarding.errors import AvailabilityCheckError
from onboarding.state import UniquenessCheckResult, UniquenessState

Lookup = Callable[[str], Awaitable[UsernameAvailability]]
Listener = Callable[[UniquenessCheckResult], None]

UNVERIFIED_MESSAGE = "Unable to verify username availability"
TIMEOUT_MESSAGE = "Username check timed out. Availability will be confirmed when you submit."


class UniquenessChecker:
    def __init__(
        self,
        lookup: Lookup,
        *,
        debounce: float = 0.8,
        timeout: float = 8.0,
        min_length: int = 3,
    ) -> None:
        self._lookup = lookup
        self.debounce = debounce
        self.timeout = timeout
        self.min_length = min_length

        self._generation = 0
        self._candidate: Optional[str] = None
        self._timer: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[Listener] = []
        self.latest = UniquenessCheckResult()

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def check(self, candidate: str) -> UniquenessCheckResult:
        """Schedule a lookup for ``candidate`` and return its immediate state."""
        self._generation += 1
        self._candidate = candidate
        self._cancel_timer()

        if len(candidate) < self.min_length:
            self.latest = UniquenessCheckResult(candidate=candidate, state=UniquenessState.IDLE)
            return self.latest

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Username check requested outside an event loop; skipping lookup")
            self.latest = UniquenessCheckResult(
                candidate=candidate, state=UniquenessState.ERROR, message=UNVERIFIED_MESSAGE
            )
            return self.latest

        task = loop.create_task(self._run(candidate, self._generation))
        self._timer = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        self.latest = UniquenessCheckResult(candidate=candidate, state=UniquenessState.CHECKING)
        return self.latest

    def cancel(self) -> None:
        self._generation += 1
        self._candidate = None
        for task in list(self._tasks):
            task.cancel()
        self._timer = None

    async def drain(self) -> None:
        """Wait until every scheduled or in-flight lookup has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _run(self, candidate: str, generation: int) -> None:
        await asyncio.sleep(self.debounce)

        # past the quiet period: newer candidates no longer cancel this lookup
        if self._timer is asyncio.current_task():
            self._timer = None

        logger.debug(f"Checking availability of username {candidate!r}")
        result = await self._resolve(candidate)

        if generation != self._generation or candidate != self._candidate:
            logger.debug(f"Discarding stale availability result for {candidate!r}")
            return

        self.latest = result
        for listener in list(self._listeners):
            listener(result)

    async def lookup(self, candidate: str) -> UsernameAvailability:
        """Ask the backend about ``candidate``, raising ``AvailabilityCheckError`` when it cannot say."""
        try:
            answer = await asyncio.wait_for(self._lookup(candidate), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise AvailabilityCheckError(TIMEOUT_MESSAGE, field="username")
        except Exception as exc:
            logger.warning(f"Username availability lookup failed: {exc!r}")
            raise AvailabilityCheckError(UNVERIFIED_MESSAGE, field="username") from exc
        if answer.error:
            raise AvailabilityCheckError(answer.error, field="username")
        return answer

    async def _resolve(self, candidate: str) -> UniquenessCheckResult:
        try:
            answer = await self.lookup(candidate)
        except AvailabilityCheckError as exc:
            logger.warning(f"Username availability unknown: {exc.message}")
            return UniquenessCheckResult(
                candidate=candidate, state=UniquenessState.ERROR, message=exc.message
            )

        if answer.exists:
            return UniquenessCheckResult(
                candidate=candidate,
                state=UniquenessState.TAKEN,
                message="This username is already taken",
            )
        return UniquenessCheckResult(
            candidate=candidate, state=UniquenessState.AVAILABLE, message="Username is available"
        )
