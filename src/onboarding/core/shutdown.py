"""In-flight request tracking for graceful shutdown."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from src.onboarding.core.logging import get_logger

logger = get_logger(__name__)


class RequestTracker:
    """Counts in-flight requests so shutdown can wait for them to finish.

    Webhook handlers in particular should run to completion: the CRM
    re-delivers on timeout, but a handler cut off between the user insert
    and the email send leaves an invitation that was never delivered.
    """

    def __init__(self) -> None:
        self._in_flight = 0
        self._shutting_down = False
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def in_flight_count(self) -> int:
        return self._in_flight

    @asynccontextmanager
    async def track_request(self) -> AsyncGenerator[None]:
        self._in_flight += 1
        self._idle.clear()
        try:
            yield
        finally:
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.set()

    def start_shutdown(self) -> None:
        self._shutting_down = True
        logger.info("Request tracker entering shutdown mode", in_flight=self._in_flight)

    async def wait_for_drain(self, timeout: float) -> bool:
        """Wait until no request is in flight. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except TimeoutError:
            logger.warning(
                "Shutdown timeout with requests still in flight",
                timeout=timeout,
                in_flight=self._in_flight,
            )
            return False
        return True

    def reset(self) -> None:
        """Reset tracker state. For testing only."""
        self._in_flight = 0
        self._shutting_down = False
        self._idle = asyncio.Event()
        self._idle.set()


request_tracker = RequestTracker()
