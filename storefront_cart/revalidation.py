"""Decides when the authoritative cart must be fetched again, and fetches it."""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from pydantic import BaseModel

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RevalidationState(str, Enum):
    IDLE = "idle"
    REVALIDATING = "revalidating"


class RevalidationTrigger(str, Enum):
    MUTATION = "mutation"
    EXPLICIT = "explicit"
    NAVIGATION = "navigation"


class RevalidationEvent(BaseModel):
    """Something that happened which might make route data stale."""

    trigger: RevalidationTrigger
    form_method: Optional[str] = None
    noop: bool = False
    current_url: Optional[str] = None
    next_url: Optional[str] = None


def should_revalidate(event: RevalidationEvent) -> bool:
    """
    Revalidate after a completed non-GET mutation or on explicit request.

    Navigation never revalidates, not even to the same location, and neither
    do GET submissions or no-op submissions.
    """
    if event.trigger is RevalidationTrigger.EXPLICIT:
        return True
    if event.trigger is RevalidationTrigger.MUTATION:
        if event.noop:
            return False
        return (event.form_method or "POST").upper() != "GET"
    return False


class RevalidationCoordinator(Generic[T]):
    """
    Runs revalidation fetches, at most one at a time.

    A revalidation requested while a fetch is already in flight waits for it
    and then fetches again, because the in-flight fetch may have been issued
    before the effects the caller is waiting on. Concurrent waiters share that
    second fetch.
    """

    def __init__(self, fetcher: Callable[[], Awaitable[T]]) -> None:
        self._fetcher = fetcher
        self._lock = asyncio.Lock()
        self._requested = 0
        self._completed = 0
        self._last: Optional[T] = None
        self._state = RevalidationState.IDLE

    @property
    def state(self) -> RevalidationState:
        return self._state

    @property
    def last_result(self) -> Optional[T]:
        return self._last

    async def notify(self, event: RevalidationEvent) -> bool:
        """Revalidate if the event calls for it. Returns True if it did."""
        if not should_revalidate(event):
            logger.debug(f"No revalidation for {event.trigger.value} event")
            return False
        await self.revalidate(reason=event.trigger.value)
        return True

    async def revalidate(self, reason: str = "explicit") -> Optional[T]:
        """
        Fetch fresh data that reflects everything completed before this call.

        Raises:
            Whatever the fetcher raises; the request stays outstanding so the
            next call fetches again.
        """
        self._requested += 1
        ticket = self._requested

        async with self._lock:
            if self._completed >= ticket:
                return self._last

            covers = self._requested
            self._state = RevalidationState.REVALIDATING
            logger.info(f"Revalidating ({reason})")
            try:
                result = await self._fetcher()
            finally:
                self._state = RevalidationState.IDLE

            self._completed = covers
            self._last = result
            return result
