"""
Provider Call Limiter - optional cap on concurrent model calls.

Flows are independent and share no retry state, so a burst of requests maps
1:1 onto concurrent provider calls. When a limit is configured, each call
waits for a slot before it is sent; a limit of 0 disables the limiter.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

logger = logging.getLogger(__name__)


class ProviderCallLimiter:
    """Bounds in-flight provider calls with an asyncio semaphore."""

    def __init__(self, max_concurrent_calls: int = 0):
        self._max_calls = max(0, max_concurrent_calls)
        self._semaphore: Optional[asyncio.Semaphore] = (
            asyncio.Semaphore(self._max_calls) if self._max_calls else None
        )
        self._in_flight = 0

    @property
    def enabled(self) -> bool:
        return self._semaphore is not None

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @asynccontextmanager
    async def slot(self, operation_name: str = "provider call"):
        """Hold a slot for the duration of one provider call."""
        if self._semaphore is None:
            self._in_flight += 1
            try:
                yield
            finally:
                self._in_flight -= 1
            return

        if self._semaphore.locked():
            logger.info(
                f"{operation_name} waiting for a provider slot "
                f"({self._in_flight}/{self._max_calls} in flight)"
            )
        async with self._semaphore:
            self._in_flight += 1
            try:
                yield
            finally:
                self._in_flight -= 1

    def get_status(self) -> dict:
        return {
            "enabled": self.enabled,
            "max_concurrent_calls": self._max_calls,
            "in_flight": self._in_flight,
        }
