"""
Retry controller for provider calls.

One policy for every flow:
- Each attempt wrapped in asyncio.wait_for() with the configured timeout
- Exponential backoff between attempts: base * 2 ** (attempt - 1)
- Transient ProviderErrors (and timeouts) are retried; anything else is fatal
- Exhaustion returns None so the caller can substitute its fallback

States: IDLE -> ATTEMPTING -> {SUCCESS, RETRY_WAIT -> ATTEMPTING, FATAL, EXHAUSTED}
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from backend.shared.call_limiter import ProviderCallLimiter
from backend.shared.config import RetryConfig
from backend.shared.errors import ProviderError

logger = logging.getLogger(__name__)


class RetryStatus(Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    RETRY_WAIT = "retry_wait"
    SUCCESS = "success"
    FATAL = "fatal"
    EXHAUSTED = "exhausted"


@dataclass
class RetryState:
    """Per-invocation retry bookkeeping. Never shared between calls."""
    max_attempts: int
    attempt: int = 0
    status: RetryStatus = RetryStatus.IDLE
    last_error: Optional[ProviderError] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (RetryStatus.SUCCESS, RetryStatus.FATAL, RetryStatus.EXHAUSTED)


def backoff_delay(attempt: int, base_seconds: float) -> float:
    """Delay before the attempt after ``attempt`` (1-based) failed."""
    return base_seconds * (2 ** (attempt - 1))


async def retry_with_backoff(
    coro_factory: Callable[[], Awaitable[Any]],
    operation_name: str,
    policy: Optional[RetryConfig] = None,
    limiter: Optional[ProviderCallLimiter] = None,
    state: Optional[RetryState] = None,
) -> Optional[Any]:
    """
    Execute an async provider call with timeout + exponential backoff retry.

    Args:
        coro_factory: A callable that returns a new coroutine on each call.
                      (Must be a factory because coroutines can't be re-awaited.)
        operation_name: For logging (e.g., "recommendParking").
        policy: Attempts, backoff base and per-attempt timeout.
        limiter: Optional concurrency limiter held for each attempt.
        state: Optional RetryState to observe; a fresh one is used otherwise.

    Returns:
        The coroutine's result, or None when every attempt failed transiently.

    Raises:
        ProviderError: on the first fatal (non-transient) failure.
    """
    policy = policy or RetryConfig()
    if state is None:
        state = RetryState(max_attempts=policy.max_attempts)
    else:
        state.max_attempts = policy.max_attempts

    for attempt in range(1, policy.max_attempts + 1):
        state.attempt = attempt
        state.status = RetryStatus.ATTEMPTING
        try:
            if limiter is not None:
                async with limiter.slot(operation_name):
                    result = await asyncio.wait_for(
                        coro_factory(), timeout=policy.call_timeout_seconds
                    )
            else:
                result = await asyncio.wait_for(
                    coro_factory(), timeout=policy.call_timeout_seconds
                )
            state.status = RetryStatus.SUCCESS
            if attempt > 1:
                logger.info(f"{operation_name} succeeded on attempt {attempt}/{policy.max_attempts}")
            return result
        except asyncio.TimeoutError:
            state.last_error = ProviderError.transient(
                f"{operation_name} timed out after {policy.call_timeout_seconds}s"
            )
            logger.warning(
                f"{operation_name} timeout (attempt {attempt}/{policy.max_attempts})"
            )
        except ProviderError as e:
            state.last_error = e
            if not e.is_transient:
                state.status = RetryStatus.FATAL
                logger.error(f"{operation_name} fatal provider error: {e.detail}")
                raise
            logger.warning(
                f"{operation_name} transient error (attempt {attempt}/{policy.max_attempts}): {e.detail}"
            )
        except Exception as e:
            # Unclassified failures are never retried
            state.last_error = ProviderError.fatal(str(e) or type(e).__name__)
            state.status = RetryStatus.FATAL
            logger.error(f"{operation_name} unclassified error treated as fatal: {e!r}")
            raise state.last_error from e

        # Backoff before retry (except after final attempt)
        if attempt < policy.max_attempts:
            state.status = RetryStatus.RETRY_WAIT
            delay = backoff_delay(attempt, policy.backoff_base_seconds)
            logger.info(f"{operation_name} retrying in {delay:.1f}s...")
            await asyncio.sleep(delay)

    state.status = RetryStatus.EXHAUSTED
    logger.error(
        f"{operation_name} failed after {policy.max_attempts} attempts: "
        f"{state.last_error.detail if state.last_error else 'unknown error'}"
    )
    return None
