"""Call pacing and retry for rate-limited external services."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from utils.exceptions import (
    BooktureError,
    PermanentServiceError,
    RetryExhaustedError,
    TransientServiceError,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]

# 429 = rate limited, 503 = overloaded
TRANSIENT_STATUS_CODES = frozenset({429, 503})


def status_code_of(exc: BaseException) -> Optional[int]:
    """HTTP-like status carried by SDK errors (openai, google-genai, httpx)."""
    for attr in ("status_code", "code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value
    return None


def is_transient_error(exc: BaseException) -> bool:
    if isinstance(exc, TransientServiceError):
        return True
    if isinstance(exc, BooktureError):
        return False
    return status_code_of(exc) in TRANSIENT_STATUS_CODES


class RateLimiter:
    """
    Minimum spacing between successive calls to one external capability.

    Shared by every job in the process; the lock serializes waiters so the
    spacing holds across concurrent pipelines.
    """

    def __init__(
        self,
        min_interval_s: float,
        *,
        name: str = "external",
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.name = name
        self.min_interval_s = max(0.0, float(min_interval_s))
        self._clock = clock
        self._sleep = sleep
        self._last_call: Optional[float] = None
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            if self._last_call is not None:
                remaining = self.min_interval_s - (self._clock() - self._last_call)
                if remaining > 0:
                    logger.debug("rate_limit_wait limiter=%s wait_s=%.2f", self.name, remaining)
                    await self._sleep(remaining)
            self._last_call = self._clock()


class RetryingCaller:
    """Bounded exponential-backoff retry around a single awaited external call."""

    def __init__(
        self,
        *,
        max_attempts: int = 5,
        base_delay_s: float = 1.0,
        max_delay_s: float = 30.0,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.max_attempts = max(1, int(max_attempts))
        self.base_delay_s = max(0.0, float(base_delay_s))
        self.max_delay_s = max(self.base_delay_s, float(max_delay_s))
        self._sleep = sleep

    async def call(
        self,
        name: str,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        limiter: Optional[RateLimiter] = None,
        **kwargs: Any,
    ) -> T:
        """
        Await `fn(*args, **kwargs)`, pacing every attempt through `limiter`.

        Raises:
            RetryExhaustedError: transient failures used up the attempt budget
            PermanentServiceError: any other foreign exception (chained)
            BooktureError: domain errors propagate unchanged
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.base_delay_s, max=self.max_delay_s),
            retry=retry_if_exception(is_transient_error),
            sleep=self._sleep,
            before_sleep=lambda state: self._log_retry(name, state),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    if limiter is not None:
                        await limiter.acquire()
                    return await fn(*args, **kwargs)
        except RetryError as exc:
            last = exc.last_attempt.exception()
            logger.error("retries_exhausted call=%s attempts=%s error=%s", name, self.max_attempts, last)
            raise RetryExhaustedError(
                f"{name} failed after {self.max_attempts} attempts: {last}",
                service=name,
                attempts=self.max_attempts,
                status_code=status_code_of(last) if last else None,
            ) from last
        except BooktureError:
            raise
        except Exception as exc:
            raise PermanentServiceError(
                f"{name} failed: {exc}",
                service=name,
                status_code=status_code_of(exc),
            ) from exc
        raise AssertionError("unreachable")  # pragma: no cover

    def _log_retry(self, name: str, state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        delay = state.next_action.sleep if state.next_action else 0.0
        logger.warning(
            "transient_failure call=%s attempt=%s/%s retry_in_s=%.1f error=%s",
            name,
            state.attempt_number,
            self.max_attempts,
            delay,
            exc,
        )
