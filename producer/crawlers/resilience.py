"""Retry and circuit breaking for outbound provider requests.

Every request an instance makes goes through its ``ResiliencyPolicy``: the
policy asks the ``CircuitBreaker`` for permission, runs the request, and
retries failed attempts with exponential backoff. The breaker follows the
usual closed -> open -> half_open cycle:

- closed: requests flow; consecutive failures are counted.
- open: requests fail fast with ``CircuitOpenError`` until the break
  duration has elapsed.
- half_open: a single trial request is let through. Success closes the
  circuit, failure opens it again for another break duration.
"""

import asyncio
import time
from typing import Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from producer.core.logger import logger

T = TypeVar("T")

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    pass


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        failure_threshold: int,
        break_duration: float,
        clock: Callable[[], float] = time.monotonic,
        log=logger,
    ):
        self.name = name
        self.failure_threshold = max(1, failure_threshold)
        self.break_duration = max(0.0, float(break_duration))
        self._clock = clock
        self._log = log
        self._state = CLOSED
        self._consecutive_failures = 0
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False

    @property
    def state(self) -> str:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def retry_after(self) -> float:
        if self._state != OPEN or self._opened_at is None:
            return 0.0
        return max(0.0, self._opened_at + self.break_duration - self._clock())

    def allow_request(self) -> bool:
        if self._state == OPEN:
            if self.retry_after > 0:
                return False
            self._state = HALF_OPEN
            self._log.info(
                f"Circuit is half-open for {self.name}, next call is a trial if it should close or break again"
            )

        if self._state == HALF_OPEN:
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True

        return True

    def record_success(self):
        # Only the half-open trial may close an open circuit.
        if self._state == OPEN:
            return

        self._consecutive_failures = 0
        self._trial_in_flight = False
        if self._state != CLOSED:
            self._state = CLOSED
            self._opened_at = None
            self._log.info(f"Circuit closed for {self.name}, calls will flow again")

    def record_failure(self, error: Optional[Exception] = None):
        if self._state == HALF_OPEN:
            self._trial_in_flight = False
            self._open(error)
            return

        if self._state == OPEN:
            return

        self._consecutive_failures += 1
        if self._consecutive_failures >= self.failure_threshold:
            self._open(error)

    def release_trial(self):
        # A cancelled trial neither closes nor reopens the circuit.
        self._trial_in_flight = False

    def _open(self, error: Optional[Exception]):
        self._state = OPEN
        self._opened_at = self._clock()
        self._log.warning(
            f"Breaking circuit for {self.name} for {self.break_duration * 1000:.0f}ms due to {error}"
        )


class ResiliencyPolicy:
    def __init__(
        self,
        name: str,
        breaker: CircuitBreaker,
        retry_count: int = 2,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        log=logger,
    ):
        self.name = name
        self.breaker = breaker
        self.retry_count = max(0, retry_count)
        self._sleep = sleep
        self._log = log

    def _log_retry(self, retry_state: RetryCallState):
        error = retry_state.outcome.exception()
        self._log.warning(
            f"Retry {retry_state.attempt_number} encountered an exception: {error}. Pausing for {retry_state.next_action.sleep:.0f} seconds instance {self.name}"
        )

    async def _attempt(self, action: Callable[[], Awaitable[T]]) -> T:
        if not self.breaker.allow_request():
            raise CircuitOpenError(
                f"Circuit open for {self.name}, retry in {self.breaker.retry_after:.0f}s"
            )

        try:
            result = await action()
        except asyncio.CancelledError:
            self.breaker.release_trial()
            raise
        except Exception as e:
            self.breaker.record_failure(e)
            raise

        self.breaker.record_success()
        return result

    async def execute(self, action: Callable[[], Awaitable[T]]) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_count + 1),
            # 2s, 4s, 8s, ...
            wait=wait_exponential(multiplier=2),
            retry=retry_if_exception_type(Exception)
            & retry_if_not_exception_type(CircuitOpenError),
            sleep=self._sleep,
            before_sleep=self._log_retry,
            reraise=True,
        )
        return await retrying(self._attempt, action)


class BackoffSignal:
    """Failure signal shared by the item tasks of one instance.

    Item tasks only ever call ``set_possibly_rate_limited``; the owning crawl
    loop reads it between batches to decide whether to wait out the breaker.
    """

    def __init__(self, policy: ResiliencyPolicy):
        self.policy = policy
        self.failure_count = 0
        self.possibly_rate_limited = False

    def set_possibly_rate_limited(self):
        self.failure_count += 1
        self.possibly_rate_limited = True

    def cooldown_remaining(self) -> float:
        return self.policy.breaker.retry_after

    def clear(self):
        self.possibly_rate_limited = False
