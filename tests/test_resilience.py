"""
Circuit breaker state machine and retry policy.

Time is driven by a fake clock and sleeps are recorded instead of awaited, so
the cooldown and half-open trial can be exercised without waiting.
"""

import asyncio

import pytest

from producer.crawlers.resilience import (
    BackoffSignal,
    CircuitBreaker,
    CircuitOpenError,
    ResiliencyPolicy,
)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


class RecordingSleep:
    def __init__(self, clock=None):
        self.delays = []
        self.clock = clock

    async def __call__(self, delay):
        self.delays.append(delay)
        if self.clock is not None:
            self.clock.now += delay


class SilentLog:
    def __init__(self):
        self.messages = []

    def _record(self, level, message):
        self.messages.append((level, message))

    def log(self, level, message):
        self._record(level, message)

    def info(self, message):
        self._record("INFO", message)

    def warning(self, message):
        self._record("WARNING", message)

    def error(self, message):
        self._record("ERROR", message)


def _breaker(threshold=2, duration=30, clock=None):
    return CircuitBreaker(
        "instanceA",
        failure_threshold=threshold,
        break_duration=duration,
        clock=clock or FakeClock(),
        log=SilentLog(),
    )


def test_breaker_opens_after_threshold_and_recovers_through_half_open():
    clock = FakeClock()
    breaker = _breaker(clock=clock)

    assert breaker.state == "closed"
    assert breaker.allow_request() is True

    breaker.record_failure(RuntimeError("boom"))
    assert breaker.state == "closed"

    breaker.record_failure(RuntimeError("boom"))
    assert breaker.state == "open"
    assert breaker.allow_request() is False
    assert breaker.retry_after == 30

    clock.now += 30

    assert breaker.allow_request() is True
    assert breaker.state == "half_open"
    assert breaker.allow_request() is False

    breaker.record_success()
    assert breaker.state == "closed"
    assert breaker.retry_after == 0
    assert breaker.allow_request() is True


def test_failed_trial_reopens_for_a_new_cooldown():
    clock = FakeClock()
    breaker = _breaker(threshold=1, clock=clock)

    breaker.record_failure()
    clock.now += 30
    assert breaker.allow_request() is True

    breaker.record_failure()
    assert breaker.state == "open"
    assert breaker.retry_after == 30
    assert breaker.allow_request() is False


def test_success_resets_consecutive_failures():
    breaker = _breaker(threshold=3)

    breaker.record_failure()
    breaker.record_failure()
    breaker.record_success()
    breaker.record_failure()
    breaker.record_failure()

    assert breaker.state == "closed"
    assert breaker.consecutive_failures == 2


def test_policy_retries_with_exponential_backoff():
    sleep = RecordingSleep()
    policy = ResiliencyPolicy(
        "instanceA", _breaker(threshold=10), retry_count=2, sleep=sleep, log=SilentLog()
    )
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise RuntimeError("temporary")
        return "ok"

    assert asyncio.run(policy.execute(flaky)) == "ok"
    assert len(calls) == 3
    assert sleep.delays == [2, 4]
    assert policy.breaker.consecutive_failures == 0


def test_policy_raises_last_error_when_retries_are_exhausted():
    sleep = RecordingSleep()
    policy = ResiliencyPolicy(
        "instanceA", _breaker(threshold=10), retry_count=2, sleep=sleep, log=SilentLog()
    )
    calls = []

    async def broken():
        calls.append(1)
        raise ValueError("still broken")

    with pytest.raises(ValueError):
        asyncio.run(policy.execute(broken))

    assert len(calls) == 3
    assert sleep.delays == [2, 4]


def test_policy_fails_fast_once_the_circuit_breaks():
    sleep = RecordingSleep()
    policy = ResiliencyPolicy(
        "instanceA", _breaker(threshold=2), retry_count=2, sleep=sleep, log=SilentLog()
    )
    calls = []

    async def broken():
        calls.append(1)
        raise RuntimeError("down")

    with pytest.raises(CircuitOpenError):
        asyncio.run(policy.execute(broken))

    # Second failure trips the breaker; the third attempt never runs.
    assert len(calls) == 2
    assert policy.breaker.state == "open"

    with pytest.raises(CircuitOpenError):
        asyncio.run(policy.execute(broken))
    assert len(calls) == 2


def test_backoff_signal_tracks_failures_and_cooldown():
    clock = FakeClock()
    breaker = _breaker(threshold=1, duration=45, clock=clock)
    signal = BackoffSignal(ResiliencyPolicy("instanceA", breaker, log=SilentLog()))

    assert signal.possibly_rate_limited is False
    assert signal.cooldown_remaining() == 0

    signal.set_possibly_rate_limited()
    breaker.record_failure()

    assert signal.failure_count == 1
    assert signal.possibly_rate_limited is True
    assert signal.cooldown_remaining() == 45

    signal.clear()
    assert signal.possibly_rate_limited is False
    assert signal.failure_count == 1


def test_success_finishing_after_the_circuit_broke_keeps_it_open():
    breaker = _breaker(threshold=1, duration=60)
    policy = ResiliencyPolicy(
        "instanceA", breaker, retry_count=0, sleep=RecordingSleep(), log=SilentLog()
    )

    async def slow_ok():
        await asyncio.sleep(0.01)
        return "ok"

    async def fast_fail():
        raise RuntimeError("down")

    async def scenario():
        return await asyncio.gather(
            policy.execute(slow_ok), policy.execute(fast_fail), return_exceptions=True
        )

    slow_result, fast_result = asyncio.run(scenario())

    assert slow_result == "ok"
    assert isinstance(fast_result, RuntimeError)
    assert breaker.state == "open"
    assert breaker.retry_after == 60
    assert breaker.allow_request() is False


def test_retries_are_logged_with_their_pause():
    log = SilentLog()
    policy = ResiliencyPolicy(
        "instanceA", _breaker(threshold=10), retry_count=1, sleep=RecordingSleep(), log=log
    )

    async def broken():
        raise RuntimeError("timeout")

    with pytest.raises(RuntimeError):
        asyncio.run(policy.execute(broken))

    retries = [message for level, message in log.messages if level == "WARNING"]
    assert retries == [
        "Retry 1 encountered an exception: timeout. Pausing for 2 seconds instance instanceA"
    ]
