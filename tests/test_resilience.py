from __future__ import annotations

import asyncio

import pytest

from devops_mirror.core.exceptions import (
    CircuitOpenError,
    NetworkError,
    RateLimitError,
    RemoteServerError,
    RemoteTimeoutError,
    WorkItemNotFoundError,
)
from devops_mirror.core import resilience
from devops_mirror.core.resilience import (
    CircuitBreakerPolicy,
    CircuitBreakerRegistry,
    CircuitState,
    ResiliencePolicy,
    RetryPolicy,
    apply_policy,
)


def _policy(*, key: str = "test-calls", attempts: int = 1, timeout: float | None = None) -> ResiliencePolicy:
    return ResiliencePolicy(
        retry=RetryPolicy(max_attempts=attempts, initial_delay=0.0, max_delay=0.0),
        timeout=timeout,
        circuit_breaker=CircuitBreakerPolicy(key=key, failure_threshold=3, recovery_time=30.0, sample_size=5),
    )


class _FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_breaker_fails_fast_without_calling_the_dependency() -> None:
    registry = CircuitBreakerRegistry()
    calls = []

    async def failing() -> None:
        calls.append(1)
        raise RemoteServerError("boom", status_code=503)

    async def scenario() -> None:
        for _ in range(3):
            with pytest.raises(RemoteServerError):
                await apply_policy(failing, _policy(), registry=registry)
        with pytest.raises(CircuitOpenError) as excinfo:
            await apply_policy(failing, _policy(), registry=registry)
        assert excinfo.value.circuit_name == "test-calls"
        assert excinfo.value.retry_after > 0

    asyncio.run(scenario())
    assert len(calls) == 3
    assert registry.get("test-calls").state == CircuitState.OPEN


def test_breakers_are_isolated_per_call_class() -> None:
    registry = CircuitBreakerRegistry()

    async def failing() -> None:
        raise NetworkError()

    async def ok() -> str:
        return "ok"

    async def scenario() -> str:
        for _ in range(3):
            with pytest.raises(NetworkError):
                await apply_policy(failing, _policy(key="list"), registry=registry)
        return await apply_policy(ok, _policy(key="detail"), registry=registry)

    assert asyncio.run(scenario()) == "ok"
    status = registry.get_all_status()
    assert status["list"]["state"] == "open"
    assert status["detail"]["state"] == "closed"


def test_half_open_admits_single_probe_and_closes_on_success() -> None:
    clock = _FakeClock()
    registry = CircuitBreakerRegistry(clock=clock)
    breaker = registry.get_or_create(_policy().circuit_breaker)
    for _ in range(3):
        breaker.before_call()
        breaker.record_failure(NetworkError())
    assert breaker.state == CircuitState.OPEN

    clock.now += 10
    with pytest.raises(CircuitOpenError):
        breaker.before_call()

    clock.now += 25
    breaker.before_call()
    assert breaker.state == CircuitState.HALF_OPEN
    with pytest.raises(CircuitOpenError):
        breaker.before_call()

    breaker.record_success()
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 0
    breaker.before_call()


def test_failed_probe_reopens_circuit() -> None:
    clock = _FakeClock()
    breaker = CircuitBreakerRegistry(clock=clock).get_or_create(_policy().circuit_breaker)
    for _ in range(3):
        breaker.record_failure(NetworkError())

    clock.now += 31
    breaker.before_call()
    breaker.record_failure(NetworkError())
    assert breaker.state == CircuitState.OPEN

    clock.now += 1
    with pytest.raises(CircuitOpenError):
        breaker.before_call()


def test_retries_surface_the_last_error() -> None:
    registry = CircuitBreakerRegistry()
    attempts = []

    async def flaky() -> None:
        attempts.append(1)
        raise NetworkError(f"attempt {len(attempts)} failed")

    with pytest.raises(NetworkError, match="attempt 3 failed"):
        asyncio.run(apply_policy(flaky, _policy(key="flaky", attempts=3), registry=registry))
    assert len(attempts) == 3


def test_retry_succeeds_after_transient_failure() -> None:
    registry = CircuitBreakerRegistry()
    attempts = []

    async def recovers() -> int:
        attempts.append(1)
        if len(attempts) < 2:
            raise RemoteTimeoutError()
        return 42

    assert asyncio.run(apply_policy(recovers, _policy(key="recovers", attempts=3), registry=registry)) == 42
    assert len(attempts) == 2


def test_non_retryable_error_is_raised_immediately_and_does_not_trip_breaker() -> None:
    registry = CircuitBreakerRegistry()
    attempts = []

    async def missing() -> None:
        attempts.append(1)
        raise WorkItemNotFoundError(99)

    for _ in range(5):
        with pytest.raises(WorkItemNotFoundError):
            asyncio.run(apply_policy(missing, _policy(key="missing", attempts=3), registry=registry))

    assert len(attempts) == 5
    breaker = registry.get("missing")
    assert breaker.state == CircuitState.CLOSED
    assert breaker.failure_count == 0


def test_timeout_counts_as_failure() -> None:
    registry = CircuitBreakerRegistry()

    async def slow() -> None:
        await asyncio.sleep(1)

    with pytest.raises(RemoteTimeoutError):
        asyncio.run(apply_policy(slow, _policy(key="slow", timeout=0.01), registry=registry))
    assert registry.get("slow").failure_count == 1


def test_full_jitter_delay_stays_within_exponential_ceiling() -> None:
    policy = RetryPolicy(max_attempts=5, initial_delay=0.5, max_delay=2.0)
    assert policy.delay_ceiling(1) == 0.5
    assert policy.delay_ceiling(2) == 1.0
    assert policy.delay_ceiling(3) == 2.0
    assert policy.delay_ceiling(10) == 2.0
    for attempt in range(1, 6):
        for _ in range(50):
            delay = policy.full_jitter_delay(attempt)
            assert 0.0 <= delay <= policy.delay_ceiling(attempt)


def test_reset_all_closes_open_breakers() -> None:
    registry = CircuitBreakerRegistry()
    breaker = registry.get_or_create(_policy(key="reset").circuit_breaker)
    for _ in range(3):
        breaker.record_failure(NetworkError())
    assert breaker.state == CircuitState.OPEN
    registry.reset_all()
    assert breaker.state == CircuitState.CLOSED
    breaker.before_call()


@pytest.mark.parametrize(("retry_after", "expected"), [(30.0, 30.0), (600.0, 60.0), (None, 0.0)])
def test_rate_limited_retry_honours_retry_after_within_cap(retry_after, expected, monkeypatch) -> None:  # noqa: ANN001
    registry = CircuitBreakerRegistry()
    delays: list[float] = []
    attempts = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    async def throttled() -> str:
        attempts.append(1)
        if len(attempts) == 1:
            raise RateLimitError(retry_after=retry_after)
        return "ok"

    monkeypatch.setattr(resilience.asyncio, "sleep", fake_sleep)

    assert asyncio.run(apply_policy(throttled, _policy(key="throttled", attempts=3), registry=registry)) == "ok"
    assert delays == [expected]


def test_cancelled_half_open_call_frees_the_slot() -> None:
    clock = _FakeClock()
    registry = CircuitBreakerRegistry(clock=clock)
    policy = _policy(key="cancelled-half-open")
    breaker = registry.get_or_create(policy.circuit_breaker)
    for _ in range(3):
        breaker.record_failure(NetworkError())
    clock.now += 31

    async def scenario() -> str:
        started = asyncio.Event()

        async def hangs() -> None:
            started.set()
            await asyncio.sleep(10)

        async def ok() -> str:
            return "ok"

        pending = asyncio.create_task(apply_policy(hangs, policy, registry=registry))
        await started.wait()
        assert breaker.state == CircuitState.HALF_OPEN
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending
        return await apply_policy(ok, policy, registry=registry)

    assert asyncio.run(scenario()) == "ok"
    assert breaker.state == CircuitState.CLOSED


def test_cancelled_call_is_not_counted_as_failure() -> None:
    registry = CircuitBreakerRegistry()
    policy = _policy(key="cancelled-call")

    async def scenario() -> None:
        started = asyncio.Event()

        async def hangs() -> None:
            started.set()
            await asyncio.sleep(10)

        call = asyncio.create_task(apply_policy(hangs, policy, registry=registry))
        await started.wait()
        call.cancel()
        with pytest.raises(asyncio.CancelledError):
            await call

    asyncio.run(scenario())
    assert registry.get("cancelled-call").failure_count == 0
