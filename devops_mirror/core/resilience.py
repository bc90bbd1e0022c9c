"""Retry, timeout and circuit-breaker policies for remote calls.

Every call class (discovery, detail fetch, comment fetch, ...) declares a
``ResiliencePolicy`` and goes through ``apply_policy``. Breakers are keyed by
name in a process-wide registry, so a failing call class never blocks the others.

    result = await apply_policy(lambda: client.get_work_item_detail(42), DETAIL_POLICY)
"""

from __future__ import annotations

import asyncio
import logging
import random
import threading
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from devops_mirror.core.exceptions import CircuitOpenError, RateLimitError, RemoteTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay: float = 0.5  # seconds
    max_delay: float = 5.0  # seconds
    backoff_factor: float = 2.0
    max_retry_after: float = 60.0  # cap on a server-requested Retry-After, seconds

    def delay_ceiling(self, attempt: int) -> float:
        """Exponential ceiling for the sleep after ``attempt`` (1-based) failed."""
        return min(self.max_delay, self.initial_delay * (self.backoff_factor ** max(0, attempt - 1)))

    def full_jitter_delay(self, attempt: int) -> float:
        return random.uniform(0, self.delay_ceiling(attempt))  # noqa: S311


@dataclass(frozen=True)
class CircuitBreakerPolicy:
    key: str
    failure_threshold: int = 5
    recovery_time: float = 30.0  # seconds
    sample_size: int = 10


@dataclass(frozen=True)
class ResiliencePolicy:
    circuit_breaker: CircuitBreakerPolicy
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    timeout: float | None = 30.0  # seconds per attempt


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Named circuit breaker with a rolling failure window.

    - CLOSED: calls pass; opens once failures among the last ``sample_size``
      outcomes reach ``failure_threshold``.
    - OPEN: calls are rejected with ``CircuitOpenError`` until ``recovery_time``
      has elapsed since the circuit opened.
    - HALF_OPEN: exactly one probe call passes. Success closes the circuit,
      failure reopens it and restarts the recovery timer.
    """

    def __init__(
        self,
        name: str,
        *,
        failure_threshold: int = 5,
        recovery_time: float = 30.0,
        sample_size: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = max(1, failure_threshold)
        self.recovery_time = recovery_time
        self.sample_size = max(self.failure_threshold, sample_size)
        self._clock = clock
        self._lock = threading.Lock()
        self._outcomes: deque[bool] = deque(maxlen=self.sample_size)
        self._state = CircuitState.CLOSED
        self._opened_at: float | None = None
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return sum(1 for failed in self._outcomes if failed)

    def before_call(self) -> None:
        """Reserve permission for one call or raise ``CircuitOpenError``."""
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return

            if self._state == CircuitState.OPEN:
                elapsed = self._clock() - (self._opened_at or 0.0)
                if elapsed < self.recovery_time:
                    raise CircuitOpenError(self.name, self.recovery_time - elapsed)
                self._transition_to(CircuitState.HALF_OPEN)

            if self._probe_in_flight:
                raise CircuitOpenError(self.name, 0.0)
            self._probe_in_flight = True

    def record_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._probe_in_flight = False
                self._outcomes.clear()
                self._transition_to(CircuitState.CLOSED)
                return
            self._outcomes.append(False)

    def record_failure(self, error: BaseException | None = None) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._probe_in_flight = False
                self._open(reason=f"half-open probe failed: {error}")
                return
            if self._state == CircuitState.OPEN:
                # Straggler from a call admitted before the circuit opened.
                return
            self._outcomes.append(True)
            failures = self.failure_count
            if failures >= self.failure_threshold:
                self._open(reason=f"{failures} failures in last {len(self._outcomes)} calls: {error}")

    def release(self) -> None:
        """Give back a call slot without recording an outcome (the caller was cancelled)."""
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._probe_in_flight = False

    def reset(self) -> None:
        with self._lock:
            self._outcomes.clear()
            self._opened_at = None
            self._probe_in_flight = False
            self._state = CircuitState.CLOSED

    def get_status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_threshold": self.failure_threshold,
            "sample_size": self.sample_size,
            "recovery_time": self.recovery_time,
            "recent_failures": self.failure_count,
        }

    def _open(self, *, reason: str) -> None:
        self._opened_at = self._clock()
        self._transition_to(CircuitState.OPEN)
        logger.warning("Circuit %s opened (%s); failing fast for %.0fs", self.name, reason, self.recovery_time)

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        logger.info("Circuit %s: %s -> %s", self.name, old_state.value, new_state.value)


class CircuitBreakerRegistry:
    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get_or_create(self, policy: CircuitBreakerPolicy) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(policy.key)
            if breaker is None:
                breaker = CircuitBreaker(
                    policy.key,
                    failure_threshold=policy.failure_threshold,
                    recovery_time=policy.recovery_time,
                    sample_size=policy.sample_size,
                    clock=self._clock,
                )
                self._breakers[policy.key] = breaker
            return breaker

    def get(self, key: str) -> CircuitBreaker | None:
        return self._breakers.get(key)

    def get_all_status(self) -> dict[str, dict[str, Any]]:
        return {name: breaker.get_status() for name, breaker in self._breakers.items()}

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()


circuit_registry = CircuitBreakerRegistry()


def _is_retryable(exc: BaseException) -> bool:
    return bool(getattr(exc, "retryable", True))


def _retry_delay(retry: RetryPolicy, attempt: int, error: BaseException | None) -> float:
    delay = retry.full_jitter_delay(attempt)
    if isinstance(error, RateLimitError) and error.retry_after:
        # Never retry sooner than the server asked, within the cap.
        delay = max(delay, min(float(error.retry_after), retry.max_retry_after))
    return delay


async def apply_policy(
    operation: Callable[[], Awaitable[T]],
    policy: ResiliencePolicy,
    *,
    registry: CircuitBreakerRegistry | None = None,
) -> T:
    """Run ``operation`` with retry, timeout and the policy's circuit breaker.

    Raises the last error once attempts are exhausted. Errors flagged
    ``retryable=False`` are raised immediately, as is ``CircuitOpenError``.
    """
    breaker = (registry or circuit_registry).get_or_create(policy.circuit_breaker)
    max_attempts = max(1, policy.retry.max_attempts)
    last_error: BaseException | None = None

    for attempt in range(1, max_attempts + 1):
        try:
            breaker.before_call()
        except CircuitOpenError as exc:
            if last_error is not None:
                raise exc from last_error
            raise

        try:
            if policy.timeout:
                result = await asyncio.wait_for(operation(), timeout=policy.timeout)
            else:
                result = await operation()
        except asyncio.TimeoutError as exc:
            last_error = RemoteTimeoutError(
                f"{policy.circuit_breaker.key} call timed out after {policy.timeout:.0f}s"
            )
            last_error.__cause__ = exc
            breaker.record_failure(last_error)
        except Exception as exc:  # noqa: BLE001
            if not _is_retryable(exc):
                # The dependency answered; only transient failures count against the circuit.
                breaker.record_success()
                raise
            last_error = exc
            breaker.record_failure(exc)
        except BaseException:
            breaker.release()
            raise
        else:
            breaker.record_success()
            return result

        if attempt >= max_attempts:
            break
        delay = _retry_delay(policy.retry, attempt, last_error)
        logger.warning(
            "Retry attempt %s/%s for %s after %.2fs delay. Error: %s",
            attempt + 1,
            max_attempts,
            policy.circuit_breaker.key,
            delay,
            last_error,
        )
        await asyncio.sleep(delay)

    logger.error("All %s attempts failed for %s: %s", max_attempts, policy.circuit_breaker.key, last_error)
    if last_error is not None:
        raise last_error
    raise RuntimeError("All retries exhausted with no captured exception")
