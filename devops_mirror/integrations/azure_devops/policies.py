"""Per-call-class resilience policies for Azure DevOps traffic."""

from __future__ import annotations

from dataclasses import dataclass

from devops_mirror.core.resilience import CircuitBreakerPolicy, ResiliencePolicy, RetryPolicy

LIST_POLICY = ResiliencePolicy(
    retry=RetryPolicy(max_attempts=3, initial_delay=0.5, max_delay=2.0),
    timeout=10.0,
    circuit_breaker=CircuitBreakerPolicy(
        key="azure-devops-list",
        failure_threshold=3,
        recovery_time=30.0,
        sample_size=5,
    ),
)

DETAIL_POLICY = ResiliencePolicy(
    retry=RetryPolicy(max_attempts=5, initial_delay=0.2, max_delay=5.0),
    timeout=15.0,
    circuit_breaker=CircuitBreakerPolicy(
        key="azure-devops-detail",
        failure_threshold=5,
        recovery_time=45.0,
        sample_size=10,
    ),
)

BATCH_POLICY = ResiliencePolicy(
    retry=RetryPolicy(max_attempts=5, initial_delay=0.5, max_delay=10.0),
    timeout=45.0,
    circuit_breaker=CircuitBreakerPolicy(
        key="azure-devops-batch",
        failure_threshold=3,
        recovery_time=30.0,
        sample_size=5,
    ),
)

COMMENT_POLICY = ResiliencePolicy(
    retry=RetryPolicy(max_attempts=3, initial_delay=0.3, max_delay=3.0),
    timeout=10.0,
    circuit_breaker=CircuitBreakerPolicy(
        key="azure-devops-comments",
        failure_threshold=3,
        recovery_time=30.0,
        sample_size=5,
    ),
)

COMMENT_WRITE_POLICY = ResiliencePolicy(
    retry=RetryPolicy(max_attempts=2, initial_delay=0.5, max_delay=5.0),
    timeout=30.0,
    circuit_breaker=CircuitBreakerPolicy(
        key="azure-devops-comment-write",
        failure_threshold=3,
        recovery_time=15.0,
        sample_size=5,
    ),
)


@dataclass(frozen=True)
class SyncPolicies:
    discovery: ResiliencePolicy = LIST_POLICY
    detail: ResiliencePolicy = DETAIL_POLICY
    bulk_detail: ResiliencePolicy = BATCH_POLICY
    comments: ResiliencePolicy = COMMENT_POLICY
    comment_write: ResiliencePolicy = COMMENT_WRITE_POLICY


DEFAULT_POLICIES = SyncPolicies()
