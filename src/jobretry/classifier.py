from __future__ import annotations

from .models import CurrentState, Decision, JobStatusSnapshot, LastResult, RetryDecision

HEALTHY_RESULTS = frozenset({LastResult.SUCCESS, LastResult.NONE})
RETRYABLE_RESULTS = frozenset({LastResult.FAILED, LastResult.WARNING})


def classify(snapshot: JobStatusSnapshot) -> RetryDecision:
    # Rule order matters: a running job is never touched, and ambiguous data
    # is never retried.
    if snapshot.current_state is CurrentState.RUNNING:
        return RetryDecision(Decision.SKIP_RUNNING, snapshot)
    if snapshot.last_result in HEALTHY_RESULTS:
        return RetryDecision(Decision.SKIP_HEALTHY, snapshot)
    if not snapshot.matched or snapshot.last_result not in RETRYABLE_RESULTS:
        return RetryDecision(Decision.SKIP_UNKNOWN_STATUS, snapshot)
    return RetryDecision(Decision.RETRY, snapshot)
