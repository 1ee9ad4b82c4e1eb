from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from .utils import utc_now


class CurrentState(str, Enum):
    RUNNING = "Running"
    IDLE = "Idle"
    UNKNOWN = "Unknown"


class LastResult(str, Enum):
    SUCCESS = "Success"
    WARNING = "Warning"
    FAILED = "Failed"
    NONE = "None"
    UNKNOWN = "Unknown"


class Decision(str, Enum):
    SKIP_RUNNING = "skip_running"
    SKIP_HEALTHY = "skip_healthy"
    SKIP_UNKNOWN_STATUS = "skip_unknown_status"
    RETRY = "retry"


class CredentialState(str, Enum):
    UNOBTAINED = "unobtained"
    VALID = "valid"
    EXPIRED = "expired"


class NotificationStatus(str, Enum):
    DELIVERED = "delivered"
    NOT_CONFIGURED = "not_configured"
    FAILED = "failed"


class JobPhase(str, Enum):
    PENDING = "pending"
    STATUS_FETCHED = "status_fetched"
    SKIPPED = "skipped"
    RETRY_REQUESTED = "retry_requested"
    RETRY_CONFIRMED = "retry_confirmed"
    RETRY_FAILED = "retry_failed"
    ERRORED = "errored"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_PHASES


TERMINAL_PHASES = frozenset(
    {JobPhase.SKIPPED, JobPhase.RETRY_CONFIRMED, JobPhase.RETRY_FAILED, JobPhase.ERRORED}
)

ALLOWED_TRANSITIONS: dict[JobPhase, frozenset[JobPhase]] = {
    JobPhase.PENDING: frozenset({JobPhase.STATUS_FETCHED, JobPhase.ERRORED}),
    JobPhase.STATUS_FETCHED: frozenset({JobPhase.SKIPPED, JobPhase.RETRY_REQUESTED, JobPhase.ERRORED}),
    JobPhase.RETRY_REQUESTED: frozenset({JobPhase.RETRY_CONFIRMED, JobPhase.RETRY_FAILED}),
    JobPhase.SKIPPED: frozenset(),
    JobPhase.RETRY_CONFIRMED: frozenset(),
    JobPhase.RETRY_FAILED: frozenset(),
    JobPhase.ERRORED: frozenset(),
}


class Secret:
    """Holds a sensitive string; only `reveal()` returns the raw value."""

    __slots__ = ("_value",)

    def __init__(self, value: str) -> None:
        self._value = value

    def reveal(self) -> str:
        return self._value

    def __bool__(self) -> bool:
        return bool(self._value)

    def __repr__(self) -> str:
        return "Secret('***')"

    def __str__(self) -> str:
        return "***"


@dataclass(frozen=True, slots=True)
class Credential:
    token: Secret
    token_type: str = "Bearer"
    expires_at: datetime | None = None

    @property
    def state(self) -> CredentialState:
        if self.expires_at is not None and utc_now() >= self.expires_at:
            return CredentialState.EXPIRED
        return CredentialState.VALID

    def authorization_header(self) -> str:
        return f"{self.token_type} {self.token.reveal()}"


@dataclass(frozen=True, slots=True)
class Job:
    job_id: str
    name: str


@dataclass(frozen=True, slots=True)
class JobStatusSnapshot:
    job_id: str
    current_state: CurrentState
    last_result: LastResult
    matched: bool = True

    @classmethod
    def not_found(cls, job_id: str) -> JobStatusSnapshot:
        return cls(
            job_id=job_id,
            current_state=CurrentState.UNKNOWN,
            last_result=LastResult.UNKNOWN,
            matched=False,
        )


@dataclass(frozen=True, slots=True)
class RetryDecision:
    decision: Decision
    snapshot: JobStatusSnapshot

    @property
    def should_retry(self) -> bool:
        return self.decision is Decision.RETRY


@dataclass(slots=True)
class JobReport:
    job: Job
    phase: JobPhase = JobPhase.PENDING
    decision: Decision | None = None
    last_result: LastResult | None = None
    error: str | None = None
    notification: NotificationStatus | None = None

    def transition(self, phase: JobPhase) -> None:
        if phase not in ALLOWED_TRANSITIONS[self.phase]:
            raise ValueError(f"illegal job transition {self.phase.value} -> {phase.value} for {self.job.job_id}")
        self.phase = phase


@dataclass(slots=True)
class RunSummary:
    started_at: str
    finished_at: str | None = None
    checked: int = 0
    retried: int = 0
    skipped: int = 0
    errored: int = 0
    skipped_by_decision: dict[str, int] = field(default_factory=dict)
    reports: list[JobReport] = field(default_factory=list)

    def record(self, report: JobReport) -> None:
        if not report.phase.is_terminal:
            raise ValueError(f"job {report.job.job_id} recorded in non-terminal phase {report.phase.value}")
        self.checked += 1
        if report.phase is JobPhase.RETRY_CONFIRMED:
            self.retried += 1
        elif report.phase is JobPhase.SKIPPED:
            self.skipped += 1
            key = report.decision.value if report.decision else "unknown"
            self.skipped_by_decision[key] = self.skipped_by_decision.get(key, 0) + 1
        else:
            self.errored += 1
        self.reports.append(report)
