from __future__ import annotations

import logging

from .app_logging import log_with_fields
from .auth import AuthSession
from .classifier import classify
from .inventory import JobInventory
from .models import Credential, Job, JobPhase, JobReport, NotificationStatus, RetryDecision, RunSummary
from .notify import NotificationDispatcher
from .remote import BackupServiceClient, RemoteError, RetryActionError, StatusFetchError
from .utils import utc_now_iso


class RetryOrchestrator:
    """Runs one sequential remediation pass over the job inventory.

    Each job moves through pending -> status_fetched -> skipped or
    retry_requested -> retry_confirmed/retry_failed, or straight to errored
    when its status cannot be fetched. Remote and
    OS errors are contained per job; only authentication and inventory
    errors escape `run`.
    """

    def __init__(
        self,
        client: BackupServiceClient,
        inventory: JobInventory,
        notifier: NotificationDispatcher,
        logger: logging.Logger,
    ) -> None:
        self.client = client
        self.inventory = inventory
        self.notifier = notifier
        self.logger = logger

    def run(self, session: AuthSession) -> RunSummary:
        summary = RunSummary(started_at=utc_now_iso())
        credential = session.authenticate()
        jobs = self.inventory.list_jobs(credential)
        for job in jobs:
            summary.record(self.process_job(credential, job))
        summary.finished_at = utc_now_iso()
        log_with_fields(
            self.logger,
            logging.INFO,
            "run_completed",
            checked=summary.checked,
            retried=summary.retried,
            skipped=summary.skipped,
            errored=summary.errored,
        )
        return summary

    def preview(self, session: AuthSession) -> list[tuple[Job, RetryDecision | None, str | None]]:
        credential = session.authenticate()
        rows: list[tuple[Job, RetryDecision | None, str | None]] = []
        for job in self.inventory.list_jobs(credential):
            try:
                snapshot = self.client.get_job_status(credential, job.job_id)
            except (RemoteError, OSError) as exc:
                rows.append((job, None, str(exc)))
                continue
            rows.append((job, classify(snapshot), None))
        return rows

    def process_job(self, credential: Credential, job: Job) -> JobReport:
        report = JobReport(job=job)
        try:
            self._advance(credential, report)
        except (RemoteError, OSError) as exc:
            self._contain(report, exc)
        return report

    def _advance(self, credential: Credential, report: JobReport) -> None:
        job = report.job
        try:
            snapshot = self.client.get_job_status(credential, job.job_id)
        except StatusFetchError as exc:
            report.error = str(exc)
            self._transition(report, JobPhase.ERRORED)
            log_with_fields(
                self.logger,
                logging.ERROR,
                "job_status_fetch_failed",
                job_id=job.job_id,
                job_name=job.name,
                error=str(exc),
            )
            return

        report.last_result = snapshot.last_result
        self._transition(report, JobPhase.STATUS_FETCHED)
        decision = classify(snapshot)
        report.decision = decision.decision

        if not decision.should_retry:
            self._transition(report, JobPhase.SKIPPED)
            log_with_fields(
                self.logger,
                logging.INFO,
                "job_skipped",
                job_id=job.job_id,
                job_name=job.name,
                decision=decision.decision.value,
                current_state=snapshot.current_state.value,
                last_result=snapshot.last_result.value,
            )
            return

        self._transition(report, JobPhase.RETRY_REQUESTED)
        try:
            self.client.start_job(credential, job.job_id)
        except RetryActionError as exc:
            report.error = str(exc)
            self._transition(report, JobPhase.RETRY_FAILED)
            log_with_fields(
                self.logger,
                logging.ERROR,
                "job_retry_failed",
                job_id=job.job_id,
                job_name=job.name,
                last_result=snapshot.last_result.value,
                error=str(exc),
            )
            return

        self._transition(report, JobPhase.RETRY_CONFIRMED)
        log_with_fields(
            self.logger,
            logging.INFO,
            "job_retry_started",
            job_id=job.job_id,
            job_name=job.name,
            last_result=snapshot.last_result.value,
        )
        report.notification = self.notifier.notify(job.name, snapshot.last_result)

    def _contain(self, report: JobReport, exc: Exception) -> None:
        job = report.job
        if report.phase.is_terminal:
            if report.phase is JobPhase.RETRY_CONFIRMED and report.notification is None:
                report.notification = NotificationStatus.FAILED
            log_with_fields(
                self.logger,
                logging.ERROR,
                "job_followup_failed",
                job_id=job.job_id,
                job_name=job.name,
                phase=report.phase.value,
                error=str(exc),
            )
            return

        report.error = str(exc)
        if report.phase is JobPhase.RETRY_REQUESTED:
            self._transition(report, JobPhase.RETRY_FAILED)
        else:
            self._transition(report, JobPhase.ERRORED)
        log_with_fields(
            self.logger,
            logging.ERROR,
            "job_failed",
            job_id=job.job_id,
            job_name=job.name,
            phase=report.phase.value,
            error=str(exc),
        )

    def _transition(self, report: JobReport, phase: JobPhase) -> None:
        previous = report.phase
        report.transition(phase)
        log_with_fields(
            self.logger,
            logging.DEBUG,
            "job_transition",
            job_id=report.job.job_id,
            from_phase=previous.value,
            to_phase=phase.value,
        )
