from __future__ import annotations

import logging
import smtplib
import ssl
from collections.abc import Callable
from email.message import EmailMessage

from .app_logging import log_with_fields
from .config import MailConfig
from .models import LastResult, NotificationStatus
from .utils import utc_now_iso


class NotificationError(RuntimeError):
    pass


def _header_safe(value: str) -> str:
    return " ".join(value.splitlines()).strip()


class NotificationDispatcher:
    def __init__(
        self,
        mail_config: MailConfig,
        logger: logging.Logger,
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
    ) -> None:
        self.mail_config = mail_config
        self.logger = logger
        self.smtp_factory = smtp_factory

    def build_message(self, job_name: str, last_result: LastResult) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = f"Backup job retried: {_header_safe(job_name)}"
        message["From"] = self.mail_config.sender
        message["To"] = self.mail_config.recipient
        message.set_content(
            "\n".join(
                [
                    f"Job: {job_name}",
                    f"Last result: {last_result.value}",
                    f"Retry started at: {utc_now_iso()}",
                    "",
                    "The job's last run did not succeed, so a new run was started automatically.",
                ]
            )
        )
        return message

    def _compose(self, job_name: str, last_result: LastResult) -> EmailMessage:
        try:
            return self.build_message(job_name, last_result)
        except ValueError as exc:
            raise NotificationError(f"cannot build message for {job_name!r}: {exc}") from exc

    def _send(self, message: EmailMessage) -> None:
        config = self.mail_config
        try:
            with self.smtp_factory(config.smtp_host, config.smtp_port, timeout=config.timeout_seconds) as smtp:
                if config.use_tls:
                    smtp.starttls(context=ssl.create_default_context())
                if config.username:
                    smtp.login(config.username, config.password.reveal())
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(f"send to {config.recipient} via {config.smtp_host} failed: {exc}") from exc

    def notify(self, job_name: str, last_result: LastResult) -> NotificationStatus:
        if not self.mail_config.is_configured:
            log_with_fields(
                self.logger,
                logging.INFO,
                "notification_skipped",
                job_name=job_name,
                reason="not_configured",
            )
            return NotificationStatus.NOT_CONFIGURED

        try:
            self._send(self._compose(job_name, last_result))
        except NotificationError as exc:
            log_with_fields(
                self.logger,
                logging.ERROR,
                "notification_failed",
                job_name=job_name,
                error=str(exc),
            )
            return NotificationStatus.FAILED

        log_with_fields(
            self.logger,
            logging.INFO,
            "notification_delivered",
            job_name=job_name,
            recipient=self.mail_config.recipient,
        )
        return NotificationStatus.DELIVERED
