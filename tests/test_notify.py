from __future__ import annotations

import logging
import smtplib
import unittest
from email.message import EmailMessage

from jobretry.config import MailConfig
from jobretry.models import LastResult, NotificationStatus, Secret
from jobretry.notify import NotificationDispatcher


class FakeSMTP:
    instances: list["FakeSMTP"] = []
    fail_with: Exception | None = None

    def __init__(self, host: str, port: int, timeout: float | None = None) -> None:
        self.host = host
        self.port = port
        self.timeout = timeout
        self.tls = False
        self.login_args: tuple[str, str] | None = None
        self.messages: list[EmailMessage] = []
        FakeSMTP.instances.append(self)

    def __enter__(self) -> "FakeSMTP":
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None

    def starttls(self, context: object = None) -> None:
        self.tls = True

    def login(self, username: str, password: str) -> None:
        self.login_args = (username, password)

    def send_message(self, message: EmailMessage) -> None:
        if FakeSMTP.fail_with is not None:
            raise FakeSMTP.fail_with
        self.messages.append(message)


MAIL = MailConfig(
    smtp_host="smtp.example.com",
    smtp_port=587,
    sender="backup@example.com",
    recipient="ops@example.com",
    use_tls=True,
    username="mailer",
    password=Secret("mail-secret"),
)


class NotificationDispatcherTest(unittest.TestCase):
    def setUp(self) -> None:
        FakeSMTP.instances = []
        FakeSMTP.fail_with = None
        self.logger = logging.getLogger("test_jobretry_notify")
        self.logger.handlers.clear()
        self.logger.addHandler(logging.NullHandler())
        self.logger.propagate = False

    def test_delivered(self) -> None:
        dispatcher = NotificationDispatcher(MAIL, self.logger, smtp_factory=FakeSMTP)
        status = dispatcher.notify("DailyVM", LastResult.FAILED)

        self.assertEqual(status, NotificationStatus.DELIVERED)
        smtp = FakeSMTP.instances[0]
        self.assertEqual((smtp.host, smtp.port), ("smtp.example.com", 587))
        self.assertTrue(smtp.tls)
        self.assertEqual(smtp.login_args, ("mailer", "mail-secret"))
        message = smtp.messages[0]
        self.assertEqual(message["Subject"], "Backup job retried: DailyVM")
        self.assertEqual(message["To"], "ops@example.com")
        self.assertIn("Last result: Failed", message.get_content())

    def test_line_breaks_in_job_name_are_flattened(self) -> None:
        dispatcher = NotificationDispatcher(MAIL, self.logger, smtp_factory=FakeSMTP)
        self.assertEqual(dispatcher.notify("Daily\r\nVM", LastResult.FAILED), NotificationStatus.DELIVERED)
        message = FakeSMTP.instances[0].messages[0]
        self.assertEqual(message["Subject"], "Backup job retried: Daily VM")
        self.assertIn("Job: Daily", message.get_content())

    def test_unbuildable_message_is_a_failed_delivery(self) -> None:
        config = MailConfig(smtp_host="smtp.example.com", sender="backup@example.com", recipient="ops@example.com\nBcc: x@y")
        dispatcher = NotificationDispatcher(config, self.logger, smtp_factory=FakeSMTP)
        self.assertEqual(dispatcher.notify("DailyVM", LastResult.FAILED), NotificationStatus.FAILED)
        self.assertEqual(FakeSMTP.instances, [])

    def test_not_configured(self) -> None:
        for config in (MailConfig(), MailConfig(smtp_host="  ", sender="a@b", recipient="c@d")):
            with self.subTest(config=config):
                dispatcher = NotificationDispatcher(config, self.logger, smtp_factory=FakeSMTP)
                self.assertEqual(dispatcher.notify("DailyVM", LastResult.FAILED), NotificationStatus.NOT_CONFIGURED)
        self.assertEqual(FakeSMTP.instances, [])

    def test_delivery_error_is_swallowed(self) -> None:
        FakeSMTP.fail_with = smtplib.SMTPRecipientsRefused({"ops@example.com": (550, b"no such user")})
        dispatcher = NotificationDispatcher(MAIL, self.logger, smtp_factory=FakeSMTP)
        self.assertEqual(dispatcher.notify("DailyVM", LastResult.WARNING), NotificationStatus.FAILED)

    def test_connection_error_is_swallowed(self) -> None:
        def refuse(*args: object, **kwargs: object) -> FakeSMTP:
            raise ConnectionRefusedError("connection refused")

        dispatcher = NotificationDispatcher(MAIL, self.logger, smtp_factory=refuse)
        self.assertEqual(dispatcher.notify("DailyVM", LastResult.FAILED), NotificationStatus.FAILED)


if __name__ == "__main__":
    unittest.main()
