from __future__ import annotations

import io
import logging
import unittest

from jobretry.app_logging import JsonFormatter
from jobretry.auth import AuthSession
from jobretry.config import ServiceConfig
from jobretry.models import Credential, CredentialState, Secret
from jobretry.remote import AuthError


class FakeTokenClient:
    def __init__(self, error: AuthError | None = None) -> None:
        self.error = error
        self.requests: list[tuple[str, str]] = []

    def request_token(self, username: str, password: Secret) -> Credential:
        self.requests.append((username, password.reveal()))
        if self.error is not None:
            raise self.error
        return Credential(token=Secret("issued-token"))


SERVICE = ServiceConfig(base_url="https://vbr.example.com:9419", username="svc", password=Secret("hunter2"))


class AuthSessionTest(unittest.TestCase):
    def setUp(self) -> None:
        self.stream = io.StringIO()
        self.logger = logging.getLogger("test_jobretry_auth")
        self.logger.handlers.clear()
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False
        handler = logging.StreamHandler(self.stream)
        handler.setFormatter(JsonFormatter())
        self.logger.addHandler(handler)

    def test_authenticate_once(self) -> None:
        client = FakeTokenClient()
        session = AuthSession(client, SERVICE, self.logger)
        self.assertEqual(session.state, CredentialState.UNOBTAINED)

        first = session.authenticate()
        second = session.authenticate()

        self.assertIs(first, second)
        self.assertEqual(client.requests, [("svc", "hunter2")])
        self.assertEqual(session.state, CredentialState.VALID)
        self.assertIs(session.credential, first)

    def test_credential_before_authenticate(self) -> None:
        session = AuthSession(FakeTokenClient(), SERVICE, self.logger)
        with self.assertRaises(AuthError):
            _ = session.credential

    def test_failure_propagates(self) -> None:
        session = AuthSession(FakeTokenClient(AuthError("authenticate failed: HTTP 401")), SERVICE, self.logger)
        with self.assertRaises(AuthError):
            session.authenticate()
        self.assertEqual(session.state, CredentialState.UNOBTAINED)
        self.assertIn("auth_failed", self.stream.getvalue())

    def test_secrets_never_logged(self) -> None:
        session = AuthSession(FakeTokenClient(), SERVICE, self.logger)
        session.authenticate()
        output = self.stream.getvalue()
        self.assertIn("auth_succeeded", output)
        self.assertIn("svc", output)
        self.assertNotIn("hunter2", output)
        self.assertNotIn("issued-token", output)

    def test_discard(self) -> None:
        session = AuthSession(FakeTokenClient(), SERVICE, self.logger)
        session.authenticate()
        session.discard()
        self.assertEqual(session.state, CredentialState.UNOBTAINED)


if __name__ == "__main__":
    unittest.main()
