from __future__ import annotations

import logging

from .app_logging import log_with_fields
from .config import ServiceConfig
from .models import Credential, CredentialState
from .remote import AuthError, BackupServiceClient


class AuthSession:
    """Owns the single bearer credential of a run.

    The exchange happens at most once; a credential the service later rejects
    surfaces as a per-call error and is never refreshed here.
    """

    def __init__(self, client: BackupServiceClient, service_config: ServiceConfig, logger: logging.Logger) -> None:
        self.client = client
        self.service_config = service_config
        self.logger = logger
        self._credential: Credential | None = None

    @property
    def state(self) -> CredentialState:
        if self._credential is None:
            return CredentialState.UNOBTAINED
        return self._credential.state

    @property
    def credential(self) -> Credential:
        if self._credential is None:
            raise AuthError("session is not authenticated")
        return self._credential

    def authenticate(self) -> Credential:
        if self._credential is not None:
            return self._credential

        log_with_fields(
            self.logger,
            logging.INFO,
            "auth_started",
            endpoint=self.service_config.base_url,
            username=self.service_config.username,
        )
        try:
            credential = self.client.request_token(self.service_config.username, self.service_config.password)
        except AuthError as exc:
            log_with_fields(
                self.logger,
                logging.ERROR,
                "auth_failed",
                endpoint=self.service_config.base_url,
                username=self.service_config.username,
                error=str(exc),
            )
            raise

        self._credential = credential
        log_with_fields(
            self.logger,
            logging.INFO,
            "auth_succeeded",
            endpoint=self.service_config.base_url,
            username=self.service_config.username,
            expires_at=credential.expires_at.isoformat() if credential.expires_at else None,
        )
        return credential

    def discard(self) -> None:
        self._credential = None
