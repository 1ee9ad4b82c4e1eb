from __future__ import annotations

from typing import Any
from urllib.parse import quote

import requests

from .config import ServiceConfig
from .models import Credential, CurrentState, Job, JobStatusSnapshot, LastResult, Secret
from .utils import expiry_from_seconds

API_VERSION_HEADER = "x-api-version"

_IDLE_STATES = {"inactive", "idle", "stopped", "disabled"}
_RESULTS_BY_NAME = {result.value.lower(): result for result in LastResult if result is not LastResult.UNKNOWN}


class RemoteError(RuntimeError):
    pass


class AuthError(RemoteError):
    pass


class InventoryFetchError(RemoteError):
    pass


class StatusFetchError(RemoteError):
    pass


class RetryActionError(RemoteError):
    pass


def parse_current_state(value: object) -> CurrentState:
    text = str(value or "").strip().lower()
    if text == "running":
        return CurrentState.RUNNING
    if text in _IDLE_STATES:
        return CurrentState.IDLE
    return CurrentState.UNKNOWN


def parse_last_result(value: object) -> LastResult:
    if value is None:
        return LastResult.UNKNOWN
    return _RESULTS_BY_NAME.get(str(value).strip().lower(), LastResult.UNKNOWN)


class BackupServiceClient:
    """Thin `requests` wrapper over the backup-control REST API.

    Every failure is re-raised as the `RemoteError` subclass belonging to the
    operation in progress, so callers only ever handle the domain taxonomy.
    """

    def __init__(self, service_config: ServiceConfig, http: requests.Session | None = None) -> None:
        self.service_config = service_config
        self.base_url = service_config.base_url.rstrip("/")
        self.http = http if http is not None else requests.Session()
        self.http.verify = service_config.verify_tls
        self.http.headers.update(
            {
                API_VERSION_HEADER: service_config.api_version,
                "Accept": "application/json",
            }
        )

    def close(self) -> None:
        self.http.close()

    def _request(
        self,
        method: str,
        path: str,
        error_cls: type[RemoteError],
        context: str,
        credential: Credential | None = None,
        **kwargs: Any,
    ) -> requests.Response:
        headers: dict[str, str] = {}
        if credential is not None:
            headers["Authorization"] = credential.authorization_header()
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            return self.http.request(
                method,
                url,
                headers=headers,
                timeout=self.service_config.timeout_seconds,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise error_cls(f"{context} failed: {exc}") from exc

    def _require_ok(self, response: requests.Response, context: str, error_cls: type[RemoteError]) -> None:
        if not response.ok:
            detail = (response.text or "").strip()[:200]
            raise error_cls(f"{context} failed: HTTP {response.status_code} {detail}".rstrip())

    def _json(self, response: requests.Response, context: str, error_cls: type[RemoteError]) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise error_cls(f"{context} returned malformed JSON") from exc
        if not isinstance(payload, dict):
            raise error_cls(f"{context} returned unexpected payload type {type(payload).__name__}")
        return payload

    def request_token(self, username: str, password: Secret) -> Credential:
        context = "authenticate"
        response = self._request(
            "POST",
            "api/oauth2/token",
            AuthError,
            context,
            data={"grant_type": "password", "username": username, "password": password.reveal()},
        )
        self._require_ok(response, context, AuthError)
        payload = self._json(response, context, AuthError)
        token = payload.get("access_token")
        if not isinstance(token, str) or not token:
            raise AuthError(f"{context} response has no access_token")
        return Credential(
            token=Secret(token),
            token_type=str(payload.get("token_type") or "Bearer"),
            expires_at=expiry_from_seconds(payload.get("expires_in")),
        )

    def list_jobs_page(self, credential: Credential, skip: int, limit: int) -> tuple[list[Job], int | None]:
        context = "list jobs"
        response = self._request(
            "GET",
            "api/v1/jobs",
            InventoryFetchError,
            context,
            credential=credential,
            params={"skip": skip, "limit": limit},
        )
        self._require_ok(response, context, InventoryFetchError)
        payload = self._json(response, context, InventoryFetchError)
        data = payload.get("data")
        if not isinstance(data, list):
            raise InventoryFetchError(f"{context} response has no data list")

        jobs: list[Job] = []
        for idx, item in enumerate(data):
            if not isinstance(item, dict) or not item.get("id"):
                raise InventoryFetchError(f"{context} response item {skip + idx} has no id")
            jobs.append(Job(job_id=str(item["id"]), name=str(item.get("name") or item["id"])))

        pagination = payload.get("pagination")
        total = pagination.get("total") if isinstance(pagination, dict) else None
        return jobs, total if isinstance(total, int) else None

    def get_job_status(self, credential: Credential, job_id: str) -> JobStatusSnapshot:
        context = f"fetch status for job {job_id}"
        response = self._request(
            "GET",
            "api/v1/jobs/states",
            StatusFetchError,
            context,
            credential=credential,
            params={"idFilter": job_id},
        )
        if response.status_code == 404:
            return JobStatusSnapshot.not_found(job_id)
        self._require_ok(response, context, StatusFetchError)
        payload = self._json(response, context, StatusFetchError)
        data = payload.get("data")
        if not isinstance(data, list):
            raise StatusFetchError(f"{context} response has no data list")

        for item in data:
            if isinstance(item, dict) and str(item.get("id")) == job_id:
                return JobStatusSnapshot(
                    job_id=job_id,
                    current_state=parse_current_state(item.get("status")),
                    last_result=parse_last_result(item.get("lastResult")),
                )
        return JobStatusSnapshot.not_found(job_id)

    def start_job(self, credential: Credential, job_id: str) -> None:
        context = f"start job {job_id}"
        response = self._request(
            "POST",
            f"api/v1/jobs/{quote(job_id, safe='')}/start",
            RetryActionError,
            context,
            credential=credential,
            json={"performActiveFull": False},
        )
        self._require_ok(response, context, RetryActionError)
