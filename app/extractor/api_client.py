from __future__ import annotations

import json
from typing import Any, Optional

import requests

from . import config
from .error_codes import ErrorCode
from .errors import BackendError
from .logging_utils import _extractor_event

ASSIGN_JOB_PATH = "/app/getnextapp"
REPORT_PROFILE_PATH = "/app/sethtml"
REPORT_COMPANY_PATH = "/app/setcompanyhtml"
SYNC_ACCOUNT_PATH = "/app/getdataapp"
LOG_PATH = "/app/log"


def _decode_error_body(text: str) -> Optional[dict[str, Any]]:
    try:
        payload = json.loads(text)
    except (TypeError, ValueError):
        return None
    return payload if isinstance(payload, dict) else None


class BackendClient:
    """Thin ``requests`` wrapper around the backend request endpoint."""

    def __init__(
        self,
        url: str | None = None,
        *,
        token: str | None = None,
        timeout: float | None = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url if url is not None else config.API_REQUEST_URL
        self.token = token if token is not None else config.API_TOKEN
        self.timeout = timeout if timeout is not None else config.API_TIMEOUT_SECONDS
        self.session = session or requests.Session()
        self.session.headers.update(config.COMMON_HEADERS)
        if self.token:
            self.session.headers["Authorization"] = f"Bearer {self.token}"

    def call(self, path: str, args: dict[str, Any]) -> Any:
        """POST ``{"path", "args"}`` and return the decoded JSON response."""

        try:
            resp = self.session.post(self.url, json={"path": path, "args": args}, timeout=self.timeout)
        except (requests.Timeout, requests.ConnectionError) as exc:
            _extractor_event("error", phase="backend", kind="network", path=path, error=str(exc))
            raise BackendError(ErrorCode.NETWORK, str(exc)) from exc
        except requests.RequestException as exc:
            _extractor_event("error", phase="backend", kind="request_failed", path=path, error=repr(exc))
            raise BackendError(ErrorCode.NETWORK, str(exc) or exc.__class__.__name__) from exc

        if resp.status_code >= 400:
            payload = _decode_error_body(resp.text)
            _extractor_event(
                "error",
                phase="backend",
                kind="rejected",
                path=path,
                http_status=resp.status_code,
                payload=payload,
            )
            message = resp.text[:200] if payload is None else str(payload)
            raise BackendError(
                ErrorCode.BACKEND_REJECTED,
                message,
                payload=payload,
                http_status=resp.status_code,
            )

        try:
            return resp.json()
        except ValueError as exc:
            raise BackendError(
                ErrorCode.BACKEND_MALFORMED,
                f"Unparsable response from {path}",
                http_status=resp.status_code,
            ) from exc


class BackendApi:
    """Typed view of the job-assignment backend operations."""

    def __init__(self, client: BackendClient) -> None:
        self.client = client

    def assign_job(self, identifier: Optional[str]) -> Any:
        return self.client.call(ASSIGN_JOB_PATH, {"identifier": identifier})

    def report_result(
        self,
        identifier: Optional[str],
        reference: int,
        status: str,
        distance: int,
        in_id: Optional[str],
        enc_id: Optional[str],
        pub_id: Optional[str],
        html: str,
    ) -> Any:
        return self.client.call(
            REPORT_PROFILE_PATH,
            {
                "identifier": identifier,
                "reference": reference,
                "status": status,
                "connectionlevel": distance,
                "inlinkedinid": in_id,
                "enclinkedinid": enc_id,
                "publinkedinid": pub_id,
                "html": html,
            },
        )

    def report_company_result(
        self,
        identifier: Optional[str],
        reference: int,
        status: str,
        company_profile: Optional[str],
        html: str,
    ) -> Any:
        return self.client.call(
            REPORT_COMPANY_PATH,
            {
                "identifier": identifier,
                "reference": reference,
                "status": status,
                "companyprofile": company_profile,
                "html": html,
            },
        )

    def sync_account(self, identifier: Optional[str]) -> Any:
        return self.client.call(SYNC_ACCOUNT_PATH, {"identifier": identifier})

    def log_message(
        self,
        user: Optional[str],
        full_name: Optional[str],
        in_id: Optional[str],
        enc_id: Optional[str],
        message: str,
    ) -> Any:
        return self.client.call(
            LOG_PATH,
            {
                "user": user,
                "fullname": full_name,
                "inlinkedinid": in_id,
                "enclinkedinid": enc_id,
                "message": message,
            },
        )


__all__ = ["BackendClient", "BackendApi"]
