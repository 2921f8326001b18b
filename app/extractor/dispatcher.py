"""Backend job assignment, result reporting and account sync."""
from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

from . import config
from .api_client import BackendApi
from .error_codes import ErrorCode
from .errors import BackendError
from .logging_utils import _extractor_event
from .models import Account, ExtractionJob, ExtractionState, Notification, ReportStatus
from .notifier import Notifier
from .session import SessionStore

StopCallback = Callable[[bool], Awaitable[None]]


def _is_well_formed(response: Any) -> bool:
    if not isinstance(response, dict):
        return False
    kind = response.get("RequestType")
    reference = response.get("Reference")
    return (
        isinstance(kind, str)
        and len(kind) > 0
        and isinstance(reference, int)
        and not isinstance(reference, bool)
    )


class JobDispatcher:
    def __init__(
        self,
        api: BackendApi,
        account: Account,
        session: SessionStore,
        state: ExtractionState,
        notifier: Notifier,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.api = api
        self.account = account
        self.session = session
        self.state = state
        self.notifier = notifier
        self.clock = clock
        self._stop: Optional[StopCallback] = None

    def bind(self, stop: StopCallback) -> None:
        """Attach the engine's stop routine used when a report cannot be posted."""

        self._stop = stop

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        return await asyncio.to_thread(fn, *args)

    async def request_next_job(self) -> Optional[ExtractionJob]:
        """Ask the backend for the next job; ``None`` when there is nothing to do."""

        try:
            response = await self._call(self.api.assign_job, self.account.encoded_id)
            if not _is_well_formed(response):
                raise BackendError(
                    ErrorCode.BACKEND_MALFORMED,
                    "Error getting the next profile to extract",
                    payload={"Message": "Error getting the next profile to extract"},
                )
        except BackendError as exc:
            await self._handle_assignment_error(exc)
            return None

        job = ExtractionJob.from_response(response)
        self.state.current_target = None
        _extractor_event(
            "state",
            phase="assign",
            reference=job.reference,
            kind=job.kind,
            full=job.extract_full_profile,
        )
        return job

    async def _handle_assignment_error(self, exc: BackendError) -> None:
        if exc.payload is None:
            _extractor_event(
                "error",
                phase="assign",
                kind="unparsable",
                error_code=exc.error_code,
                error=str(exc),
            )
            return

        if exc.backend_code == config.QUOTA_ERROR_CODE:
            if not self.state.quota_waiting:
                self.state.quota_waiting = True
                _extractor_event("state", phase="assign", kind="quota_exhausted", error_code=ErrorCode.QUOTA_EXHAUSTED)
            return

        message = exc.user_message
        if message:
            await self.notifier.surface(message)
        else:
            _extractor_event("error", phase="assign", kind="no_message", payload=exc.payload)

    async def report_result(
        self,
        reference: int,
        status: ReportStatus,
        distance: int,
        in_id: Optional[str],
        enc_id: Optional[str],
        pub_id: Optional[str],
        html: str = "",
    ) -> bool:
        _extractor_event("state", phase="report", reference=reference, status=status.value, distance=distance)
        return await self._post(
            self.api.report_result,
            self.account.encoded_id,
            reference,
            status.value,
            distance,
            in_id,
            enc_id,
            pub_id,
            html,
        )

    async def report_company_result(
        self,
        reference: int,
        status: ReportStatus,
        company_profile: Optional[str],
        html: str = "",
    ) -> bool:
        _extractor_event("state", phase="report_company", reference=reference, status=status.value)
        return await self._post(
            self.api.report_company_result,
            self.account.encoded_id,
            reference,
            status.value,
            company_profile,
            html,
        )

    async def _post(self, fn: Callable[..., Any], *args: Any) -> bool:
        try:
            await self._call(fn, *args)
            await self.sync_account_state()
            return True
        except BackendError as exc:
            await self._handle_report_error(exc)
            return False

    async def _handle_report_error(self, exc: BackendError) -> None:
        if exc.backend_code == config.BLOCKED_ACCOUNT_ERROR_CODE:
            _extractor_event("error", phase="report", kind="account_blocked", error_code=ErrorCode.ACCOUNT_BLOCKED)
            self.session.clear_current_user()
            self.state.last_activity_at = None

        if self._stop is not None:
            await self._stop(False)
        await self.notifier.surface(exc.user_message or str(exc))

    async def sync_account_state(self) -> None:
        """Merge backend counters, pacing bounds and notifications into local state."""

        data = await self._call(self.api.sync_account, self.account.encoded_id)
        if not isinstance(data, dict):
            raise BackendError(ErrorCode.BACKEND_MALFORMED, "Unexpected account data")

        account = self.account
        account.max_daily_profiles = data.get("MaxDailyRequest", account.max_daily_profiles)
        account.today_profiles = data.get("RequestsToday", account.today_profiles)
        account.ok_profiles = data.get("OkToday", account.ok_profiles)
        account.distance_errors = data.get("DistanceErrorsToday", account.distance_errors)
        account.unavailable_profiles = data.get("UnavailableErrorsToday", account.unavailable_profiles)
        account.other_errors = data.get("OtherErrorsToday", account.other_errors)
        account.min_request_interval = data.get("MinRequestInterval", account.min_request_interval)
        account.max_request_interval = data.get("MaxRequestInterval", account.max_request_interval)

        # Requests that never reported back count as other errors.
        # FIXME: the trailing -1 may stand for the in-flight request or be an off-by-one.
        difference = (account.today_profiles or 0) - (
            account.ok_profiles + account.distance_errors + account.unavailable_profiles + account.other_errors
        ) - 1
        if difference > 0:
            account.other_errors += difference

        user = self.session.current_user
        if user is None:
            return

        user.balance = data.get("Balance", user.balance)
        user.completed = data.get("Completed", user.completed)
        user.paypal_email = data.get("PaypalEmail", user.paypal_email)
        user.btc_address = data.get("BTCAddress", user.btc_address)
        user.referral_link = data.get("ReferralLink", user.referral_link)
        user.usd_per_1000 = data.get("USDx1000", user.usd_per_1000)
        user.last_update = self.clock()

        known = {n.id for n in user.notifications}
        for item in data.get("Notifications") or []:
            if not isinstance(item, dict) or item.get("Id") in known:
                continue
            user.notifications.append(
                Notification(item.get("Id"), item.get("Message", ""), item.get("StartDate"), False)
            )
            known.add(item.get("Id"))


__all__ = ["JobDispatcher"]
