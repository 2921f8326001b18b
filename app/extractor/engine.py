"""Extraction state machine: one job at a time, paced, restartable."""
from __future__ import annotations

import asyncio
import re
import time
from typing import Any, Awaitable, Callable, Coroutine, Optional

from . import config
from .channel import CommandChannel
from .dispatcher import JobDispatcher
from .error_codes import ErrorCode
from .errors import ExtractionStopped, ExtractorError, ReplyShapeError
from .events import Broadcast
from .logging_utils import _extractor_event
from .models import Account, ExtractionJob, ExtractionState, ExtractionStatus, ReportStatus
from .notifier import Notifier
from .pacing import PacingController
from .routines import ExtractionRoutines
from .session import SessionStore
from .utils import log_line


class ExtractionEngine:
    """Drives the job loop for one account.

    Job loop: request a job, hand it to the routines, then arm a single
    deferred attempt after the pacing delay. ``stop`` and ``start`` may be
    called at any time from the control surface or the watchdog.
    """

    def __init__(
        self,
        account: Account,
        session: SessionStore,
        state: ExtractionState,
        channel: CommandChannel,
        dispatcher: JobDispatcher,
        routines: ExtractionRoutines,
        pacing: PacingController,
        notifier: Notifier,
        *,
        stop_url_patterns: Optional[list[str]] = None,
        default_page: str = config.DEFAULT_PAGE,
        logout_fragment: str = config.LOGOUT_URL_FRAGMENT,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.account = account
        self.session = session
        self.state = state
        self.channel = channel
        self.dispatcher = dispatcher
        self.routines = routines
        self.pacing = pacing
        self.notifier = notifier
        self.default_page = default_page
        self.logout_fragment = logout_fragment
        patterns = config.STOP_URL_PATTERNS if stop_url_patterns is None else stop_url_patterns
        self._stop_patterns = [re.compile(p, re.IGNORECASE) for p in patterns]
        self.clock = clock
        self._sleep = sleep
        self._timer: Optional[asyncio.Task] = None
        self._pass: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()
        self._epoch = 0
        self._reloaded_page = False

        self.status: Broadcast[ExtractionStatus] = Broadcast("status", ExtractionStatus.STOPPED)

        dispatcher.bind(self.stop)
        routines.bind(self.stop_by_logout)
        channel.add_navigation_listener(self.on_navigation)

    # Control

    async def start(self) -> None:
        """Begin (or resume) extraction.

        While a loop pass or a job is in flight this only clears the quota
        flag; the running pass arms the next attempt itself.
        """

        if self.state.is_extracting and (self.state.current_job is not None or self.in_pass):
            self.state.quota_waiting = False
            job = self.state.current_job
            _extractor_event("state", phase="control", kind="start_ignored", reference=job.reference if job else None)
            return
        self.restart()

    def restart(self) -> None:
        self._epoch += 1
        self.state.is_extracting = True
        self._publish_status(ExtractionStatus.EXTRACTING)
        self.state.quota_waiting = False
        self.state.busy = True
        self._spawn(self.extract_next())

    async def stop(self, should_restart: bool = True) -> None:
        """Stop extraction, cancelling in-page work; restart afterwards when asked."""

        self._epoch += 1
        self.state.is_extracting = False
        self._publish_status(ExtractionStatus.STOPPED)
        self._disarm()
        self.state.current_job = None
        self.state.needs_closing_confirmation = False
        try:
            if self.state.busy:
                await self.channel.send("stopExtraction", {})
        except Exception as exc:  # noqa: BLE001
            # The page script stopped answering: only a reload gets it back.
            _extractor_event("error", phase="stop", kind="cancel_failed", error=repr(exc))
            self.state.busy = False
            await self.channel.reload()
        self.state.busy = False
        _extractor_event("state", phase="control", kind="stopped", restart=should_restart)
        if should_restart:
            self.restart()

    async def stop_by_logout(self) -> None:
        await self.stop(False)
        _extractor_event("state", phase="control", kind="logged_out", error_code=ErrorCode.LOGGED_OUT)
        self.session.clear_account(self.account.tab_id)
        self.account.clear_identity()
        self.state.last_activity_at = None
        await self.notifier.surface("Extraction stopped due to LinkedIn logout")
        await self.channel.navigate(self.default_page)

    async def close(self) -> None:
        self._disarm()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # Job loop

    async def extract_next(self) -> None:
        """One pass of the job loop."""

        task = asyncio.current_task()
        self._pass = task
        try:
            await self._extract_next()
        finally:
            if self._pass is task:
                self._pass = None

    async def _extract_next(self) -> None:
        self.state.is_extracting = True
        self._publish_status(ExtractionStatus.EXTRACTING)
        self.state.needs_closing_confirmation = True

        self._disarm()
        remaining = self.pacing.republish()
        if remaining > 0:
            self._arm(remaining)
            return

        account = self.account
        if not account.logged_in:
            await self.stop(False)
            await self.notifier.surface("No LinkedIn User logged in")
            return

        if not account.today_profiles:
            account.today_profiles = 0

        epoch = self._epoch
        if account.today_profiles >= account.max_daily_profiles and self.state.quota_waiting:
            # Pick up a new day's quota while slow-polling.
            try:
                await self.dispatcher.sync_account_state()
            except ExtractorError as exc:
                _extractor_event("error", phase="quota_sync", error_code=exc.error_code, error=str(exc))
            if epoch != self._epoch:
                return

        if (account.today_profiles or 0) >= account.max_daily_profiles:
            if not self.state.quota_waiting:
                self.state.quota_waiting = True
                _extractor_event(
                    "state",
                    phase="quota",
                    error_code=ErrorCode.QUOTA_EXHAUSTED,
                    today=account.today_profiles,
                    limit=account.max_daily_profiles,
                )
                await self.notifier.surface("Max number of daily requests reached", should_log=False)
            await self.continue_loop()
            return

        self.state.quota_waiting = False
        job = await self.dispatcher.request_next_job()
        if epoch != self._epoch or not self.state.is_extracting:
            if job is not None:
                _extractor_event("state", phase="assign", kind="released", reference=job.reference)
                await self._release_job(job)
            return
        if job is None:
            await self.continue_loop()
            return

        account.today_profiles = (account.today_profiles or 0) + 1
        self.state.current_job = job
        await self._run_job(job)

    async def _run_job(self, job: ExtractionJob) -> None:
        if job.is_company:
            routine: Callable[[ExtractionJob], Coroutine[Any, Any, None]] = self.routines.extract_company
        elif job.has_profile_locator:
            routine = self.routines.extract_profile
        else:
            _extractor_event("error", phase="dispatch", kind="no_locator", reference=job.reference, request_kind=job.kind)
            await self.continue_loop(job)
            return

        try:
            await routine(job)
        except ExtractionStopped:
            return
        except ReplyShapeError as exc:
            _extractor_event("error", phase="job", kind="reply_shape", reference=job.reference, error=str(exc))
        except Exception as exc:  # noqa: BLE001
            code = exc.error_code if isinstance(exc, ExtractorError) else ErrorCode.INTERNAL
            _extractor_event("error", phase="job", kind="failed", reference=job.reference, error_code=code)
            await self.notifier.surface(exc)
        await self.continue_loop(job)

    async def _release_job(self, job: ExtractionJob) -> None:
        # Assigned after a stop: hand it back to the backend as failed.
        if job.is_company:
            await self.dispatcher.report_company_result(job.reference, ReportStatus.ERROR, job.company_profile)
        else:
            await self.dispatcher.report_result(
                job.reference, ReportStatus.ERROR, -1, job.in_profile, job.enc_profile, job.pub_profile
            )

    async def continue_loop(self, job: Optional[ExtractionJob] = None) -> None:
        """Record activity and arm the next attempt after the pacing delay.

        When ``job`` is given, the call is ignored unless that job is still the
        engine's current one.
        """

        self.state.last_activity_at = self.clock()
        if not self.state.is_extracting:
            return
        if job is not None and self.state.current_job is not job:
            _extractor_event("state", phase="continue", kind="stale_job", reference=job.reference)
            return

        self.state.current_job = None
        delay = self.pacing.schedule_next(self.account, self.state.quota_waiting)
        self._arm(delay)

    # Navigation observation

    async def on_navigation(self, url: str) -> None:
        if not self.account.logged_in and self.logout_fragment not in url:
            await self.refresh_session()

        if any(p.search(url) for p in self._stop_patterns):
            self.session.clear_account(self.account.tab_id)
            self.account.clear_identity()
            if self.state.busy:
                self.state.busy = False
                await self.stop_by_logout()

        target = self.state.current_target
        if self.state.busy and self.state.current_job is not None and target and target not in url:
            _extractor_event(
                "state",
                phase="navigation",
                kind="page_changed",
                url=url,
                target=target,
                reference=self.state.current_job.reference,
            )
            self.state.current_job = None
            await self.continue_loop()

    async def refresh_session(self) -> bool:
        """Read the signed-in identity from the page and sync the account."""

        try:
            reply = await self.channel.send("getMeInfo", {})
            result = reply[0] if reply else None
            if isinstance(result, dict) and "miniProfile" in result:
                mini = result["miniProfile"]
                urn_tail = str(mini["entityUrn"]).split(":")[-1]
                self.account.full_name = f"{mini.get('firstName', '')} {mini.get('lastName', '')}".strip()
                self.account.primary_id = f"/in/{mini['publicIdentifier']}"
                self.account.encoded_id = f"/in/{urn_tail}"
                self.account.logged_in = True
                await self.dispatcher.sync_account_state()
                log_line(f"[EXTRACTOR] Signed in as {self.account.full_name} ({self.account.primary_id})")
                return True
            self.account.clear_identity()
            return False
        except Exception as exc:  # noqa: BLE001
            _extractor_event("error", phase="session", kind="refresh_failed", error=repr(exc))
            if not self._reloaded_page:
                self._reloaded_page = True
                await self.channel.reload()
            return False

    # Internals

    def _publish_status(self, status: ExtractionStatus) -> None:
        if self.status.value != status:
            self.status.publish(status)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _extractor_event("error", phase="loop", kind="task_failed", error_code=ErrorCode.INTERNAL, error=repr(exc))

    def _arm(self, delay: float) -> None:
        self._disarm()
        self._timer = self._spawn(self._fire_after(delay))

    def _disarm(self) -> None:
        timer = self._timer
        self._timer = None
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    async def _fire_after(self, delay: float) -> None:
        await self._sleep(delay)
        if self._timer is asyncio.current_task():
            self._timer = None
        if self.state.is_extracting:
            await self.extract_next()

    @property
    def in_pass(self) -> bool:
        return self._pass is not None and not self._pass.done()

    @property
    def is_armed(self) -> bool:
        return self._timer is not None and not self._timer.done()


__all__ = ["ExtractionEngine"]
