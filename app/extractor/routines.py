"""Per-job extraction flows: resolve the target, drive the page, route the result."""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

from . import config
from .channel import CommandChannel
from .dispatcher import JobDispatcher
from .errors import ExtractionStopped, InPageError, ReplyShapeError
from .events import Broadcast
from .logging_utils import _extractor_event
from .models import (
    Account,
    ExtractionJob,
    ExtractionOutcome,
    ExtractionState,
    NetworkInfo,
    ReportStatus,
)
from .utils import (
    clean_profile_id,
    company_path,
    connection_level_from_network,
    needs_canonical_company,
    needs_canonical_profile,
    path_after_host,
)

LogoutStop = Callable[[], Awaitable[None]]

# Error value the page script answers with after ``stopExtraction``.
STOPPED_REPLY = "stopped"


def _first_reply(action: str, reply: Any) -> Any:
    if not isinstance(reply, (list, tuple)) or not reply:
        raise ReplyShapeError(action, reply)
    return reply[0]


def _reply_url(reply: Any) -> str:
    payload = _first_reply("getCurrentUrl", reply)
    if not isinstance(payload, dict) or not isinstance(payload.get("url"), str):
        raise ReplyShapeError("getCurrentUrl", reply)
    return payload["url"]


def _distance_value(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return -1


class ExtractionRoutines:
    def __init__(
        self,
        channel: CommandChannel,
        dispatcher: JobDispatcher,
        account: Account,
        state: ExtractionState,
        *,
        base_url: str = config.BASE_URL,
        max_distance: int | None = None,
        poll_attempts: int | None = None,
        poll_interval: float | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.channel = channel
        self.dispatcher = dispatcher
        self.account = account
        self.state = state
        self.base_url = base_url
        self.max_distance = config.MAX_EXTRACTION_DISTANCE if max_distance is None else max_distance
        self.poll_attempts = config.LOCATOR_POLL_ATTEMPTS if poll_attempts is None else poll_attempts
        self.poll_interval = config.LOCATOR_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        self._sleep = sleep
        self._logout_stop: Optional[LogoutStop] = None
        self.url_to_extract: Broadcast[str] = Broadcast("url_to_extract", config.DEFAULT_PAGE)

    def bind(self, logout_stop: LogoutStop) -> None:
        self._logout_stop = logout_stop

    async def _stop_by_logout(self) -> None:
        if self._logout_stop is not None:
            await self._logout_stop()

    # Profiles

    async def read_network_info(self, profile_id: str) -> Optional[NetworkInfo]:
        """Look up connection distance and counts; ``None`` when unavailable."""

        try:
            reply = await self.channel.send("readNetworkInfo", {"profile": profile_id})
            info = _first_reply("readNetworkInfo", reply)
            if not isinstance(info, dict):
                raise ReplyShapeError("readNetworkInfo", reply)

            if "error" in info:
                if info.get("status") == 401:
                    return NetworkInfo(status=401)
                return None

            urn_tail = str(info["entityUrn"]).split(":")[-1]
            return NetworkInfo(
                distance=connection_level_from_network((info.get("distance") or {}).get("value")),
                followers=info.get("followersCount") or 0,
                following=bool(info.get("following")),
                connections=info.get("connectionsCount") or 0,
                encoded_id=f"/in/{urn_tail}",
                status=200,
            )
        except Exception as exc:  # noqa: BLE001
            _extractor_event("error", phase="network_info", profile=profile_id, error=repr(exc))
            return None

    async def extract_profile(self, job: ExtractionJob) -> None:
        """Run one profile job end to end. Errors propagate after an ``ERROR`` report."""

        has_primary = bool(job.in_profile)
        network_info: Optional[NetworkInfo] = None
        if has_primary:
            network_info = await self.read_network_info(clean_profile_id(job.in_profile))
            url = self.base_url + job.in_profile
        elif job.enc_profile:
            url = self.base_url + job.enc_profile
        elif job.sales_nav_profile:
            url = self.base_url + job.sales_nav_profile
        else:
            url = self.base_url + (job.pub_profile or "")

        if network_info is not None and network_info.logged_out:
            await self._stop_by_logout()
            return

        if has_primary and network_info is None:
            await self.dispatcher.report_result(
                job.reference,
                ReportStatus.UNAVAILABLE,
                -1,
                job.in_profile,
                job.enc_profile,
                job.pub_profile,
                "",
            )
            return

        await self._profile_extraction(url, job, network_info)

    async def _profile_extraction(
        self, url: str, job: ExtractionJob, network_info: Optional[NetworkInfo]
    ) -> None:
        has_primary = bool(job.in_profile)
        in_id, enc_id, pub_id = job.in_profile, job.enc_profile, job.pub_profile
        distance = -1
        if has_primary and network_info is not None:
            enc_id = network_info.encoded_id
            distance = network_info.distance

        async def _report(status: ReportStatus, html: str = "") -> None:
            await self.dispatcher.report_result(job.reference, status, distance, in_id, enc_id, pub_id, html)

        try:
            outcome = await self._navigate_and_extract_profile(url, job, distance)
            if outcome.error == STOPPED_REPLY:
                raise ExtractionStopped()
            if outcome.error:
                lowered = outcome.error.lower()
                if "unavailable" in lowered:
                    await _report(ReportStatus.UNAVAILABLE)
                elif "distance" in lowered:
                    await _report(ReportStatus.DISTANCE_ERROR)
                elif "logout" in lowered:
                    if self.state.busy:
                        await self._stop_by_logout()
                    raise InPageError(outcome.error)
                else:
                    raise InPageError(outcome.error)
            elif outcome.html:
                if not has_primary:
                    in_id = outcome.in_id
                    if not enc_id and outcome.enc_id:
                        enc_id = outcome.enc_id
                    distance = _distance_value(outcome.distance)
                    if distance > self.max_distance:
                        await _report(ReportStatus.DISTANCE_ERROR)
                        return
                await _report(ReportStatus.OK, outcome.html)
            else:
                raise InPageError("Error")
        except Exception:
            await _report(ReportStatus.ERROR)
            raise

    async def _navigate_and_extract_profile(
        self, url: str, job: ExtractionJob, distance: int
    ) -> ExtractionOutcome:
        self.state.needs_closing_confirmation = False
        self.state.busy = False
        await self.channel.navigate(url)

        attempts = 0
        while needs_canonical_profile(self.state.current_target) and attempts < self.poll_attempts:
            await self._sleep(self.poll_interval)
            attempts += 1
            path = path_after_host(_reply_url(await self.channel.send("getCurrentUrl", {})))
            if path is None:
                _extractor_event("state", phase="locator_poll", kind="left_site", attempts=attempts)
                break
            self.state.current_target = path

        self.url_to_extract.publish(self.base_url + (self.state.current_target or ""))

        if not self.state.owns(job):
            raise ExtractionStopped()

        self.state.needs_closing_confirmation = True
        self.state.busy = True
        extra = config.PROFILE_DEEP_EXTRA_SECONDS if job.extract_full_profile else 0.0
        reply = await self.channel.send(
            "extractProfile",
            {
                "distance": distance,
                "extractFullProfile": job.extract_full_profile,
                "appData": config.extraction_settings(),
            },
            extra,
        )
        return ExtractionOutcome.from_reply(_first_reply("extractProfile", reply))

    # Companies

    async def extract_company(self, job: ExtractionJob) -> None:
        url = self.base_url + (job.company_profile or "")
        profile = job.company_profile

        async def _report(status: ReportStatus, html: str = "") -> None:
            await self.dispatcher.report_company_result(job.reference, status, profile, html)

        try:
            self.state.current_target = profile
            outcome = await self._navigate_and_extract_company(url, job)
            if outcome.error == STOPPED_REPLY:
                raise ExtractionStopped()
            if outcome.error:
                lowered = outcome.error.lower()
                if "unavailable" in lowered:
                    await _report(ReportStatus.UNAVAILABLE)
                elif "logout" in lowered:
                    if self.state.busy:
                        await self._stop_by_logout()
                    raise InPageError(outcome.error)
                else:
                    raise InPageError(outcome.error)
            elif outcome.html:
                await _report(ReportStatus.OK, outcome.html)
            else:
                raise InPageError("Error")
        except Exception:
            await _report(ReportStatus.ERROR)
            raise

    async def _navigate_and_extract_company(self, url: str, job: ExtractionJob) -> ExtractionOutcome:
        self.state.needs_closing_confirmation = False
        self.state.busy = False
        await self.channel.navigate(url)

        attempts = 0
        while needs_canonical_company(self.state.current_target) and attempts < self.poll_attempts:
            await self._sleep(self.poll_interval)
            attempts += 1
            path = company_path(_reply_url(await self.channel.send("getCurrentUrl", {})))
            if path is None:
                _extractor_event("state", phase="locator_poll", kind="left_company", attempts=attempts)
                break
            self.state.current_target = path

        self.url_to_extract.publish(self.base_url + (self.state.current_target or ""))

        if not self.state.owns(job):
            raise ExtractionStopped()

        self.state.needs_closing_confirmation = True
        self.state.busy = True
        extra = config.COMPANY_DEEP_EXTRA_SECONDS if job.extract_full_profile else 0.0
        reply = await self.channel.send(
            "extractCompany",
            {"extractFullProfile": job.extract_full_profile, "appData": config.extraction_settings()},
            extra,
        )
        return ExtractionOutcome.from_reply(_first_reply("extractCompany", reply))


__all__ = ["ExtractionRoutines"]
