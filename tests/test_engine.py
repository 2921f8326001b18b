from __future__ import annotations

import asyncio
import threading

import pytest

from app.extractor import config, logging_utils
from app.extractor.error_codes import ErrorCode
from app.extractor.errors import BackendError
from app.extractor.models import ExtractionStatus
from tests.fakes import Harness, account_data, make_harness, network_info, profile_job, settle, wait_until

LINKEDIN = "https://www.linkedin.com"


def _script_profile_page(h: Harness, html: str = "<html>jane</html>") -> None:
    h.surface.reply_with("readNetworkInfo", [network_info("ACoAAJANE", "DISTANCE_2")])
    h.surface.reply_with("getCurrentUrl", [{"url": f"{LINKEDIN}/in/jane-doe/"}])
    h.surface.reply_with("extractProfile", [{"html": html}])


def _statuses(h: Harness) -> list[str]:
    return [args[2] for args in h.api.reports()]


@pytest.mark.asyncio
async def test_happy_path_reports_then_arms_paced_attempt() -> None:
    h = make_harness()
    h.api.jobs = [profile_job(11, InProfile="/in/jane-doe")]
    _script_profile_page(h)
    statuses: list[ExtractionStatus] = []
    h.engine.status.subscribe(statuses.append)

    await h.engine.start()
    await wait_until(lambda: len(h.sleep.delays) == 1)

    assert _statuses(h) == ["OK"]
    delay = h.sleep.delays[0]
    assert 18.0 <= delay <= 26.0
    assert h.state.pacing.next_allowed_at == pytest.approx(h.clock.now + delay)
    assert h.state.last_activity_at == h.clock.now
    assert h.state.current_job is None
    assert h.engine.is_armed
    assert statuses == [ExtractionStatus.STOPPED, ExtractionStatus.EXTRACTING]
    assert h.stack.pacing.countdown.value == int(delay + 0.5)
    await h.close()


@pytest.mark.asyncio
async def test_next_job_waits_for_timer_release() -> None:
    h = make_harness()
    h.api.jobs = [profile_job(11, InProfile="/in/jane-doe"), profile_job(12, InProfile="/in/jane-doe")]
    _script_profile_page(h)

    await h.engine.start()
    await wait_until(lambda: len(h.sleep.delays) == 1)
    await settle()
    assert h.api.names().count("assign_job") == 1

    h.sleep.release()
    await wait_until(lambda: len(h.sleep.delays) == 2)

    assert h.api.names().count("assign_job") == 2
    assert [args[1] for args in h.api.reports()] == [11, 12]
    await h.close()


@pytest.mark.asyncio
async def test_restart_before_next_allowed_time_rearms_remaining_wait() -> None:
    h = make_harness()
    h.api.jobs = [profile_job(11, InProfile="/in/jane-doe")]
    _script_profile_page(h)

    await h.engine.start()
    await wait_until(lambda: len(h.sleep.delays) == 1)
    first_delay = h.sleep.delays[0]

    await h.engine.stop(False)
    assert not h.engine.is_armed
    h.clock.advance(5.0)
    await h.engine.start()
    await wait_until(lambda: len(h.sleep.delays) == 2)

    assert h.sleep.delays[1] == pytest.approx(first_delay - 5.0)
    assert h.api.names().count("assign_job") == 1
    assert h.stack.pacing.countdown.value == int(first_delay - 5.0 + 0.5)
    await h.close()


@pytest.mark.asyncio
async def test_daily_quota_switches_to_slow_poll_with_single_notice() -> None:
    h = make_harness()
    h.account.today_profiles = 100
    h.api.account = account_data(RequestsToday=100)

    await h.engine.start()
    await wait_until(lambda: len(h.sleep.delays) == 1)

    assert h.state.quota_waiting is True
    assert h.sleep.delays == [config.QUOTA_WAIT_MS / 1000.0]
    assert h.messages == ["Error: Max number of daily requests reached"]
    assert "log_message" not in h.api.names()
    assert "assign_job" not in h.api.names()

    h.sleep.release()
    await wait_until(lambda: len(h.sleep.delays) == 2)
    assert h.sleep.delays[1] == 60.0
    assert len(h.messages) == 1

    # A new day resets the backend counters.
    h.api.account = account_data(RequestsToday=0)
    h.sleep.release()
    await wait_until(lambda: len(h.sleep.delays) == 3)

    assert h.state.quota_waiting is False
    assert "assign_job" in h.api.names()
    assert 18.0 <= h.sleep.delays[2] <= 26.0
    await h.close()


@pytest.mark.asyncio
async def test_quota_error_from_assignment_uses_slow_poll() -> None:
    h = make_harness()
    h.api.jobs = [
        BackendError(ErrorCode.BACKEND_REJECTED, "quota", payload={"ErrorCode": 3, "Message": "quota"})
    ]

    await h.engine.start()
    await wait_until(lambda: len(h.sleep.delays) == 1)

    assert h.state.quota_waiting is True
    assert h.sleep.delays == [60.0]
    assert h.messages == []
    await h.close()


@pytest.mark.asyncio
async def test_start_without_signed_in_account_stops_and_notifies() -> None:
    h = make_harness(logged_in=False)

    await h.engine.start()
    await wait_until(lambda: bool(h.messages))

    assert h.messages == ["Error: No LinkedIn User logged in"]
    assert h.engine.status.value == ExtractionStatus.STOPPED
    assert not h.engine.is_armed
    assert "assign_job" not in h.api.names()
    await h.close()


@pytest.mark.asyncio
async def test_empty_assignment_is_paced_and_retried() -> None:
    h = make_harness()

    await h.engine.start()
    await wait_until(lambda: len(h.sleep.delays) == 1)

    assert h.messages == []
    assert h.api.reports() == []
    assert h.state.is_extracting is True
    await h.close()


@pytest.mark.asyncio
async def test_job_without_locator_is_skipped() -> None:
    h = make_harness()
    h.api.jobs = [profile_job(40)]

    await h.engine.start()
    await wait_until(lambda: len(h.sleep.delays) == 1)

    assert h.api.reports() == []
    assert h.surface.loaded == []
    assert h.state.current_job is None
    await h.close()


@pytest.mark.asyncio
async def test_start_while_job_in_flight_only_clears_quota_flag() -> None:
    h = make_harness()
    h.api.jobs = [profile_job(11, InProfile="/in/jane-doe")]
    h.surface.reply_with("readNetworkInfo", [network_info()])
    h.surface.reply_with("getCurrentUrl", [{"url": f"{LINKEDIN}/in/jane-doe"}])

    await h.engine.start()
    await wait_until(lambda: "extractProfile" in h.surface.actions())
    job = h.state.current_job
    h.state.quota_waiting = True

    await h.engine.start()
    await settle()

    assert h.state.quota_waiting is False
    assert h.state.current_job is job
    assert h.api.names().count("assign_job") == 1
    await h.close()


@pytest.mark.asyncio
async def test_start_during_job_assignment_requests_only_one_job() -> None:
    h = make_harness()
    h.api.jobs = [profile_job(11, InProfile="/in/jane-doe"), profile_job(12, InProfile="/in/jane-doe")]
    _script_profile_page(h)
    h.api.assign_gate = threading.Event()

    await h.engine.start()
    await wait_until(lambda: "assign_job" in h.api.names())
    assert h.engine.in_pass

    await h.engine.start()
    h.api.assign_gate.set()
    await wait_until(lambda: len(h.sleep.delays) == 1)
    await settle()

    assert h.api.names().count("assign_job") == 1
    assert [args[1] for args in h.api.reports()] == [11]
    assert _statuses(h) == ["OK"]
    assert not h.engine.in_pass
    await h.close()


@pytest.mark.asyncio
async def test_job_assigned_after_stop_is_reported_as_error() -> None:
    h = make_harness()
    h.api.jobs = [profile_job(11, InProfile="/in/jane-doe")]
    h.api.assign_gate = threading.Event()

    await h.engine.start()
    await wait_until(lambda: "assign_job" in h.api.names())
    await h.engine.stop(False)
    h.api.assign_gate.set()
    await wait_until(lambda: bool(h.api.reports()))
    await settle()

    assert h.api.reports() == [("/in/ACoAAATEST", 11, "ERROR", -1, "/in/jane-doe", None, None, "")]
    assert h.surface.loaded == []
    assert h.sleep.delays == []
    assert h.messages == []
    assert h.engine.status.value == ExtractionStatus.STOPPED
    await h.close()


@pytest.mark.asyncio
async def test_stopped_reply_from_page_is_reported_but_not_surfaced() -> None:
    h = make_harness()
    h.api.jobs = [profile_job(11, InProfile="/in/jane-doe")]
    h.surface.reply_with("readNetworkInfo", [network_info()])
    h.surface.reply_with("getCurrentUrl", [{"url": f"{LINKEDIN}/in/jane-doe"}])
    h.surface.reply_with("extractProfile", [{"error": "stopped"}])

    await h.engine.start()
    await wait_until(lambda: bool(h.api.reports()))
    await settle()

    assert _statuses(h) == ["ERROR"]
    assert h.messages == []
    assert "log_message" not in h.api.names()
    assert h.sleep.delays == []
    await h.close()


@pytest.mark.asyncio
async def test_in_page_error_is_surfaced_and_loop_continues() -> None:
    h = make_harness()
    h.api.jobs = [profile_job(11, InProfile="/in/jane-doe")]
    h.surface.reply_with("readNetworkInfo", [network_info()])
    h.surface.reply_with("getCurrentUrl", [{"url": f"{LINKEDIN}/in/jane-doe"}])
    h.surface.reply_with("extractProfile", [{"error": "selector missing"}])

    await h.engine.start()
    await wait_until(lambda: len(h.sleep.delays) == 1)

    assert _statuses(h) == ["ERROR"]
    assert h.messages == ["Error: selector missing"]
    assert h.engine.is_armed
    await h.close()


@pytest.mark.asyncio
async def test_malformed_reply_is_retried_silently() -> None:
    h = make_harness()
    h.api.jobs = [profile_job(11, EncProfile="/in/ACoAAX")]
    h.surface.reply_with("getCurrentUrl", [{"url": f"{LINKEDIN}/in/x"}])
    h.surface.reply_with("extractProfile", [])

    await h.engine.start()
    await wait_until(lambda: len(h.sleep.delays) == 1)

    assert _statuses(h) == ["ERROR"]
    assert h.messages == []
    await h.close()


@pytest.mark.asyncio
async def test_stop_during_navigation_discards_job_without_continuing() -> None:
    h = make_harness()
    h.api.jobs = [profile_job(11, EncProfile="/in/ACoAAX")]
    h.surface.reply_with("getCurrentUrl", [{"url": f"{LINKEDIN}/in/x"}])
    h.surface.reply_with("extractProfile", [{"html": "<p/>", "distance": 1}])
    h.surface.hold_navigation = asyncio.Event()

    await h.engine.start()
    await wait_until(lambda: bool(h.surface.loaded))
    await h.engine.stop(False)
    h.surface.hold_navigation.set()
    await wait_until(lambda: bool(h.api.reports()))
    await settle()

    assert "extractProfile" not in h.surface.actions()
    assert "stopExtraction" not in h.surface.actions()
    assert _statuses(h) == ["ERROR"]
    assert h.messages == []
    assert h.sleep.delays == []
    assert h.engine.status.value == ExtractionStatus.STOPPED
    await h.close()


@pytest.mark.asyncio
async def test_stop_with_restart_ignores_the_stale_job() -> None:
    h = make_harness()
    h.api.jobs = [profile_job(11, EncProfile="/in/ACoAAX"), profile_job(12, EncProfile="/in/ACoAAY")]
    h.surface.reply_with("getCurrentUrl", [{"url": f"{LINKEDIN}/in/x"}])
    h.surface.reply_with("extractProfile", [{"html": "<p/>", "distance": 1}])
    h.surface.hold_navigation = asyncio.Event()

    await h.engine.start()
    await wait_until(lambda: len(h.surface.loaded) == 1)
    await h.engine.stop(True)
    await wait_until(lambda: len(h.surface.loaded) == 2)
    h.surface.hold_navigation.set()
    await wait_until(lambda: len(h.api.reports()) == 2)
    await wait_until(lambda: len(h.sleep.delays) == 1)
    await settle()

    reports = {args[1]: args[2] for args in h.api.reports()}
    assert reports == {11: "ERROR", 12: "OK"}
    assert len(h.sleep.delays) == 1
    assert h.engine.status.value == ExtractionStatus.EXTRACTING
    await h.close()


@pytest.mark.asyncio
async def test_stop_cancels_in_page_work() -> None:
    h = make_harness()
    h.state.is_extracting = True
    h.state.busy = True

    await h.engine.stop(False)

    assert h.surface.actions() == ["stopExtraction"]
    assert h.state.busy is False
    assert h.surface.reloads == 0
    assert h.engine.status.value == ExtractionStatus.STOPPED


@pytest.mark.asyncio
async def test_unanswered_cancellation_forces_reload() -> None:
    h = make_harness()
    h.state.is_extracting = True
    h.state.busy = True
    h.stack.channel.timeout = 0.01
    del h.surface.handlers["stopExtraction"]

    await h.engine.stop(False)

    assert h.surface.reloads == 1
    assert h.state.busy is False


@pytest.mark.asyncio
async def test_stop_is_idempotent() -> None:
    h = make_harness()

    await h.engine.stop(False)
    await h.engine.stop(False)

    assert h.surface.posted == []
    assert h.engine.status.value == ExtractionStatus.STOPPED
    assert not h.engine.is_armed


@pytest.mark.asyncio
async def test_page_change_during_job_continues_loop_silently() -> None:
    h = make_harness()
    h.api.jobs = [profile_job(11, InProfile="/in/jane-doe")]
    h.surface.reply_with("readNetworkInfo", [network_info()])
    h.surface.reply_with("getCurrentUrl", [{"url": f"{LINKEDIN}/in/jane-doe"}])

    await h.engine.start()
    await wait_until(lambda: "extractProfile" in h.surface.actions())

    h.stack.channel.handle_navigation(f"{LINKEDIN}/feed/")
    await wait_until(lambda: len(h.sleep.delays) == 1)

    assert h.state.current_job is None
    assert h.messages == []
    assert h.engine.is_armed
    await h.close()


@pytest.mark.asyncio
async def test_stop_url_during_job_runs_logout_stop() -> None:
    h = make_harness()
    h.api.jobs = [profile_job(11, InProfile="/in/jane-doe")]
    h.surface.reply_with("readNetworkInfo", [network_info()])
    h.surface.reply_with("getCurrentUrl", [{"url": f"{LINKEDIN}/in/jane-doe"}])

    await h.engine.start()
    await wait_until(lambda: "extractProfile" in h.surface.actions())

    h.stack.channel.handle_navigation(f"{LINKEDIN}/checkpoint/challenge/123")
    await wait_until(lambda: bool(h.messages))
    await settle()

    assert h.messages == ["Error: Extraction stopped due to LinkedIn logout"]
    assert h.engine.status.value == ExtractionStatus.STOPPED
    assert h.account.logged_in is False
    assert h.account.encoded_id is None
    assert h.state.last_activity_at is None
    assert h.surface.loaded[-1] == config.DEFAULT_PAGE
    assert not h.engine.is_armed
    await h.close()


@pytest.mark.asyncio
async def test_navigation_while_signed_out_refreshes_session() -> None:
    h = make_harness(logged_in=False)
    h.surface.reply_with(
        "getMeInfo",
        [
            {
                "miniProfile": {
                    "firstName": "Jane",
                    "lastName": "Doe",
                    "publicIdentifier": "jane-doe",
                    "entityUrn": "urn:li:fs_miniProfile:ACoAAJANE",
                }
            }
        ],
    )

    h.stack.channel.handle_navigation(f"{LINKEDIN}/feed/")
    await wait_until(lambda: h.account.logged_in)
    await wait_until(lambda: "sync_account" in h.api.names())

    assert h.account.full_name == "Jane Doe"
    assert h.account.primary_id == "/in/jane-doe"
    assert h.account.encoded_id == "/in/ACoAAJANE"
    await h.close()


@pytest.mark.asyncio
async def test_logout_navigation_does_not_refresh_session() -> None:
    h = make_harness(logged_in=False)

    h.stack.channel.handle_navigation(f"{LINKEDIN}/m/logout/")
    await settle()

    assert "getMeInfo" not in h.surface.actions()


@pytest.mark.asyncio
async def test_refresh_session_failure_reloads_page_once() -> None:
    h = make_harness(logged_in=False)
    h.surface.reply_with("getMeInfo", [{"miniProfile": {"firstName": "Jane"}}])

    assert await h.engine.refresh_session() is False
    assert await h.engine.refresh_session() is False

    assert h.surface.reloads == 1
    assert h.account.logged_in is False


@pytest.mark.asyncio
async def test_refresh_session_survives_browser_failure() -> None:
    h = make_harness(logged_in=False)

    def _crash(data: object) -> list:
        raise RuntimeError("Target page, context or browser has been closed")

    h.surface.on("getMeInfo", _crash)

    assert await h.engine.refresh_session() is False
    assert h.surface.reloads == 1
    assert h.account.logged_in is False


@pytest.mark.asyncio
async def test_refresh_session_without_profile_clears_identity() -> None:
    h = make_harness()
    h.surface.reply_with("getMeInfo", [{"error": "not signed in"}])

    assert await h.engine.refresh_session() is False
    assert h.account.logged_in is False
    assert h.account.primary_id is None


@pytest.mark.asyncio
async def test_quota_and_logout_events_carry_error_codes(monkeypatch: pytest.MonkeyPatch) -> None:
    lines: list[str] = []
    monkeypatch.setattr(logging_utils, "log_line", lambda msg: lines.append(msg))
    h = make_harness()
    h.account.today_profiles = 100

    await h.engine.start()
    await wait_until(lambda: len(h.sleep.delays) == 1)
    await h.engine.stop_by_logout()

    assert any(f"error_code={ErrorCode.QUOTA_EXHAUSTED!r}" in line for line in lines)
    assert any(f"error_code={ErrorCode.LOGGED_OUT!r}" in line for line in lines)
    assert all("tab_id='tab-1'" in line for line in lines)
    await h.close()
