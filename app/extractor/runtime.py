"""Wiring for one account's extraction stack, and a thread host for the loop."""
from __future__ import annotations

import asyncio
import random
import threading
import time
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Coroutine, Optional

from . import config
from .api_client import BackendApi, BackendClient
from .browser import PlaywrightSurface
from .channel import BrowserSurface, CommandChannel
from .dispatcher import JobDispatcher
from .engine import ExtractionEngine
from .logging_utils import bind_event_context
from .models import Account, ExtractionState, ExtractionStatus, UserProfile
from .notifier import Notifier
from .pacing import PacingController
from .routines import ExtractionRoutines
from .session import SessionStore
from .utils import log_line, new_key
from .watchdog import HealthWatchdog

MAX_MESSAGES = 50


@dataclass
class ExtractorStack:
    account: Account
    session: SessionStore
    state: ExtractionState
    channel: CommandChannel
    notifier: Notifier
    dispatcher: JobDispatcher
    routines: ExtractionRoutines
    pacing: PacingController
    engine: ExtractionEngine
    watchdog: HealthWatchdog


def build_stack(
    surface: BrowserSurface,
    api: BackendApi,
    session: SessionStore,
    tab_id: str,
    *,
    clock: Callable[[], float] = time.time,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    poll_sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    rng: Optional[random.Random] = None,
    key_factory: Callable[[], str] = new_key,
    stop_url_patterns: Optional[list[str]] = None,
) -> ExtractorStack:
    bind_event_context(tab_id=tab_id)
    account = session.account_for(tab_id)
    state = ExtractionState()
    poll_sleep = poll_sleep or sleep
    channel = CommandChannel(surface, key_factory=key_factory, sleep=poll_sleep)
    notifier = Notifier(api, session, account)
    dispatcher = JobDispatcher(api, account, session, state, notifier, clock=clock)
    routines = ExtractionRoutines(channel, dispatcher, account, state, sleep=poll_sleep)
    pacing = PacingController(state.pacing, clock=clock, rng=rng)
    engine = ExtractionEngine(
        account,
        session,
        state,
        channel,
        dispatcher,
        routines,
        pacing,
        notifier,
        stop_url_patterns=stop_url_patterns,
        clock=clock,
        sleep=sleep,
    )
    watchdog = HealthWatchdog(engine, clock=clock, sleep=sleep)
    return ExtractorStack(
        account, session, state, channel, notifier, dispatcher, routines, pacing, engine, watchdog
    )


class EngineHost:
    """Run the extraction loop on a private event loop in a daemon thread.

    Flask handlers and the CLI talk to the engine only through
    :meth:`submit` and :meth:`snapshot`.
    """

    def __init__(
        self,
        tab_id: str,
        email: str,
        *,
        surface: Optional[BrowserSurface] = None,
        api: Optional[BackendApi] = None,
    ) -> None:
        self.surface = surface or PlaywrightSurface()
        self.api = api or BackendApi(BackendClient())
        self.session = SessionStore(UserProfile(email=email))
        self.stack = build_stack(self.surface, self.api, self.session, tab_id)
        if isinstance(self.surface, PlaywrightSurface):
            self.surface.attach(self.stack.channel)

        self._loop = asyncio.new_event_loop()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._snapshot: dict[str, Any] = {
            "status": ExtractionStatus.STOPPED.value,
            "countdown": None,
            "url": config.DEFAULT_PAGE,
        }
        self._messages: deque[str] = deque(maxlen=MAX_MESSAGES)

        self.stack.engine.status.subscribe(lambda s: self._record("status", s.value))
        self.stack.pacing.countdown.subscribe(lambda n: self._record("countdown", n))
        self.stack.routines.url_to_extract.subscribe(lambda u: self._record("url", u))
        self.stack.notifier.messages.subscribe(self._record_message)

    @property
    def engine(self) -> ExtractionEngine:
        return self.stack.engine

    def _record(self, key: str, value: Any) -> None:
        with self._lock:
            self._snapshot[key] = value

    def _record_message(self, message: str) -> None:
        with self._lock:
            self._messages.append(message)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._thread = threading.Thread(target=self._run_loop, name="extractor-loop", daemon=True)
        self._thread.start()
        self.submit(self._boot()).result()

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    async def _boot(self) -> None:
        if isinstance(self.surface, PlaywrightSurface):
            await self.surface.start()
        await self.stack.engine.refresh_session()
        self.stack.watchdog.start()
        log_line(f"[EXTRACTOR] Host ready for tab {self.stack.account.tab_id}")

    def submit(self, coro: Coroutine[Any, Any, Any]) -> Future:
        return asyncio.run_coroutine_threadsafe(coro, self._loop)

    def start_extraction(self) -> Future:
        return self.submit(self.stack.engine.start())

    def stop_extraction(self, should_restart: bool = False) -> Future:
        return self.submit(self.stack.engine.stop(should_restart))

    def snapshot(self) -> dict[str, Any]:
        state = self.stack.state
        with self._lock:
            data = dict(self._snapshot)
        data.update(
            {
                "busy": state.busy,
                "quota_waiting": state.quota_waiting,
                "needs_closing_confirmation": state.needs_closing_confirmation,
                "current_reference": state.current_job.reference if state.current_job else None,
                "last_activity_at": state.last_activity_at,
                "next_allowed_at": state.pacing.next_allowed_at,
                "channel_ready": self.stack.channel.ready,
                "account": self.stack.account.as_dict(),
            }
        )
        return data

    def messages(self) -> list[str]:
        with self._lock:
            return list(self._messages)

    def shutdown(self, timeout: float = 10.0) -> None:
        if self._thread is None:
            return

        async def _teardown() -> None:
            await self.stack.watchdog.stop()
            await self.stack.engine.close()
            if isinstance(self.surface, PlaywrightSurface):
                await self.surface.close()

        try:
            self.submit(_teardown()).result(timeout=timeout)
        finally:
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=timeout)
            self._thread = None


__all__ = ["ExtractorStack", "build_stack", "EngineHost"]
