from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

from . import config
from .engine import ExtractionEngine
from .logging_utils import _extractor_event


class HealthWatchdog:
    """Restart a loop that has gone quiet for longer than the staleness limit."""

    def __init__(
        self,
        engine: ExtractionEngine,
        *,
        period: float | None = None,
        stale_after: float | None = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.engine = engine
        self.period = config.WATCHDOG_PERIOD_SECONDS if period is None else period
        self.stale_after = config.WATCHDOG_STALE_SECONDS if stale_after is None else stale_after
        self.clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._task = asyncio.ensure_future(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            try:
                await self.check()
            except Exception as exc:  # noqa: BLE001
                _extractor_event("error", phase="watchdog", kind="check_failed", error=repr(exc))
            await self._sleep(self.period)

    def idle_for(self) -> Optional[float]:
        last = self.engine.state.last_activity_at
        if last is None:
            return None
        return self.clock() - last

    def is_stale(self) -> bool:
        idle = self.idle_for()
        return idle is not None and idle > self.stale_after

    async def check(self) -> str:
        """Run one staleness check; returns the action taken."""

        if not self.engine.account.logged_in or not self.is_stale():
            return "none"

        state = self.engine.state
        _extractor_event(
            "state",
            phase="watchdog",
            kind="stale",
            idle_seconds=round(self.idle_for() or 0.0, 1),
            in_flight=state.current_job is not None,
        )
        if state.current_job is not None:
            await self.engine.stop(True)
            return "stop_restart"
        self.engine.restart()
        return "restart"


__all__ = ["HealthWatchdog"]
