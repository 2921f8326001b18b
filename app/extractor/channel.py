"""Correlated request/reply messaging with the controlled browser surface."""
from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Optional, Protocol

from . import config
from .errors import ChannelTimeout
from .logging_utils import _extractor_event
from .models import PendingReply
from .utils import new_key

READY_SIGNAL = "ready"
UNLOAD_SIGNAL = "unload"

NavigationListener = Callable[[str], Optional[Awaitable[None]]]


class BrowserSurface(Protocol):
    """What the channel needs from a browser page."""

    async def post(self, message: dict[str, Any]) -> None: ...

    async def load_url(self, url: str) -> None: ...

    async def reload(self) -> None: ...


class CommandChannel:
    """Send keyed commands to the in-page script and await the matching reply.

    The surface forwards every message it receives from the page to
    :meth:`handle_message`, and every main-frame navigation to
    :meth:`handle_navigation`.
    """

    def __init__(
        self,
        surface: BrowserSurface,
        *,
        timeout: float | None = None,
        poll_interval: float | None = None,
        key_factory: Callable[[], str] = new_key,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.surface = surface
        self.timeout = config.COMMAND_TIMEOUT_SECONDS if timeout is None else timeout
        self.poll_interval = config.READY_POLL_SECONDS if poll_interval is None else poll_interval
        self._key_factory = key_factory
        self._sleep = sleep
        self._pending: dict[str, PendingReply] = {}
        self._navigation_listeners: list[NavigationListener] = []
        self._background: set[asyncio.Task] = set()
        self.ready = False

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def wait_ready(self) -> None:
        while not self.ready:
            await self._sleep(self.poll_interval)

    async def send(self, action: str, data: Any = None, extra_timeout: float = 0.0) -> list[Any]:
        """Send ``action`` and return the reply argument list.

        Raises :class:`ChannelTimeout` when no reply arrives within the
        channel timeout plus ``extra_timeout`` seconds.
        """

        await self.wait_ready()

        key = self._key_factory()
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[key] = PendingReply(key=key, action=action, future=future)
        timeout = self.timeout + extra_timeout
        try:
            await self.surface.post({"key": key, "action": action, "data": data if data is not None else {}})
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            _extractor_event("error", phase="channel", kind="timeout", action=action, timeout=timeout)
            raise ChannelTimeout(action, timeout) from None
        finally:
            self._pending.pop(key, None)

    def handle_message(self, channel: str, *args: Any) -> None:
        """Route one message coming back from the page."""

        if channel == READY_SIGNAL:
            self.ready = True
            return
        if channel == UNLOAD_SIGNAL:
            self.ready = False
            return

        pending = self._pending.get(channel)
        if pending is None:
            _extractor_event("state", phase="channel", kind="late_reply", key=channel)
            return
        if not pending.future.done():
            pending.future.set_result(list(args))

    def add_navigation_listener(self, listener: NavigationListener) -> None:
        self._navigation_listeners.append(listener)

    def handle_navigation(self, url: str) -> None:
        for listener in list(self._navigation_listeners):
            result = listener(url)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._background.add(task)
                task.add_done_callback(self._listener_done)

    def _listener_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _extractor_event("error", phase="navigation", kind="listener_failed", error=repr(exc))

    async def navigate(self, url: str) -> None:
        """Load ``url`` and wait until the page completed its readiness handshake."""

        self.ready = False
        await self.surface.load_url(url)
        await self.wait_ready()

    async def reload(self) -> None:
        self.ready = False
        await self.surface.reload()


__all__ = ["BrowserSurface", "CommandChannel", "READY_SIGNAL", "UNLOAD_SIGNAL"]
