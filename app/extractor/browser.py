"""Playwright-backed browser surface for the command channel."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PWError
from playwright.async_api import TimeoutError as PWTimeout

from . import config
from .channel import READY_SIGNAL, CommandChannel
from .logging_utils import _extractor_event
from .utils import log_line

REPLY_BINDING = "__extractorReply"
RECEIVE_FUNCTION = "window.__extractorReceive"


class PlaywrightSurface:
    """Single Chromium page that hosts the in-page extraction script.

    The page script receives commands through ``window.__extractorReceive`` and
    answers through the exposed ``__extractorReply(channel, ...args)`` binding.
    """

    def __init__(
        self,
        *,
        headless: bool | None = None,
        content_script: str | None = None,
        user_agent: str = config.USER_AGENT,
    ) -> None:
        self.headless = config.HEADLESS if headless is None else headless
        self.content_script = content_script if content_script is not None else config.CONTENT_SCRIPT_PATH
        self.user_agent = user_agent
        self.channel: Optional[CommandChannel] = None
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    def attach(self, channel: CommandChannel) -> None:
        self.channel = channel

    async def start(self, url: str = config.DEFAULT_PAGE) -> None:
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.headless,
            args=["--disable-dev-shm-usage", "--no-sandbox"],
        )
        self._context = await self._browser.new_context(user_agent=self.user_agent, locale="en-US")
        await self._context.expose_binding(REPLY_BINDING, self._on_reply)
        if self.content_script:
            script_path = Path(self.content_script)
            if script_path.exists():
                await self._context.add_init_script(path=str(script_path))
            else:
                log_line(f"[BROWSER] Content script {script_path} not found; page replies disabled")

        page = await self._context.new_page()
        page.on("domcontentloaded", self._on_dom_ready)
        page.on("framenavigated", self._on_frame_navigated)
        self._page = page
        log_line(f"[BROWSER] Opening {url}")
        await self.load_url(url)

    async def close(self) -> None:
        for closable in (self._context, self._browser):
            if closable is None:
                continue
            try:
                await closable.close()
            except PWError as exc:
                log_line(f"[BROWSER] Close failed: {exc}")
        if self._playwright is not None:
            await self._playwright.stop()
        self._page = self._context = self._browser = self._playwright = None

    async def post(self, message: dict[str, Any]) -> None:
        await self._require_page().evaluate(f"(m) => {RECEIVE_FUNCTION}(m)", message)

    async def load_url(self, url: str) -> None:
        try:
            await self._require_page().goto(url, wait_until="domcontentloaded")
        except PWTimeout:
            _extractor_event("error", phase="browser", kind="nav_timeout", url=url)

    async def reload(self) -> None:
        try:
            await self._require_page().reload(wait_until="domcontentloaded")
        except PWTimeout:
            _extractor_event("error", phase="browser", kind="reload_timeout")

    @property
    def url(self) -> Optional[str]:
        return self._page.url if self._page is not None else None

    def _require_page(self) -> Page:
        if self._page is None:
            raise RuntimeError("Browser surface has not been started")
        return self._page

    def _on_reply(self, _source: Any, channel: str, *args: Any) -> None:
        if self.channel is not None:
            self.channel.handle_message(channel, *args)

    async def _on_dom_ready(self, page: Page) -> None:
        # Readiness handshake: the page script echoes "ready" once it is listening.
        try:
            await page.evaluate(
                f"(m) => {RECEIVE_FUNCTION} && {RECEIVE_FUNCTION}(m)",
                {"key": None, "action": READY_SIGNAL, "data": {}},
            )
        except PWError as exc:
            _extractor_event("error", phase="browser", kind="handshake_failed", error=str(exc))

    def _on_frame_navigated(self, frame: Any) -> None:
        if self._page is None or frame != self._page.main_frame:
            return
        if self.channel is not None:
            self.channel.handle_navigation(frame.url)


__all__ = ["PlaywrightSurface", "REPLY_BINDING"]
