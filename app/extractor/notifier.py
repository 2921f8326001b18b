from __future__ import annotations

import asyncio

from .api_client import BackendApi
from .errors import BackendError
from .events import Broadcast
from .logging_utils import _extractor_event
from .models import Account
from .session import SessionStore
from .utils import log_line


class Notifier:
    """The single path for user-visible failures: remote log, local log, broadcast."""

    def __init__(self, api: BackendApi, session: SessionStore, account: Account) -> None:
        self.api = api
        self.session = session
        self.account = account
        self.messages: Broadcast[str] = Broadcast("messages")

    async def surface(self, message: object, should_log: bool = True) -> None:
        text = str(message)
        if should_log:
            await self.log_remote(text)
        log_line(f"[EXTRACTOR] Error: {text}")
        self.messages.publish(f"Error: {text}")

    async def log_remote(self, message: str) -> None:
        user = self.session.current_user
        try:
            await asyncio.to_thread(
                self.api.log_message,
                user.email if user else None,
                self.account.full_name,
                self.account.primary_id,
                self.account.encoded_id,
                message,
            )
        except BackendError as exc:
            _extractor_event("error", phase="remote_log", error_code=exc.error_code, error=str(exc))


__all__ = ["Notifier"]
