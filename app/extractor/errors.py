from __future__ import annotations

from typing import Any, Optional

from .error_codes import ErrorCode


class ExtractorError(Exception):
    def __init__(self, error_code: str, message: str) -> None:
        super().__init__(message)
        self.error_code = error_code

    def __str__(self) -> str:  # pragma: no cover - inherited behaviour
        return str(self.args[0]) if self.args else ""


class ChannelTimeout(ExtractorError):
    def __init__(self, action: str, timeout: float) -> None:
        super().__init__(ErrorCode.CHANNEL_TIMEOUT, "Timed out")
        self.action = action
        self.timeout = timeout


class ExtractionStopped(ExtractorError):
    """Raised when a job notices that extraction was stopped under it."""

    def __init__(self) -> None:
        super().__init__(ErrorCode.STOPPED, "stopped")


class InPageError(ExtractorError):
    """Error string returned by the in-page extraction script."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.IN_PAGE, message)


class ReplyShapeError(ExtractorError, TypeError):
    """A browser reply did not have the structure the action promises."""

    def __init__(self, action: str, reply: Any) -> None:
        super().__init__(ErrorCode.REPLY_SHAPE, f"Unexpected reply for {action}: {reply!r:.120}")
        self.action = action


class BackendError(ExtractorError):
    """Failure talking to the job-assignment backend.

    ``payload`` holds the decoded error body (``ErrorCode`` / ``Message`` /
    ``message``) when the backend returned JSON, otherwise ``None``.
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        *,
        payload: Optional[dict[str, Any]] = None,
        http_status: int | None = None,
    ) -> None:
        super().__init__(error_code, message)
        self.payload = payload
        self.http_status = http_status

    @property
    def backend_code(self) -> Optional[int]:
        if not self.payload or "ErrorCode" not in self.payload:
            return None
        try:
            return int(self.payload["ErrorCode"])
        except (TypeError, ValueError):
            return None

    @property
    def user_message(self) -> Optional[str]:
        if not self.payload:
            return None
        for key in ("Message", "message"):
            if key in self.payload and self.payload[key]:
                return str(self.payload[key])
        return None


__all__ = [
    "ExtractorError",
    "ChannelTimeout",
    "ExtractionStopped",
    "InPageError",
    "ReplyShapeError",
    "BackendError",
]
