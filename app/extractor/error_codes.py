"""Centralised error code taxonomy for extraction failures.

These codes travel on every ``ExtractorError`` and are included in structured
logs so that we can explain why a job or a backend call failed.
"""

from __future__ import annotations


class ErrorCode:
    NETWORK = "network_error"
    BACKEND_REJECTED = "backend_rejected"
    BACKEND_MALFORMED = "backend_malformed"
    QUOTA_EXHAUSTED = "quota_exhausted"
    ACCOUNT_BLOCKED = "account_blocked"
    CHANNEL_TIMEOUT = "channel_timeout"
    REPLY_SHAPE = "reply_shape"
    IN_PAGE = "in_page_error"
    STOPPED = "stopped"
    LOGGED_OUT = "logged_out"
    INTERNAL = "internal_error"


__all__ = ["ErrorCode"]
