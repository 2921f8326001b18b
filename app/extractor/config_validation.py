from __future__ import annotations

import re
from typing import Literal

from . import config
from .logging_utils import _extractor_event
from .utils import log_line

Entrypoint = Literal["ui", "cli", "tests"]


def _raise_config_error(message: str, *, entrypoint: Entrypoint, error: str) -> None:
    _extractor_event(
        "error",
        phase="config",
        context="runtime_validation",
        error=error,
        entrypoint=entrypoint,
    )
    log_line(f"[CONFIG] {message} (entrypoint={entrypoint})")
    raise ValueError(message)


def validate_runtime_config(entrypoint: Entrypoint) -> None:
    """Validate runtime configuration for the given entrypoint.

    Raises ``ValueError`` when a blocking misconfiguration is detected.
    Non-fatal adjustments (e.g., clamping poll attempts) are logged but do not
    raise.
    """

    if entrypoint != "tests" and not config.API_REQUEST_URL:
        _raise_config_error(
            "EXTRACTOR_API_REQUEST_URL must be set for live extraction.",
            entrypoint=entrypoint,
            error="api_url_missing",
        )

    if config.LOCATOR_POLL_ATTEMPTS < 1:
        adjusted = 1
        _extractor_event(
            "state",
            phase="config",
            context="runtime_validation",
            kind="config_adjustment",
            field="LOCATOR_POLL_ATTEMPTS",
            value=config.LOCATOR_POLL_ATTEMPTS,
            adjusted=adjusted,
            entrypoint=entrypoint,
        )
        log_line("[CONFIG] LOCATOR_POLL_ATTEMPTS < 1; clamping to 1.")
        config.LOCATOR_POLL_ATTEMPTS = adjusted

    timeout_fields = [
        ("COMMAND_TIMEOUT_SECONDS", config.COMMAND_TIMEOUT_SECONDS),
        ("READY_POLL_SECONDS", config.READY_POLL_SECONDS),
        ("WATCHDOG_PERIOD_SECONDS", config.WATCHDOG_PERIOD_SECONDS),
        ("WATCHDOG_STALE_SECONDS", config.WATCHDOG_STALE_SECONDS),
        ("API_TIMEOUT_SECONDS", config.API_TIMEOUT_SECONDS),
    ]
    for field_name, value in timeout_fields:
        if value <= 0:
            _raise_config_error(
                f"{field_name} must be greater than zero.",
                entrypoint=entrypoint,
                error="invalid_timeout",
            )

    if config.QUOTA_WAIT_MS <= 0:
        _raise_config_error(
            "EXTRACTOR_QUOTA_WAIT_MS must be greater than zero.",
            entrypoint=entrypoint,
            error="invalid_quota_wait",
        )

    for pattern in config.STOP_URL_PATTERNS:
        try:
            re.compile(pattern)
        except re.error:
            _raise_config_error(
                f"Invalid stop-url pattern: {pattern!r}",
                entrypoint=entrypoint,
                error="invalid_stop_pattern",
            )


__all__ = ["validate_runtime_config", "Entrypoint"]
