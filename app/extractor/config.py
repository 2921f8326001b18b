"""Configuration constants for the profile extraction engine."""
from __future__ import annotations

import json
import os
from pathlib import Path

DATA_DIR: Path = Path(os.getenv("EXTRACTOR_DATA_DIR", "/app/data"))
LOG_DIR: Path = DATA_DIR / "logs"
LOG_FILE: Path = LOG_DIR / "latest.log"

# Backend job-assignment service. Every call is a POST of {"path", "args"}.
API_REQUEST_URL: str = os.getenv("EXTRACTOR_API_REQUEST_URL", "").strip()
API_TOKEN: str = os.getenv("EXTRACTOR_API_TOKEN", "").strip()
API_TIMEOUT_SECONDS: float = float(os.getenv("EXTRACTOR_API_TIMEOUT_SECONDS", "30"))

BASE_URL: str = os.getenv("EXTRACTOR_BASE_URL", "https://www.linkedin.com").rstrip("/")
BASE_HOST: str = "linkedin.com"
DEFAULT_PAGE: str = os.getenv("EXTRACTOR_DEFAULT_PAGE", BASE_URL)
LOGOUT_URL_FRAGMENT: str = os.getenv("EXTRACTOR_LOGOUT_URL_FRAGMENT", "linkedin.com/m/logout")


def _parse_patterns(raw: str | None) -> list[str]:
    """Parse a JSON list of regex patterns, ignoring malformed input."""

    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return [raw]
    if isinstance(value, str):
        return [value]
    if isinstance(value, list):
        return [str(item) for item in value if str(item).strip()]
    return []


STOP_URL_PATTERNS: list[str] = _parse_patterns(
    os.getenv(
        "EXTRACTOR_STOP_URL_PATTERNS",
        json.dumps(["linkedin\\.com/checkpoint/", "linkedin\\.com/authwall", "linkedin\\.com/uas/login"]),
    )
)
MAX_EXTRACTION_DISTANCE: int = int(os.getenv("EXTRACTOR_MAX_DISTANCE", "3"))


def _parse_timeout_seconds(env_var: str, default: float, *, minimum: float = 0.0) -> float:
    """Parse a timeout value in seconds from the environment with bounds."""

    try:
        value = float(os.getenv(env_var, str(default)))
    except ValueError:
        return default
    return max(minimum, value)


# Command channel
COMMAND_TIMEOUT_SECONDS: float = _parse_timeout_seconds("EXTRACTOR_COMMAND_TIMEOUT_SECONDS", 180)
# Extra allowance when the in-page script extracts the full profile / company.
PROFILE_DEEP_EXTRA_SECONDS: float = _parse_timeout_seconds("EXTRACTOR_PROFILE_DEEP_EXTRA_SECONDS", 240)
COMPANY_DEEP_EXTRA_SECONDS: float = _parse_timeout_seconds("EXTRACTOR_COMPANY_DEEP_EXTRA_SECONDS", 120)
READY_POLL_SECONDS: float = _parse_timeout_seconds("EXTRACTOR_READY_POLL_SECONDS", 0.2)

# Canonical locator resolution after navigation
LOCATOR_POLL_ATTEMPTS: int = int(os.getenv("EXTRACTOR_LOCATOR_POLL_ATTEMPTS", "8"))
LOCATOR_POLL_INTERVAL_SECONDS: float = _parse_timeout_seconds(
    "EXTRACTOR_LOCATOR_POLL_INTERVAL_SECONDS", 2.0
)

# Pacing
QUOTA_WAIT_MS: int = int(os.getenv("EXTRACTOR_QUOTA_WAIT_MS", "60000"))
DEFAULT_MIN_REQUEST_INTERVAL_MS: int = 18000
DEFAULT_MAX_REQUEST_INTERVAL_MS: int = 26000

# Watchdog
WATCHDOG_PERIOD_SECONDS: float = _parse_timeout_seconds("EXTRACTOR_WATCHDOG_PERIOD_SECONDS", 9 * 60)
WATCHDOG_STALE_SECONDS: float = _parse_timeout_seconds("EXTRACTOR_WATCHDOG_STALE_SECONDS", 9 * 60)

# Browser
HEADLESS: bool = os.getenv("EXTRACTOR_HEADLESS", "true").strip().lower() not in {"0", "false"}
CONTENT_SCRIPT_PATH: str = os.getenv("EXTRACTOR_CONTENT_SCRIPT", "").strip()
USER_AGENT: str = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/142.0.0.0 Safari/537.36"
)

# Backend error codes
QUOTA_ERROR_CODE: int = 3
BLOCKED_ACCOUNT_ERROR_CODE: int = 103

COMMON_HEADERS: dict[str, str] = {
    "Accept": "application/json",
    "Content-Type": "application/json; charset=UTF-8",
    "User-Agent": "profile-extractor/1.0",
}


def extraction_settings() -> dict[str, object]:
    """Return the settings block forwarded to the in-page extraction script."""

    return {
        "urlsToStopExtraction": list(STOP_URL_PATTERNS),
        "minDistanceForExtraction": MAX_EXTRACTION_DISTANCE,
    }
