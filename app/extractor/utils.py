from __future__ import annotations

import logging
import re
import sys
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional

from . import config

LOGGER = logging.getLogger("profile_extractor")
_LOGGER_INITIALISED = False
_CURRENT_LOG_FILE: Path = config.LOG_FILE

ENCRYPTED_PROFILE_RE = re.compile(r"^/in/ACo[A-Za-z0-9_-]+/?$")
SALES_NAV_PROFILE_RE = re.compile(r"^/sales/(people|lead)/", re.IGNORECASE)
COMPANY_NUMERIC_RE = re.compile(r"/(company|showcase|school)/[0-9]+/?$")
COMPANY_PATH_RE = re.compile(r"/(company|showcase|school)/[^/?#]+")


def _configure_logger(log_path: Path) -> None:
    """Configure the shared application logger to write to ``log_path``."""

    global _LOGGER_INITIALISED, _CURRENT_LOG_FILE

    ensure_dirs()
    log_path.parent.mkdir(parents=True, exist_ok=True)

    for handler in list(LOGGER.handlers):
        LOGGER.removeHandler(handler)
        try:
            handler.close()
        except Exception:  # noqa: BLE001
            continue

    formatter = logging.Formatter(
        fmt="[%(asctime)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)

    LOGGER.setLevel(logging.INFO)
    LOGGER.addHandler(stream_handler)
    LOGGER.addHandler(file_handler)
    LOGGER.propagate = False

    _CURRENT_LOG_FILE = log_path
    _LOGGER_INITIALISED = True


def _ensure_logger() -> None:
    """Initialise the logger lazily using the default log file."""

    if _LOGGER_INITIALISED:
        return

    _configure_logger(config.LOG_FILE)


def setup_run_logger() -> Path:
    """Rotate to a fresh timestamped log file for the current session."""

    timestamp = datetime.utcnow().strftime("%Y%m%d_%H%M%S")
    log_path = config.LOG_DIR / f"extract_{timestamp}.log"
    _configure_logger(log_path)
    LOGGER.info("Logging to %s", log_path)
    return log_path


def get_current_log_path() -> Path:
    """Return the path to the log file currently receiving log lines."""

    _ensure_logger()
    return _CURRENT_LOG_FILE


def ensure_dirs() -> None:
    """Ensure that the application's expected directory structure exists."""

    config.DATA_DIR.mkdir(parents=True, exist_ok=True)
    config.LOG_DIR.mkdir(parents=True, exist_ok=True)


def log_line(message: str) -> None:
    """Write a timestamped log line to stdout and the active log file."""

    _ensure_logger()
    LOGGER.info(message)


def new_key() -> str:
    """Return a fresh correlation key for a browser command."""

    return uuid.uuid4().hex


def clean_profile_id(locator: str | None) -> str:
    """Strip the ``/in/`` prefix and trailing slash from a profile locator."""

    if not locator:
        return ""
    cleaned = locator.strip()
    if "/in/" in cleaned:
        cleaned = cleaned.split("/in/", 1)[1]
    return cleaned.strip("/")


def is_encrypted_profile(locator: str | None) -> bool:
    return bool(locator) and bool(ENCRYPTED_PROFILE_RE.match(locator))


def is_sales_nav_profile(locator: str | None) -> bool:
    return bool(locator) and bool(SALES_NAV_PROFILE_RE.match(locator))


def needs_canonical_profile(locator: str | None) -> bool:
    """Return True while ``locator`` is not yet the public ``/in/`` form."""

    if not locator:
        return True
    return is_encrypted_profile(locator) or is_sales_nav_profile(locator) or "/pub/" in locator


def needs_canonical_company(locator: str | None) -> bool:
    """Return True while ``locator`` still uses a numeric company id."""

    return bool(locator) and bool(COMPANY_NUMERIC_RE.search(locator))


def path_after_host(url: str | None, host: str = config.BASE_HOST) -> Optional[str]:
    """Return the part of ``url`` following ``host`` or ``None`` when absent."""

    if not url or host not in url:
        return None
    return url.split(host, 1)[1]


def company_path(url: str | None) -> Optional[str]:
    if not url:
        return None
    match = COMPANY_PATH_RE.search(url)
    return match.group(0) if match else None


def connection_level_from_network(value: str | None) -> int:
    """Map a network distance label such as ``DISTANCE_2`` to an integer level."""

    if not value:
        return -1
    label = str(value).strip().upper()
    if label == "SELF":
        return 0
    match = re.fullmatch(r"DISTANCE_(\d+)", label)
    if match:
        return int(match.group(1))
    return -1


__all__ = [
    "LOGGER",
    "setup_run_logger",
    "get_current_log_path",
    "ensure_dirs",
    "log_line",
    "new_key",
    "clean_profile_id",
    "is_encrypted_profile",
    "is_sales_nav_profile",
    "needs_canonical_profile",
    "needs_canonical_company",
    "path_after_host",
    "company_path",
    "connection_level_from_network",
]
