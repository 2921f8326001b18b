from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from .config_validation import Entrypoint, validate_runtime_config
from .logging_utils import _extractor_event
from .utils import ensure_dirs, log_line

if TYPE_CHECKING:  # pragma: no cover
    from .runtime import EngineHost


@dataclass
class HealthResult:
    ok: bool
    checks: dict[str, dict[str, Any]]


def run_health_checks(host: Optional["EngineHost"] = None, entrypoint: Entrypoint = "cli") -> HealthResult:
    checks: dict[str, dict[str, Any]] = {}

    try:
        validate_runtime_config(entrypoint)
        checks["config"] = {"ok": True}
    except ValueError as exc:
        checks["config"] = {"ok": False, "error": str(exc)}

    try:
        ensure_dirs()
        checks["filesystem"] = {"ok": True}
    except OSError as exc:
        checks["filesystem"] = {"ok": False, "error": str(exc)}

    if host is not None:
        stack = host.stack
        checks["browser"] = {
            "ok": stack.channel.ready,
            "pending_commands": stack.channel.pending_count,
        }
        idle = stack.watchdog.idle_for()
        checks["activity"] = {
            "ok": not stack.watchdog.is_stale(),
            "idle_seconds": None if idle is None else round(idle, 1),
            "stale_after": stack.watchdog.stale_after,
        }

    overall_ok = all(check.get("ok", False) for check in checks.values())

    _extractor_event(
        "state" if overall_ok else "error",
        phase="health",
        context="healthcheck",
        ok=overall_ok,
        checks=checks,
    )

    return HealthResult(ok=overall_ok, checks=checks)


if __name__ == "__main__":  # pragma: no cover
    result = run_health_checks(entrypoint="cli")
    for name, info in result.checks.items():
        status = "OK" if info.get("ok") else "FAIL"
        log_line(f"[HEALTH] {name}: {status} {info}")
    raise SystemExit(0 if result.ok else 1)
