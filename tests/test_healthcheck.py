from __future__ import annotations

from pathlib import Path

import pytest

from app.extractor import config, healthcheck
from app.extractor.runtime import EngineHost
from tests.fakes import FakeApi, FakeSurface


def _host() -> EngineHost:
    surface = FakeSurface()
    host = EngineHost("tab-1", "user@example.com", surface=surface, api=FakeApi())
    surface.attach(host.stack.channel)
    return host


def test_run_health_checks_happy_path(_isolated_data_dir: Path) -> None:
    result = healthcheck.run_health_checks(entrypoint="tests")

    assert result.ok is True
    assert result.checks["config"]["ok"] is True
    assert result.checks["filesystem"]["ok"] is True
    assert (_isolated_data_dir / "logs").is_dir()


def test_run_health_checks_handles_invalid_config(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, "API_REQUEST_URL", "")

    result = healthcheck.run_health_checks(entrypoint="cli")

    assert result.ok is False
    assert result.checks["config"]["ok"] is False
    assert "EXTRACTOR_API_REQUEST_URL" in result.checks["config"]["error"]


def test_browser_and_activity_checks_use_host_state() -> None:
    host = _host()
    host.stack.channel.ready = True

    result = healthcheck.run_health_checks(host, entrypoint="tests")

    assert result.ok is True
    assert result.checks["browser"] == {"ok": True, "pending_commands": 0}
    assert result.checks["activity"]["idle_seconds"] is None


def test_stale_loop_is_unhealthy() -> None:
    host = _host()
    host.stack.channel.ready = True
    host.stack.state.last_activity_at = 0.0

    result = healthcheck.run_health_checks(host, entrypoint="tests")

    assert result.ok is False
    assert result.checks["activity"]["ok"] is False


def test_browser_not_ready_is_unhealthy() -> None:
    host = _host()

    result = healthcheck.run_health_checks(host, entrypoint="tests")

    assert result.ok is False
    assert result.checks["browser"]["ok"] is False
