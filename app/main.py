from __future__ import annotations

import os
from typing import Optional

from flask import Flask, Response, jsonify, request

from app.extractor.healthcheck import run_health_checks
from app.extractor.runtime import EngineHost
from app.extractor.utils import ensure_dirs, log_line

app = Flask(__name__)
app.secret_key = os.environ.get("SECRET_KEY", "dev-secret-change-me")

ensure_dirs()

COMMAND_WAIT_SECONDS = 30


def attach_host(host: EngineHost) -> None:
    """Register the running extraction host with the control API."""

    app.config["HOST"] = host


def _host() -> Optional[EngineHost]:
    return app.config.get("HOST")


def _no_host() -> Response:
    return jsonify({"ok": False, "error": "extractor not running"}), 503


@app.get("/api/status")
def api_status() -> Response:
    """Return extraction status, countdown, current target and account counters."""

    host = _host()
    if host is None:
        return _no_host()
    return jsonify(host.snapshot())


@app.post("/api/start")
def api_start() -> Response:
    host = _host()
    if host is None:
        return _no_host()
    host.start_extraction().result(timeout=COMMAND_WAIT_SECONDS)
    log_line("[API] Extraction started via control API")
    return jsonify({"ok": True, "status": host.snapshot()["status"]})


@app.post("/api/stop")
def api_stop() -> Response:
    host = _host()
    if host is None:
        return _no_host()
    payload = request.get_json(silent=True) or {}
    restart = bool(payload.get("restart", False))
    # Stopping may wait on the page script's cancellation reply.
    host.stop_extraction(restart).result()
    log_line(f"[API] Extraction stopped via control API (restart={restart})")
    return jsonify({"ok": True, "status": host.snapshot()["status"]})


@app.get("/api/messages")
def api_messages() -> Response:
    host = _host()
    if host is None:
        return _no_host()
    return jsonify({"messages": host.messages()})


@app.get("/api/health")
def api_health() -> Response:
    """Return a JSON health summary for configuration, browser and loop activity."""

    result = run_health_checks(_host(), entrypoint="ui")
    status = 200 if result.ok else 503
    return jsonify({"ok": result.ok, "checks": result.checks}), status
