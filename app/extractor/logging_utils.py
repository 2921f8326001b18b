from __future__ import annotations

from typing import Any

from .utils import log_line

# Fields stamped on every event, e.g. the browser tab the engine drives.
_EVENT_CONTEXT: dict[str, Any] = {}


def bind_event_context(**fields: Any) -> None:
    """Attach ``fields`` (``tab_id`` and friends) to all later extractor events."""

    _EVENT_CONTEXT.update({k: v for k, v in fields.items() if v is not None})


def clear_event_context() -> None:
    _EVENT_CONTEXT.clear()


def _extractor_event(label: str = "", *, phase: str | None = None, **fields: Any) -> None:
    """Emit a structured extractor log line.

    ``phase`` may be used as a keyword alias for the label. When both ``label``
    and ``phase`` are provided, ``phase`` is emitted as part of the payload so
    the caller still captures the event stage. Bound context fields are added
    unless the caller passes its own value.
    """

    try:
        phase_label = label or (phase or "")
        if phase and label:
            fields.setdefault("phase", phase)
        for key, value in _EVENT_CONTEXT.items():
            fields.setdefault(key, value)
        payload = ", ".join(f"{k}={repr(v)}" for k, v in sorted(fields.items()))
        log_line(f"[EXTRACTOR][{phase_label.upper()}] {payload}")
    except Exception:
        # Never let logging break the extraction loop.
        return


__all__ = ["_extractor_event", "bind_event_context", "clear_event_context"]
