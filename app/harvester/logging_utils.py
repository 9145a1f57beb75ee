from __future__ import annotations

from typing import Any

from .utils import log_line


def _harvest_event(label: str = "", *, phase: str | None = None, **fields: Any) -> None:
    """Emit a structured harvester log line.

    ``phase`` may be used as the label when ``label`` is empty. When both are
    provided, ``phase`` is emitted as part of the payload so the caller still
    captures which pipeline phase produced the event.
    """

    try:
        event_label = label or (phase or "")
        if phase and label:
            fields.setdefault("phase", phase)
        payload = ", ".join(f"{k}={repr(v)}" for k, v in sorted(fields.items()))
        log_line(f"[HARVEST][{event_label.upper()}] {payload}")
    except Exception:
        # Never let logging break a unit of work.
        return


__all__ = ["_harvest_event"]
