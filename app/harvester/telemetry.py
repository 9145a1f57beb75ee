"""Per-phase outcome telemetry."""

from __future__ import annotations

import json
import time
import uuid
from collections import defaultdict
from pathlib import Path
from threading import Lock
from typing import Any, Dict, List, Optional

from .logging_utils import _harvest_event


def _ts() -> str:
    return time.strftime("%Y%m%d_%H%M%S")


class Outcome:
    INDEXED = "indexed"
    RETRIEVED = "retrieved"
    SKIPPED = "skipped"
    DUPLICATE = "duplicate"
    FAILED = "failed"


class PhaseTelemetry:
    """Collect unit outcomes for one phase; safe to call from worker threads."""

    def __init__(self, phase: str, runs_dir: Optional[Path] = None) -> None:
        self.run_id = f"{_ts()}_{uuid.uuid4().hex[:8]}"
        self.phase = phase
        self.runs_dir = Path(runs_dir) if runs_dir is not None else None
        self.started_at = time.time()
        self.failures: List[Dict[str, Any]] = []
        self.counts: Dict[str, int] = defaultdict(int)
        self.error_codes: Dict[str, int] = defaultdict(int)
        self._lock = Lock()

    def add(
        self,
        outcome: str,
        record_id: int,
        *,
        error_code: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        with self._lock:
            self.counts[outcome] += 1
            if outcome == Outcome.FAILED:
                self.error_codes[error_code or "unknown"] += 1
                self.failures.append(
                    {"id": record_id, "error_code": error_code, "message": message}
                )

    def count(self, outcome: str) -> int:
        with self._lock:
            return self.counts.get(outcome, 0)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "run_id": self.run_id,
                "phase": self.phase,
                "started_at": self.started_at,
                "counts": dict(self.counts),
                "error_codes": dict(self.error_codes),
                "failures": list(self.failures),
            }

    def finalize(self, extra: Optional[Dict[str, Any]] = None) -> Optional[Path]:
        """Emit the phase summary and write it to ``runs_dir`` when configured."""

        payload = {**self.snapshot(), "ended_at": time.time(), **(extra or {})}
        _harvest_event(
            "summary",
            phase=self.phase,
            counts=payload["counts"],
            error_codes=payload["error_codes"],
        )
        if self.runs_dir is None:
            return None

        self.runs_dir.mkdir(parents=True, exist_ok=True)
        path = self.runs_dir / f"phase_{self.phase}_{self.run_id}.json"
        with path.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
        return path


__all__ = ["Outcome", "PhaseTelemetry"]
