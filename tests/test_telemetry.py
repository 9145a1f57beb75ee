import json
import threading
from pathlib import Path

import pytest

from app.harvester import telemetry
from app.harvester.telemetry import Outcome, PhaseTelemetry
from tests.test_catalog_store import _configure_temp_paths


@pytest.fixture(autouse=True)
def _temp_logs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _configure_temp_paths(tmp_path, monkeypatch)


def test_counts_and_failures_are_tracked() -> None:
    phase = PhaseTelemetry("download")

    phase.add(Outcome.RETRIEVED, 1)
    phase.add(Outcome.SKIPPED, 2)
    phase.add(Outcome.FAILED, 3, error_code="io_write", message="disk full")
    phase.add(Outcome.FAILED, 4)

    snapshot = phase.snapshot()
    assert snapshot["counts"] == {"retrieved": 1, "skipped": 1, "failed": 2}
    assert snapshot["error_codes"] == {"io_write": 1, "unknown": 1}
    assert snapshot["failures"][0] == {"id": 3, "error_code": "io_write", "message": "disk full"}
    assert phase.count(Outcome.DUPLICATE) == 0


def test_concurrent_adds_are_not_lost() -> None:
    phase = PhaseTelemetry("index")

    def worker(offset: int) -> None:
        for record_id in range(offset, offset + 100):
            phase.add(Outcome.INDEXED, record_id)

    threads = [threading.Thread(target=worker, args=(i * 100,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert phase.count(Outcome.INDEXED) == 800


def test_finalize_without_runs_dir_only_emits_summary(monkeypatch: pytest.MonkeyPatch) -> None:
    events: list[tuple] = []
    monkeypatch.setattr(telemetry, "_harvest_event", lambda label="", **fields: events.append((label, fields)))
    phase = PhaseTelemetry("update")
    phase.add(Outcome.INDEXED, 5)

    assert phase.finalize() is None
    assert events == [
        ("summary", {"phase": "update", "counts": {"indexed": 1}, "error_codes": {}})
    ]


def test_finalize_writes_run_file(tmp_path: Path) -> None:
    runs_dir = tmp_path / "runs"
    phase = PhaseTelemetry("index", runs_dir=runs_dir)
    phase.add(Outcome.DUPLICATE, 9)

    path = phase.finalize({"dispatched": 1})

    assert path is not None
    assert path.parent == runs_dir
    assert path.name.startswith("phase_index_")
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload["counts"] == {"duplicate": 1}
    assert payload["dispatched"] == 1
    assert payload["ended_at"] >= payload["started_at"]
