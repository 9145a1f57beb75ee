"""Phase orchestration for the catalog harvester.

Workflow:

- ``index``: walk IDs ``1..max_id`` ascending; fetch and store every ID that is
  not in the catalog yet.
- ``download``: walk IDs ``1..max_id`` ascending; transfer the artifact of
  every indexed record that is not retrieved yet and flag it retrieved.
- ``both``: ``index`` then ``download``.
- ``update``: like ``index`` but walks ``max_id..1`` so the newest entries are
  picked up first.

Every per-ID failure is logged to the operation log and counted in the phase
telemetry; nothing is retried within a run. Re-running a stage is the retry.
"""

from __future__ import annotations

import sys
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from tqdm import tqdm

from .artifact_downloader import TransferError
from .catalog_store import CatalogStore, StoreWriteError
from .config import RunConfig
from .logging_utils import _harvest_event
from .record_fetcher import FetchError
from .records import Record
from .scheduler import BoundedScheduler, Direction, SchedulerSummary, id_range
from .telemetry import Outcome, PhaseTelemetry
from .utils import ensure_dir, log_line


class Phase(str, Enum):
    INDEX = "index"
    DOWNLOAD = "download"
    UPDATE = "update"


PHASE_DIRECTIONS: Dict[Phase, Direction] = {
    Phase.INDEX: Direction.ASCENDING,
    Phase.DOWNLOAD: Direction.ASCENDING,
    Phase.UPDATE: Direction.DESCENDING,
}

_PHASE_BANNERS: Dict[Phase, str] = {
    Phase.INDEX: "Building the catalog index.",
    Phase.DOWNLOAD: "Downloading the indexed artifacts.",
    Phase.UPDATE: "Updating the existing catalog index.",
}

_STAGE_PHASES: Dict[str, List[Phase]] = {
    "index": [Phase.INDEX],
    "download": [Phase.DOWNLOAD],
    "both": [Phase.INDEX, Phase.DOWNLOAD],
    "update": [Phase.UPDATE],
}

ProgressFactory = Callable[[int, str], Any]


class DownloadDirError(Exception):
    """Raised when the artifact destination directory cannot be created."""


def phases_for_stage(stage: str) -> List[Phase]:
    try:
        return list(_STAGE_PHASES[stage])
    except KeyError:
        raise ValueError(f"unknown stage {stage!r}") from None


def default_progress(total: int, desc: str) -> tqdm:
    return tqdm(total=total, desc=desc, unit="id", file=sys.stderr, mininterval=0.1)


@dataclass
class PhaseReport:
    phase: Phase
    scheduler: SchedulerSummary
    counts: Dict[str, int] = field(default_factory=dict)
    telemetry_path: Optional[Path] = None


@dataclass
class PipelineResult:
    reports: List[PhaseReport] = field(default_factory=list)

    def report_for(self, phase: Phase) -> Optional[PhaseReport]:
        for report in self.reports:
            if report.phase is phase:
                return report
        return None


class Orchestrator:
    def __init__(
        self,
        run_config: RunConfig,
        store: CatalogStore,
        fetcher: Any,
        downloader: Any,
        *,
        progress_factory: Optional[ProgressFactory] = default_progress,
        write_telemetry: bool = True,
    ) -> None:
        self.run_config = run_config
        self.store = store
        self.fetcher = fetcher
        self.downloader = downloader
        self.progress_factory = progress_factory
        self.write_telemetry = write_telemetry
        self._run_started: Optional[float] = None

    @property
    def download_dir(self) -> Path:
        return self.run_config.resolved_download_dir

    def prepare_download_dir(self) -> Path:
        try:
            return ensure_dir(self.download_dir)
        except OSError as exc:
            _harvest_event(
                "error",
                phase=Phase.DOWNLOAD.value,
                context="download_dir",
                path=str(self.download_dir),
                error=str(exc),
            )
            raise DownloadDirError(f"cannot create download dir {self.download_dir}: {exc}") from exc

    def _record_failure(
        self,
        phase: Phase,
        telemetry: PhaseTelemetry,
        record_id: int,
        *,
        action: str,
        error_code: str,
        message: str,
    ) -> None:
        log_line(f"[{phase.value.upper()}] cannot {action} item {record_id}: {message}")
        _harvest_event(
            "error",
            phase=phase.value,
            id=record_id,
            error_code=error_code,
            error=message,
        )
        telemetry.add(Outcome.FAILED, record_id, error_code=error_code, message=message)

    def index_unit(self, phase: Phase, record_id: int, telemetry: PhaseTelemetry) -> None:
        """Index one ID unless it is already in the catalog."""

        if self.store.exists(record_id):
            telemetry.add(Outcome.SKIPPED, record_id)
            return

        try:
            record = self.fetcher.fetch(record_id)
        except FetchError as exc:
            self._record_failure(
                phase,
                telemetry,
                record_id,
                action="index",
                error_code=exc.error_code,
                message=str(exc),
            )
            return

        try:
            inserted = self.store.upsert_indexed(record)
        except StoreWriteError as exc:
            self._record_failure(
                phase,
                telemetry,
                record_id,
                action="store",
                error_code=exc.error_code,
                message=str(exc),
            )
            return

        telemetry.add(Outcome.INDEXED if inserted else Outcome.DUPLICATE, record_id)

    def download_unit(self, record_id: int, telemetry: PhaseTelemetry) -> None:
        """Transfer one record's artifact unless it is retrieved or unknown."""

        record = self.store.read_by_id(record_id)
        if self.store.is_downloaded(record_id):
            if record == Record(id=record_id):
                _harvest_event(
                    "state",
                    phase=Phase.DOWNLOAD.value,
                    kind="skip",
                    id=record_id,
                    reason="not_indexed",
                )
            telemetry.add(Outcome.SKIPPED, record_id)
            return

        try:
            self.downloader.transfer(record, self.download_dir)
        except TransferError as exc:
            self._record_failure(
                Phase.DOWNLOAD,
                telemetry,
                record_id,
                action="download",
                error_code=exc.error_code,
                message=str(exc),
            )
            return

        try:
            self.store.mark_retrieved(record_id)
        except StoreWriteError as exc:
            self._record_failure(
                Phase.DOWNLOAD,
                telemetry,
                record_id,
                action="mark retrieved",
                error_code=exc.error_code,
                message=str(exc),
            )
            return

        telemetry.add(Outcome.RETRIEVED, record_id)

    def _remaining_seconds(self) -> Optional[float]:
        limit = self.run_config.max_run_seconds
        if limit is None or self._run_started is None:
            return limit
        return max(0.0, limit - (time.monotonic() - self._run_started))

    def run_phase(self, phase: Phase) -> PhaseReport:
        banner = _PHASE_BANNERS[phase]
        log_line(banner)
        _harvest_event("state", phase=phase.value, kind="phase_start", max_id=self.run_config.max_id)

        telemetry = PhaseTelemetry(
            phase.value,
            runs_dir=self.run_config.runs_dir if self.write_telemetry else None,
        )
        progress = (
            self.progress_factory(self.run_config.max_id, phase.value)
            if self.progress_factory is not None
            else None
        )

        def unit(record_id: int) -> None:
            try:
                if phase is Phase.DOWNLOAD:
                    self.download_unit(record_id, telemetry)
                else:
                    self.index_unit(phase, record_id, telemetry)
            finally:
                if progress is not None:
                    progress.update(1)

        scheduler = BoundedScheduler(
            self.run_config.max_concurrent,
            max_run_seconds=self._remaining_seconds(),
        )
        try:
            summary = scheduler.run(
                id_range(1, self.run_config.max_id, PHASE_DIRECTIONS[phase]),
                unit,
                label=phase.value,
            )
        finally:
            if progress is not None:
                progress.close()

        telemetry_path = telemetry.finalize(
            {
                "dispatched": summary.dispatched,
                "unit_errors": summary.failed,
                "peak_in_flight": summary.peak_in_flight,
                "stopped_early": summary.stopped_early,
            }
        )
        counts = telemetry.snapshot()["counts"]
        log_line(
            f"[{phase.value.upper()}] finished: dispatched={summary.dispatched} "
            + " ".join(f"{name}={count}" for name, count in sorted(counts.items()))
        )
        return PhaseReport(
            phase=phase,
            scheduler=summary,
            counts=counts,
            telemetry_path=telemetry_path,
        )

    def run(self) -> PipelineResult:
        """Run every phase of the configured stage in order."""

        self._run_started = time.monotonic()
        result = PipelineResult()
        for phase in phases_for_stage(self.run_config.stage):
            if phase is Phase.DOWNLOAD:
                self.prepare_download_dir()
            result.reports.append(self.run_phase(phase))
        log_line("All done!")
        return result


def run_pipeline(
    run_config: RunConfig,
    store: CatalogStore,
    fetcher: Any,
    downloader: Any,
    **kwargs: Any,
) -> PipelineResult:
    return Orchestrator(run_config, store, fetcher, downloader, **kwargs).run()


__all__ = [
    "DownloadDirError",
    "Orchestrator",
    "default_progress",
    "PHASE_DIRECTIONS",
    "Phase",
    "PhaseReport",
    "PipelineResult",
    "phases_for_stage",
    "run_pipeline",
]
