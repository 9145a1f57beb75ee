from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from threading import BoundedSemaphore, Event, Lock
from typing import Callable, Iterable, Iterator, Optional

from .error_codes import ErrorCode
from .logging_utils import _harvest_event

UnitOfWork = Callable[[int], None]


class Direction(str, Enum):
    ASCENDING = "ascending"
    DESCENDING = "descending"


def id_range(lo: int, hi: int, direction: Direction = Direction.ASCENDING) -> Iterator[int]:
    """Yield every ID in ``[lo, hi]`` in ``direction`` order."""

    if direction is Direction.DESCENDING:
        return iter(range(hi, lo - 1, -1))
    return iter(range(lo, hi + 1))


@dataclass
class SchedulerSummary:
    dispatched: int
    completed: int
    failed: int
    peak_in_flight: int
    stopped_early: bool
    elapsed_seconds: float


class BoundedScheduler:
    """
    Run a unit of work over a sequence of IDs with at most ``max_concurrent``
    units active at once.

    - The dispatch loop blocks on a semaphore until a slot frees up.
    - Units run on a thread pool sized to the cap; an exception escaping a
      unit is logged and counted, never propagated.
    - ``run`` returns only after every dispatched unit has finished.
    """

    def __init__(
        self,
        max_concurrent: int,
        *,
        max_run_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._max_concurrent = max(1, int(max_concurrent))
        self._max_run_seconds = max_run_seconds
        self._clock = clock
        self._slots = BoundedSemaphore(self._max_concurrent)
        self._lock = Lock()
        self._stop = Event()
        self._in_flight: int = 0
        self._peak_in_flight: int = 0

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def peak_in_flight(self) -> int:
        with self._lock:
            return self._peak_in_flight

    def stop(self) -> None:
        """Stop dispatching further IDs; in-flight units still drain."""

        self._stop.set()

    def _deadline_passed(self, started: float) -> bool:
        if self._max_run_seconds is None:
            return False
        return self._clock() - started >= self._max_run_seconds

    def run(self, ids: Iterable[int], unit_of_work: UnitOfWork, *, label: str = "phase") -> SchedulerSummary:
        started = self._clock()
        dispatched = 0
        counts = {"completed": 0, "failed": 0}
        stopped_early = False
        self._stop.clear()
        with self._lock:
            self._peak_in_flight = 0

        def _wrapped(record_id: int) -> None:
            try:
                unit_of_work(record_id)
            except Exception as exc:  # noqa: BLE001
                with self._lock:
                    counts["failed"] += 1
                _harvest_event(
                    "error",
                    phase=label,
                    id=record_id,
                    error_code=ErrorCode.INTERNAL,
                    error=repr(exc),
                )
            else:
                with self._lock:
                    counts["completed"] += 1
            finally:
                with self._lock:
                    self._in_flight -= 1
                self._slots.release()

        with ThreadPoolExecutor(
            max_workers=self._max_concurrent, thread_name_prefix=f"harvest-{label}"
        ) as executor:
            for record_id in ids:
                if self._stop.is_set() or self._deadline_passed(started):
                    stopped_early = True
                    break
                self._slots.acquire()
                # The wait for a slot may have outlasted the deadline or a stop request.
                if self._stop.is_set() or self._deadline_passed(started):
                    self._slots.release()
                    stopped_early = True
                    break
                with self._lock:
                    self._in_flight += 1
                    self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
                executor.submit(_wrapped, record_id)
                dispatched += 1
            # Leaving the executor block waits for every submitted unit.

        elapsed = self._clock() - started
        summary = SchedulerSummary(
            dispatched=dispatched,
            completed=counts["completed"],
            failed=counts["failed"],
            peak_in_flight=self.peak_in_flight,
            stopped_early=stopped_early,
            elapsed_seconds=elapsed,
        )
        if stopped_early:
            _harvest_event(
                "state",
                phase=label,
                kind="dispatch_stopped",
                dispatched=dispatched,
                elapsed_seconds=round(elapsed, 3),
            )
        _harvest_event(
            "state",
            phase=label,
            kind="scheduler_summary",
            dispatched=summary.dispatched,
            completed=summary.completed,
            failed=summary.failed,
            peak_in_flight=summary.peak_in_flight,
            max_concurrent=self._max_concurrent,
        )
        return summary


__all__ = [
    "BoundedScheduler",
    "Direction",
    "SchedulerSummary",
    "UnitOfWork",
    "id_range",
]
