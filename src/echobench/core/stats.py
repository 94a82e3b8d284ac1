"""
=============================================================================
SESSION STATISTICS
=============================================================================

Each client worker keeps its own running statistics and prints them once,
when it is told to stop. Nothing is merged across workers: the operator sees
one block per worker process.

RUNNING MEAN WITHOUT HISTORY
────────────────────────────

Storing every service time of a multi-minute run with thousands of
connections would grow without bound. The mean is updated incrementally:

    avg_n = avg_(n-1) + (x_n - avg_(n-1)) / n

    x = 3   →  avg = 0 + (3 - 0) / 1 = 3
    x = 7   →  avg = 3 + (7 - 3) / 2 = 5
    x = 5   →  avg = 5 + (5 - 5) / 3 = 5

NO TORN READS
─────────────

The stats block is printed from a signal handler, which Python runs in the
main thread BETWEEN any two bytecodes, including halfway through an update.
AggregateStats is therefore immutable: every update builds a new instance
and swaps it in with one attribute assignment. The handler sees either the
old snapshot or the new one, never a mix.

PRINTING FROM MANY PROCESSES
────────────────────────────

All workers are stopped by the same signal at the same moment. Their output
goes to one shared stdout, so each block is written while holding a lock
created before fork:

    worker 0: ──[acquire]── print block ── flush ──[release]──
    worker 1: ──[wait............................]──[acquire]── print ...

=============================================================================
"""

import math
import os
import sys
import time
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, TextIO


def allocate(total: int, workers: int) -> List[int]:
    """
    Split `total` connections across `workers` processes.

    Worker 0 takes the remainder:

        allocate(10, 3) → [4, 3, 3]
    """
    if workers < 1:
        raise ValueError("workers must be >= 1")
    share, remainder = divmod(total, workers)
    return [share + remainder] + [share] * (workers - 1)


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


@dataclass(frozen=True)
class AggregateStats:
    """
    One consistent view of a worker's statistics.

    Service times are in milliseconds. min_service_time is infinite until
    the first session completes; use StatsAggregator.report_fields() for
    printable values.
    """
    min_service_time: float = math.inf
    max_service_time: float = 0.0
    avg_service_time: float = 0.0
    total_sessions: int = 0
    peak_concurrent_sessions: int = 0
    current_concurrent_sessions: int = 0
    aborted_sessions: int = 0


class StatsAggregator:
    """
    Process-local statistics for one client worker.

    The load generator calls:
        session_started()      on a slot's first transmit
        session_completed(ms)  when a slot finishes its last echo round
        session_aborted()      when a started session dies early

    Attributes:
        target_sessions: Slots this worker runs (its allocation).
        started_at: Monotonic start time in ms.
    """

    def __init__(self, target_sessions: int = 0, clock: Callable[[], float] = monotonic_ms):
        self.target_sessions = target_sessions
        self._clock = clock
        self.started_at = clock()
        self._stats = AggregateStats()
        self._reported = False

    @property
    def stats(self) -> AggregateStats:
        return self._stats

    def session_started(self) -> None:
        s = self._stats
        current = s.current_concurrent_sessions + 1
        self._stats = replace(
            s,
            current_concurrent_sessions=current,
            peak_concurrent_sessions=max(s.peak_concurrent_sessions, current),
        )

    def session_completed(self, service_time: float) -> None:
        """
        Fold one finished session into the running figures.

        The concurrency count drops before the total rises, and both land in
        the same swap as the min/max/avg update.
        """
        s = self._stats
        current = s.current_concurrent_sessions - 1
        total = s.total_sessions + 1
        self._stats = replace(
            s,
            current_concurrent_sessions=current,
            total_sessions=total,
            min_service_time=min(s.min_service_time, service_time),
            max_service_time=max(s.max_service_time, service_time),
            avg_service_time=s.avg_service_time + (service_time - s.avg_service_time) / total,
        )

    def session_aborted(self) -> None:
        """A started session ended without completing; it is not timed."""
        s = self._stats
        self._stats = replace(
            s,
            current_concurrent_sessions=s.current_concurrent_sessions - 1,
            aborted_sessions=s.aborted_sessions + 1,
        )

    # =========================================================================
    # REPORTING
    # =========================================================================

    def report_fields(self, now: Optional[float] = None) -> dict:
        """
        Printable figures.

        With no completed session, min/max/avg are reported as 0.0 and the
        session rate is 0.0. The rate never divides by zero, even for a run
        shorter than one millisecond.
        """
        s = self._stats
        now = self._clock() if now is None else now
        runtime_ms = max(0, int(now - self.started_at))

        if s.total_sessions:
            min_t, max_t, avg_t = s.min_service_time, s.max_service_time, s.avg_service_time
        else:
            min_t = max_t = avg_t = 0.0

        rate = s.total_sessions / (runtime_ms / 1000.0) if runtime_ms > 0 else 0.0

        return {
            "minServiceTime": min_t,
            "maxServiceTime": max_t,
            "avgServiceTime": avg_t,
            "totalSessionCount": s.total_sessions,
            "targetSessionCount": self.target_sessions,
            "peakSessionCount": s.peak_concurrent_sessions,
            "abortedSessionCount": s.aborted_sessions,
            "sessionsRate": rate,
            "totalRuntime": runtime_ms,
        }

    def format_report(self, pid: Optional[int] = None, now: Optional[float] = None) -> str:
        f = self.report_fields(now)
        lines = [
            "",
            f"[{os.getpid() if pid is None else pid}]",
            f"     minServiceTime: {f['minServiceTime']:f} ms",
            f"     maxServiceTime: {f['maxServiceTime']:f} ms",
            f"     avgServiceTime: {f['avgServiceTime']:f} ms",
            f"  totalSessionCount: {f['totalSessionCount']}",
            f" targetSessionCount: {f['targetSessionCount']}",
            f"   peakSessionCount: {f['peakSessionCount']}",
            f"abortedSessionCount: {f['abortedSessionCount']}",
            f"       sessionsRate: {f['sessionsRate']:f} sessions served per second",
            f"       totalRuntime: {f['totalRuntime']} ms",
        ]
        return "\n".join(lines) + "\n"

    def print_report(self, lock=None, out: Optional[TextIO] = None) -> bool:
        """
        Write the report once, holding the cross-process lock.

        Args:
            lock: Any object with acquire()/release() shared by all workers,
                  e.g. multiprocessing.Lock(). None = no locking.
            out: Stream to write (default: stdout).

        Returns:
            False if the report was already printed.
        """
        if self._reported:
            return False
        self._reported = True

        out = out or sys.stdout
        text = self.format_report()
        if lock is None:
            out.write(text)
            out.flush()
            return True

        with lock:
            out.write(text)
            out.flush()
        return True
