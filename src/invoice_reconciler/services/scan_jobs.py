"""
In-memory scan job state.

- ScanJob: progress counters of one scan, mutated only by its worker
- JobRegistry: owned job map (get/put/delete/sweep) behind a lock
- JobJanitor: background thread sweeping finished jobs on an interval
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class ScanStatus(str, Enum):
    """Status of a scan job. running → done | error, never back."""

    RUNNING = "running"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self is not ScanStatus.RUNNING


def _iso(timestamp: Optional[float]) -> Optional[str]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, timezone.utc).isoformat().replace("+00:00", "Z")


def new_job_id() -> str:
    return f"scan_{uuid.uuid4().hex}"


@dataclass
class ScanJob:
    """
    Progress of one scan invocation.

    Counters are only changed through the methods below, which hold the
    job's lock, so pollers always read a consistent snapshot.

    Invariants:
    - processed <= total once total is known
    - status is monotonic (running → done | error)
    """

    id: str
    user_id: int
    company_id: Optional[int] = None
    status: ScanStatus = ScanStatus.RUNNING
    total: int = 0
    processed: int = 0
    scanned: int = 0  # Newly cached files
    matched: int = 0
    errors: list[str] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def set_total(self, total: int) -> None:
        with self._lock:
            self.total = total

    def record_processed(self, scanned: bool = False, matched: bool = False) -> None:
        """Count one file as handled (skipped, cached or failed)."""
        with self._lock:
            self.processed += 1
            if scanned:
                self.scanned += 1
            if matched:
                self.matched += 1

    def add_error(self, message: str) -> None:
        with self._lock:
            self.errors.append(message)

    def finish(self, status: ScanStatus, error: Optional[str] = None) -> bool:
        """
        Move to a terminal status.

        Returns:
            False if the job had already finished (status is not changed)
        """
        if not status.is_terminal:
            raise ValueError(f"Cannot finish a job with status {status.value}")
        with self._lock:
            if self.status.is_terminal:
                return False
            if error:
                self.errors.append(error)
            self.status = status
            self.finished_at = time.time()
            return True

    def is_expired(self, retention_seconds: float, now: Optional[float] = None) -> bool:
        """True for terminal jobs finished more than retention_seconds ago."""
        with self._lock:
            if not self.status.is_terminal or self.finished_at is None:
                return False
            return (now or time.time()) - self.finished_at > retention_seconds

    def snapshot(self) -> dict:
        """Consistent copy for pollers."""
        with self._lock:
            return {
                "id": self.id,
                "user_id": self.user_id,
                "company_id": self.company_id,
                "status": self.status.value,
                "total": self.total,
                "processed": self.processed,
                "scanned": self.scanned,
                "matched": self.matched,
                "errors": list(self.errors),
                "started_at": _iso(self.started_at),
                "finished_at": _iso(self.finished_at),
            }


class JobRegistry:
    """Thread-safe map of job id → ScanJob."""

    def __init__(self):
        self._jobs: dict[str, ScanJob] = {}
        self._lock = threading.Lock()

    def get(self, job_id: str) -> Optional[ScanJob]:
        with self._lock:
            return self._jobs.get(job_id)

    def put(self, job: ScanJob) -> None:
        with self._lock:
            self._jobs[job.id] = job

    def delete(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def sweep(self, retention_seconds: float, now: Optional[float] = None) -> int:
        """
        Drop finished jobs older than the retention window.

        Running jobs are never removed.

        Returns:
            Number of jobs removed
        """
        now = now or time.time()
        with self._lock:
            expired = [
                job_id
                for job_id, job in self._jobs.items()
                if job.is_expired(retention_seconds, now)
            ]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            logger.debug(f"Swept {len(expired)} finished scan job(s)")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)


class JobJanitor:
    """Background thread that periodically sweeps a JobRegistry."""

    def __init__(
        self,
        registry: JobRegistry,
        retention_seconds: float = 3600,
        interval_seconds: float = 600,
    ):
        self.registry = registry
        self.retention_seconds = retention_seconds
        self.interval_seconds = interval_seconds
        self._shutdown = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        """Start the sweep thread (no-op if already running)."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._shutdown.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="scan-job-janitor",
            daemon=True,  # Thread will be killed when main process exits
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5) -> None:
        """Signal the thread to stop and wait for it."""
        self._shutdown.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        # Event.wait returns True as soon as stop() is called
        while not self._shutdown.wait(self.interval_seconds):
            try:
                self.registry.sweep(self.retention_seconds)
            except Exception as e:
                logger.error(f"Error sweeping scan jobs: {e}", exc_info=True)
