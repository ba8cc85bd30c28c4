"""
Single-flight registry for the catalog sync job.

   idle -> running -> completed | error      (terminal states expire back to idle after a TTL)
   running -> cancelling -> idle

One instance is owned by the app (app.state.sync_jobs) or the worker; nothing here is module state.
Writers are the running job (through observer()) and start/cancel; pollers only read snapshots.
"""
from __future__ import annotations
import logging, threading, time, uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

from catalog_hub.core.config import settings

logger = logging.getLogger(__name__)


IDLE = "idle"
RUNNING = "running"
CANCELLING = "cancelling"
COMPLETED = "completed"
ERROR = "error"

ACTIVE_STATES = (RUNNING, CANCELLING)
TERMINAL_STATES = (COMPLETED, ERROR)


class JobAlreadyRunning(Exception):
    def __init__(self, job_id: Optional[str], stage: str) -> None:
        super().__init__(f"catalog sync already {stage} (job_id={job_id})")
        self.job_id = job_id
        self.stage = stage


@dataclass
class ProgressEvent:
    """Emitted by the engine after each meaningful unit of work."""
    current: int
    total: int
    stage_label: str
    storefront: Optional[str] = None


@dataclass
class SyncResult:
    total: int = 0
    synced: int = 0
    errors: int = 0
    elapsed_sec: float = 0.0
    skipped_no_code: int = 0
    failed_batches: int = 0
    storefronts_processed: int = 0
    failed_storefronts: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class JobSnapshot:
    stage: str = IDLE
    job_id: Optional[str] = None
    current: int = 0
    total: int = 0
    stage_label: str = ""
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None


class ProgressObserver:
    """Receives engine events; the registry is one implementation, tests plug in recorders."""

    def on_progress(self, event: ProgressEvent) -> None:
        ...

    def should_stop(self) -> bool:
        return False


class JobRegistry:

    def __init__(self, ttl_sec: Optional[float] = None, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_sec = settings.SYNC_STATE_TTL_SEC if ttl_sec is None else float(ttl_sec)
        self._clock = clock
        self._lock = threading.Lock()
        self._state = JobSnapshot()
        self._cancel = threading.Event()


    # ---------- Transitions ----------
    def start(self) -> str:
        """idle/terminal -> running; returns the new job id. Raises JobAlreadyRunning otherwise."""
        with self._lock:
            self._expire_locked()
            if self._state.stage in ACTIVE_STATES:
                raise JobAlreadyRunning(self._state.job_id, self._state.stage)
            job_id = uuid.uuid4().hex
            self._cancel.clear()
            self._state = JobSnapshot(
                stage=RUNNING, job_id=job_id, stage_label="starting", started_at=self._clock(),
            )
            logger.info("catalog sync job %s started", job_id)
            return job_id


    def update(self, job_id: str, event: ProgressEvent) -> None:
        with self._lock:
            if self._state.job_id != job_id or self._state.stage not in ACTIVE_STATES:
                return
            self._state.current = int(event.current)
            self._state.total = int(event.total)
            label = event.stage_label
            if event.storefront:
                label = f"{event.storefront}: {label}"
            self._state.stage_label = label


    def complete(self, job_id: str, result: SyncResult, *, failed: bool = False) -> None:
        """
        Terminal state for a job that ran its storefront loop. Failed storefronts stay in the result and
        the job is still completed; failed=True (nothing got through) ends in error. A cancelled job goes to idle.
        """
        with self._lock:
            if self._state.job_id != job_id:
                return
            if self._state.stage == CANCELLING:
                self._reset_locked("cancelled")
                return
            self._state.stage = ERROR if failed else COMPLETED
            self._state.result = result.to_dict()
            self._state.current = self._state.total = result.total
            self._state.stage_label = "done"
            if failed and result.failed_storefronts:
                self._state.error = "; ".join(
                    f"{f.get('storefront')}: {f.get('error')}" for f in result.failed_storefronts[:5]
                )
            self._state.finished_at = self._clock()


    def fail(self, job_id: str, error: str, result: Optional[SyncResult] = None) -> None:
        with self._lock:
            if self._state.job_id != job_id:
                return
            if self._state.stage == CANCELLING:
                self._reset_locked("cancelled")
                return
            self._state.stage = ERROR
            self._state.error = error
            self._state.result = result.to_dict() if result else None
            self._state.stage_label = "failed"
            self._state.finished_at = self._clock()


    def request_cancel(self) -> Optional[str]:
        """running -> cancelling; returns the job id, or None when nothing is running."""
        with self._lock:
            if self._state.stage != RUNNING:
                return None
            self._state.stage = CANCELLING
            self._state.stage_label = "cancelling"
            self._cancel.set()
            logger.info("catalog sync job %s cancellation requested", self._state.job_id)
            return self._state.job_id


    # ---------- Reads ----------
    def snapshot(self) -> JobSnapshot:
        with self._lock:
            self._expire_locked()
            return JobSnapshot(**asdict(self._state))

    def is_cancelled(self) -> bool:
        return self._cancel.is_set()

    def observer(self, job_id: str) -> "RegistryObserver":
        return RegistryObserver(self, job_id)


    # ---------- Internals ----------
    def _expire_locked(self) -> None:
        s = self._state
        if s.stage in TERMINAL_STATES and s.finished_at is not None:
            if self._clock() - s.finished_at >= self.ttl_sec:
                self._reset_locked("expired")

    def _reset_locked(self, why: str) -> None:
        if self._state.job_id:
            logger.info("catalog sync job %s -> idle (%s)", self._state.job_id, why)
        self._state = JobSnapshot()
        self._cancel.clear()


class RegistryObserver(ProgressObserver):

    def __init__(self, registry: JobRegistry, job_id: str) -> None:
        self.registry = registry
        self.job_id = job_id

    def on_progress(self, event: ProgressEvent) -> None:
        self.registry.update(self.job_id, event)

    def should_stop(self) -> bool:
        return self.registry.is_cancelled()
