"""
Batch fan-out coordinator:
   - splits an id set into ordered, non-overlapping batches of at most batch_size (ceil(M / C) batches);
   - runs them on a small thread pool (2-3 in flight) with a fixed delay between submissions;
   - a failed batch is recorded and never aborts its siblings;
   - results come back as the union of successful batches, in batch order.
"""
from __future__ import annotations
import logging, time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, Sequence, TypeVar

from catalog_hub.core.config import settings
from catalog_hub.integrations.marketplace.errors import SyncCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class FailedBatch:
    index: int
    items: List[Any]
    error: str


@dataclass
class BatchProgress:
    completed: int          # batches finished (ok or failed)
    total: int              # batches planned
    items_done: int
    items_total: int
    failed: int


@dataclass
class FanOutResult(Generic[R]):
    items: List[R] = field(default_factory=list)
    failed: List[FailedBatch] = field(default_factory=list)
    batches: int = 0

    @property
    def failed_items(self) -> List[Any]:
        out: List[Any] = []
        for fb in self.failed:
            out.extend(fb.items)
        return out

    @property
    def ok(self) -> bool:
        return not self.failed


def chunked(seq: Iterable[T], size: int) -> Iterable[List[T]]:
    """Split seq into lists of at most size items, skipping None / blank strings."""
    size = max(1, int(size))
    buf: List[T] = []
    for s in seq:
        if s is None:
            continue
        if isinstance(s, str):
            s = s.strip()  # type: ignore[assignment]
            if not s:
                continue
        buf.append(s)
        if len(buf) >= size:
            yield buf
            buf = []
    if buf:
        yield buf


def unique_ids(ids: Iterable[Any]) -> List[str]:
    """Trimmed, de-duplicated string ids in first-seen order."""
    seen: set[str] = set()
    out: List[str] = []
    for raw in ids:
        if raw is None:
            continue
        s = str(raw).strip()
        if not s or s in seen:
            continue
        seen.add(s)
        out.append(s)
    return out


class BatchFanOut:

    def __init__(
        self,
        concurrency: Optional[int] = None,
        batch_delay: Optional[float] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> None:
        self.concurrency = settings.SYNC_FANOUT_CONCURRENCY if concurrency is None else int(concurrency)
        if self.concurrency < 1:
            raise ValueError(f"fan-out concurrency must be >= 1, got {concurrency!r}")
        self.batch_delay = settings.SYNC_BATCH_DELAY_SEC if batch_delay is None else float(batch_delay)
        self.sleep = sleep
        self.should_stop = should_stop


    def plan(self, items: Sequence[T], batch_size: int, *, dedupe: bool = True) -> List[List[Any]]:
        source: Iterable[Any] = unique_ids(items) if dedupe else items
        return list(chunked(source, batch_size))


    def run(
        self,
        items: Sequence[T],
        batch_size: int,
        call: Callable[[List[Any]], Sequence[R]],
        *,
        dedupe: bool = True,
        on_progress: Optional[Callable[[BatchProgress], None]] = None,
        label: str = "",
    ) -> FanOutResult[R]:
        """
        call(batch) -> list of results for that batch.
        on_progress runs on the calling thread after each finished batch.
        """
        batches = self.plan(items, batch_size, dedupe=dedupe)
        result: FanOutResult[R] = FanOutResult(batches=len(batches))
        if not batches:
            return result

        items_total = sum(len(b) for b in batches)
        by_index: Dict[int, List[R]] = {}
        state = {"completed": 0, "items_done": 0}

        def _collect(fut: Future, idx: int) -> None:
            batch = batches[idx]
            err = fut.exception()
            if err is not None:
                logger.error(
                    "fan-out %s batch %d/%d failed; size=%d sample=%s err=%s",
                    label, idx + 1, len(batches), len(batch), batch[:5], err,
                )
                result.failed.append(FailedBatch(index=idx, items=list(batch), error=str(err)))
            else:
                by_index[idx] = list(fut.result() or [])
            state["completed"] += 1
            state["items_done"] += len(batch)
            if on_progress:
                on_progress(BatchProgress(
                    completed=state["completed"],
                    total=len(batches),
                    items_done=state["items_done"],
                    items_total=items_total,
                    failed=len(result.failed),
                ))

        cancelled = False
        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="fanout") as pool:
            pending: Dict[Future, int] = {}
            for idx, batch in enumerate(batches):
                if self.should_stop and self.should_stop():
                    cancelled = True
                    break
                if len(pending) >= self.concurrency:
                    done, _ = wait(list(pending), return_when=FIRST_COMPLETED)
                    for fut in done:
                        _collect(fut, pending.pop(fut))
                if idx > 0 and self.batch_delay:
                    self.sleep(self.batch_delay)
                pending[pool.submit(call, batch)] = idx

            # drain in-flight batches, even when cancelling
            while pending:
                done, _ = wait(list(pending), return_when=FIRST_COMPLETED)
                for fut in done:
                    _collect(fut, pending.pop(fut))

        if cancelled:
            raise SyncCancelled(f"fan-out cancelled: {label}")

        result.failed.sort(key=lambda fb: fb.index)
        for idx in sorted(by_index):
            result.items.extend(by_index[idx])
        if result.failed:
            logger.warning(
                "fan-out %s finished with failures: batches=%d failed=%d failed_items=%d",
                label, len(batches), len(result.failed), len(result.failed_items),
            )
        return result
