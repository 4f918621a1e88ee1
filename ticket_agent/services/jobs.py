from __future__ import annotations

import threading
import queue
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple
import logging

from ticket_agent.config import settings
from ticket_agent.services.pipeline import TicketPipeline
from ticket_agent.services.types import RecognitionError, SchedulerError, TicketResult


logger = logging.getLogger(__name__)
if settings.DEBUG:
    logger.setLevel(logging.DEBUG)
else:
    logger.setLevel(logging.INFO)

QUEUED = "queued"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"
TERMINAL = frozenset({COMPLETED, FAILED})

# Event kinds
EVENT_PROGRESS = "progress"
EVENT_COMPLETED = "completed"
EVENT_CANCELLED = "cancelled"
EVENT_FAILED = "failed"


@dataclass
class BatchItem:
    index: int
    file_id: str
    status: str = QUEUED  # queued | processing | completed | failed
    progress: float = 0.0
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    result: Optional[TicketResult] = None
    error: Optional[str] = None

    def to_dict(self, include_result: bool = True) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "index": self.index,
            "file_id": self.file_id,
            "status": self.status,
            "progress": round(self.progress, 1),
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "error": self.error,
        }
        if include_result:
            d["result"] = self.result.to_dict() if self.result else None
        return d


@dataclass(frozen=True)
class BatchSnapshot:
    batch_id: str
    status: str  # submitted | running | drained | cancelled | failed
    items: Tuple[BatchItem, ...]
    created_at: float = 0.0

    def to_dict(self, include_result: bool = True) -> Dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "status": self.status,
            "created_at": self.created_at,
            "items": [it.to_dict(include_result) for it in self.items],
        }


@dataclass(frozen=True)
class BatchEvent:
    kind: str  # progress | completed | cancelled | failed
    snapshot: BatchSnapshot
    error: Optional[str] = None

    @property
    def batch_id(self) -> str:
        return self.snapshot.batch_id

    @property
    def items(self) -> Tuple[BatchItem, ...]:
        return self.snapshot.items


Listener = Callable[[BatchEvent], None]


class BatchChannel:
    """Subscribers for one batch's events; the scheduler is the only producer."""

    def __init__(self) -> None:
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def listeners(self) -> Tuple[Listener, ...]:
        return tuple(self._listeners)


@dataclass
class Batch:
    id: str
    items: List[BatchItem]
    images: Dict[int, bytes]
    status: str = "submitted"
    created_at: float = field(default_factory=time.time)
    channel: BatchChannel = field(default_factory=BatchChannel)

    def find(self, index: int) -> Optional[BatchItem]:
        for it in self.items:
            if it.index == index:
                return it
        return None

    def is_drained(self) -> bool:
        return all(it.status in TERMINAL for it in self.items)

    def snapshot(self) -> BatchSnapshot:
        return BatchSnapshot(self.id, self.status, tuple(replace(it) for it in self.items), self.created_at)


def callback_listener(
    on_progress: Optional[Callable[[Tuple[BatchItem, ...]], None]] = None,
    on_complete: Optional[Callable[[Tuple[BatchItem, ...]], None]] = None,
    on_error: Optional[Callable[[str], None]] = None,
) -> Listener:
    """Adapt plain progress/complete/error callbacks to a channel listener."""
    def listener(event: BatchEvent) -> None:
        if event.kind in (EVENT_PROGRESS, EVENT_CANCELLED):
            if on_progress:
                on_progress(event.items)
        elif event.kind == EVENT_COMPLETED:
            if on_complete:
                on_complete(event.items)
        elif event.kind == EVENT_FAILED:
            if on_error:
                on_error(event.error or "batch failed")
    return listener


class BatchScheduler:
    """Fixed-size worker pool draining a FIFO of (batch, item) work units.

    All BatchItem state is mutated under one lock; workers only touch it
    through _begin/_report/_finish. Events are queued while holding the
    lock and delivered to listeners on a separate dispatcher thread.
    """

    def __init__(self, pipeline: Optional[TicketPipeline] = None, workers: Optional[int] = None) -> None:
        self.pipeline = pipeline or TicketPipeline()
        self.workers = max(1, int(workers if workers is not None else settings.BATCH_WORKERS))
        self._work: "queue.Queue[Optional[Tuple[str, int]]]" = queue.Queue()
        self._events: "queue.Queue[Optional[Tuple[Tuple[Listener, ...], BatchEvent]]]" = queue.Queue()
        self._batches: Dict[str, Batch] = {}
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._threads: List[threading.Thread] = []
        self._dispatcher: Optional[threading.Thread] = None
        self._running = False

    # ---- lifecycle ----

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
        self._dispatcher = threading.Thread(target=self._dispatch, name="ticket-events", daemon=True)
        self._dispatcher.start()
        self._threads = []
        for i in range(self.workers):
            t = threading.Thread(target=self._worker, name=f"ticket-worker-{i + 1}", daemon=True)
            t.start()
            self._threads.append(t)
        logger.info("BatchScheduler started with %d workers", self.workers)

    @property
    def running(self) -> bool:
        return self._running and any(t.is_alive() for t in self._threads)

    def shutdown(self, drain: bool = True, timeout: Optional[float] = None) -> None:
        """Stop the pool. With drain=True queued work finishes first; otherwise live batches fail."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            if not drain:
                for batch in list(self._batches.values()):
                    batch.status = "failed"
                    self._publish(batch, EVENT_FAILED, error="scheduler shut down")
                    self._evict(batch)
        for _ in self._threads:
            self._work.put(None)
        for t in self._threads:
            t.join(timeout)
        self._events.put(None)
        if self._dispatcher is not None:
            self._dispatcher.join(timeout)
        logger.info("BatchScheduler stopped")

    def __enter__(self) -> "BatchScheduler":
        self.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()

    # ---- caller API ----

    def submit(
        self,
        images: Sequence[Tuple[str, bytes]],
        on_progress: Optional[Callable[[Tuple[BatchItem, ...]], None]] = None,
        on_complete: Optional[Callable[[Tuple[BatchItem, ...]], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
        listener: Optional[Listener] = None,
    ) -> str:
        """Enqueue a batch of (file_id, image bytes) and return its id without waiting."""
        if not self.running:
            raise SchedulerError("no workers available: scheduler is not running")
        batch_id = f"batch_{uuid.uuid4().hex[:12]}"
        items = [BatchItem(index=i, file_id=str(fid)) for i, (fid, _) in enumerate(images)]
        batch = Batch(id=batch_id, items=items, images={i: data for i, (_, data) in enumerate(images)})
        if on_progress or on_complete or on_error:
            batch.channel.subscribe(callback_listener(on_progress, on_complete, on_error))
        if listener is not None:
            batch.channel.subscribe(listener)

        with self._lock:
            # shutdown may have started since the check above
            if not self._running:
                raise SchedulerError("no workers available: scheduler is shutting down")
            self._batches[batch_id] = batch
            self._publish(batch, EVENT_PROGRESS)
            if not items:
                self._complete(batch)
            for i in range(len(items)):
                self._work.put((batch_id, i))
        logger.info("Batch %s queued with %d images", batch_id, len(items))
        return batch_id

    def cancel(self, batch_id: str) -> bool:
        """Drop queued items of a batch; in-flight items finish and are discarded. Idempotent."""
        with self._lock:
            batch = self._batches.get(batch_id)
            if batch is None:
                return False
            dropped = [it for it in batch.items if it.status == QUEUED]
            batch.items = [it for it in batch.items if it.status != QUEUED]
            for it in dropped:
                batch.images.pop(it.index, None)
            batch.status = "cancelled"
            self._publish(batch, EVENT_CANCELLED)
            self._evict(batch)
        logger.info("Batch %s cancelled (%d queued items dropped)", batch_id, len(dropped))
        return True

    def subscribe(self, batch_id: str, listener: Listener) -> bool:
        with self._lock:
            batch = self._batches.get(batch_id)
            if batch is None:
                return False
            batch.channel.subscribe(listener)
            return True

    def get(self, batch_id: str) -> Optional[BatchSnapshot]:
        with self._lock:
            batch = self._batches.get(batch_id)
            return batch.snapshot() if batch else None

    def queue_status(self) -> Dict[str, Any]:
        with self._lock:
            processing = any(it.status == PROCESSING for b in self._batches.values() for it in b.items)
            return {
                "running": self._running,
                "workers": sum(1 for t in self._threads if t.is_alive()),
                "queue_length": self._work.qsize(),
                "processing": processing,
                "active_batches": list(self._batches),
            }

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no batch is live and every queued event was delivered."""
        with self._idle:
            ok = self._idle.wait_for(lambda: not self._batches, timeout)
        if ok:
            self._events.join()
        return ok

    # ---- worker side ----

    def _worker(self) -> None:
        while True:
            unit = self._work.get()
            try:
                if unit is None:
                    return
                batch_id, index = unit
                image = self._begin(batch_id, index)
                if image is None:
                    continue
                try:
                    result = self.pipeline.process(image, progress=lambda pct: self._report(batch_id, index, pct))
                except RecognitionError as e:
                    logger.warning("Recognition failed for %s[%d]: %s", batch_id, index, e)
                    self._finish(batch_id, index, error=str(e))
                except Exception as e:
                    logger.exception("Ticket failed: %s[%d]", batch_id, index)
                    self._finish(batch_id, index, error=str(e) or e.__class__.__name__)
                else:
                    self._finish(batch_id, index, result=result)
            finally:
                self._work.task_done()

    def _begin(self, batch_id: str, index: int) -> Optional[bytes]:
        with self._lock:
            batch = self._batches.get(batch_id)
            if batch is None:
                return None
            item = batch.find(index)
            if item is None or item.status != QUEUED:
                return None
            item.status = PROCESSING
            item.started_at = time.time()
            batch.status = "running"
            image = batch.images.pop(index, b"")
            self._publish(batch, EVENT_PROGRESS)
            return image

    def _report(self, batch_id: str, index: int, pct: float) -> None:
        with self._lock:
            batch = self._batches.get(batch_id)
            item = batch.find(index) if batch else None
            if batch is None or item is None or item.status != PROCESSING:
                return
            pct = min(99.0, float(pct))
            if pct <= item.progress:
                return
            item.progress = pct
            self._publish(batch, EVENT_PROGRESS)

    def _finish(self, batch_id: str, index: int, result: Optional[TicketResult] = None, error: Optional[str] = None) -> None:
        with self._lock:
            batch = self._batches.get(batch_id)
            item = batch.find(index) if batch else None
            if batch is None or item is None:
                logger.debug("Discarding result for %s[%d]: batch no longer tracked", batch_id, index)
                return
            item.finished_at = time.time()
            if error is None:
                item.status = COMPLETED
                item.progress = 100.0
                item.result = result
            else:
                item.status = FAILED
                item.error = error
            self._publish(batch, EVENT_PROGRESS)
            if batch.is_drained():
                self._complete(batch)

    # ---- internals (call with self._lock held) ----

    def _complete(self, batch: Batch) -> None:
        batch.status = "drained"
        failed = sum(1 for it in batch.items if it.status == FAILED)
        self._publish(batch, EVENT_COMPLETED)
        self._evict(batch)
        logger.info("Batch %s completed: %d items, %d failed", batch.id, len(batch.items), failed)

    def _evict(self, batch: Batch) -> None:
        self._batches.pop(batch.id, None)
        batch.images.clear()
        self._idle.notify_all()

    def _publish(self, batch: Batch, kind: str, error: Optional[str] = None) -> None:
        listeners = batch.channel.listeners()
        if listeners:
            self._events.put((listeners, BatchEvent(kind, batch.snapshot(), error)))

    def _dispatch(self) -> None:
        while True:
            entry = self._events.get()
            try:
                if entry is None:
                    return
                listeners, event = entry
                for listener in listeners:
                    try:
                        listener(event)
                    except Exception:
                        logger.exception("Batch listener failed for %s (%s)", event.batch_id, event.kind)
            finally:
                self._events.task_done()
