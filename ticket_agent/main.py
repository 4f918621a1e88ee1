# --- Imports ---
import logging
import threading
from collections import OrderedDict
from typing import List, Optional, Tuple

from fastapi import FastAPI, File, HTTPException, Query, UploadFile

from ticket_agent.config import settings
from ticket_agent.services.jobs import (
    EVENT_FAILED,
    BatchEvent,
    BatchScheduler,
    BatchSnapshot,
)
from ticket_agent.services.schemas import (
    BatchOut,
    CancelOut,
    HealthOut,
    SubmitOut,
    TemplateOut,
    TicketOut,
)
from ticket_agent.services.types import RecognitionError, SchedulerError

# Module logger
logger = logging.getLogger(__name__)
if settings.DEBUG:
    logger.setLevel(logging.DEBUG)
else:
    logger.setLevel(logging.INFO)


class BatchTracker:
    """Keeps the latest snapshot per batch, including batches the scheduler has already released.

    At most max_batches snapshots are held; the least recently updated batch is dropped first.
    """

    def __init__(self, max_batches: Optional[int] = None) -> None:
        self.max_batches = max(1, int(settings.BATCH_HISTORY_SIZE if max_batches is None else max_batches))
        self._lock = threading.Lock()
        self._latest: "OrderedDict[str, Tuple[BatchSnapshot, Optional[str]]]" = OrderedDict()

    def __call__(self, event: BatchEvent) -> None:
        error = event.error if event.kind == EVENT_FAILED else None
        with self._lock:
            self._latest[event.batch_id] = (event.snapshot, error)
            self._latest.move_to_end(event.batch_id)
            while len(self._latest) > self.max_batches:
                dropped, _ = self._latest.popitem(last=False)
                logger.debug("Dropped snapshot of batch %s from history", dropped)

    def __len__(self) -> int:
        with self._lock:
            return len(self._latest)

    def get(self, batch_id: str) -> Optional[Tuple[BatchSnapshot, Optional[str]]]:
        with self._lock:
            return self._latest.get(batch_id)


def create_app(scheduler: Optional[BatchScheduler] = None) -> FastAPI:
    app = FastAPI(title="Ticket Agent")
    sched = scheduler or BatchScheduler()
    tracker = BatchTracker()
    app.state.scheduler = sched
    app.state.tracker = tracker

    # --- Lifecycle ---
    @app.on_event("startup")
    # Start the recognition worker pool
    async def _startup() -> None:
        sched.start()
        logger.info("Ticket Agent ready (%d workers)", sched.workers)

    @app.on_event("shutdown")
    # Stop workers; unfinished batches are reported as failed
    async def _shutdown() -> None:
        sched.shutdown(drain=False)

    # --- Health ---
    @app.get("/health", response_model=HealthOut)
    async def health():
        return HealthOut(ok=True, **sched.queue_status())

    # --- Batches ---
    @app.post("/batches", response_model=SubmitOut, status_code=202)
    # Accept multiple ticket images and queue them without waiting for recognition
    async def submit_batch(files: List[UploadFile] = File(default=[])):
        if not files:
            raise HTTPException(status_code=400, detail="no files uploaded")
        if len(files) > settings.BATCH_MAX_FILES:
            raise HTTPException(
                status_code=413,
                detail=f"too many files: {len(files)} > {settings.BATCH_MAX_FILES}",
            )
        images = []
        for i, f in enumerate(files):
            images.append((f.filename or f"file_{i}", await f.read()))
        try:
            batch_id = sched.submit(images, listener=tracker)
        except SchedulerError as e:
            logger.error("Batch rejected: %s", e)
            raise HTTPException(status_code=503, detail=str(e))
        return SubmitOut(batch_id=batch_id, items=len(images))

    @app.get("/batches/{batch_id}", response_model=BatchOut)
    async def get_batch(batch_id: str):
        snap = sched.get(batch_id)
        if snap is not None:
            return BatchOut.from_snapshot(snap, settings.REVIEW_CONFIDENCE_THRESHOLD)
        tracked = tracker.get(batch_id)
        if tracked is None:
            raise HTTPException(status_code=404, detail="batch not found")
        snap, error = tracked
        return BatchOut.from_snapshot(snap, settings.REVIEW_CONFIDENCE_THRESHOLD, error=error)

    @app.delete("/batches/{batch_id}", response_model=CancelOut, status_code=202)
    async def cancel_batch(batch_id: str):
        return CancelOut(batch_id=batch_id, cancelled=sched.cancel(batch_id))

    # --- Single image ---
    @app.post("/extract", response_model=TicketOut)
    # Synchronous extraction of one image with the full audit trail
    def extract(file: UploadFile = File(...), ticket_type: Optional[str] = Query(None)):
        data = file.file.read()
        try:
            result = sched.pipeline.process(data, ticket_type=ticket_type)
        except RecognitionError as e:
            logger.warning("Extraction failed for %s: %s", file.filename, e)
            raise HTTPException(status_code=422, detail=str(e))
        return TicketOut.from_result(result, settings.REVIEW_CONFIDENCE_THRESHOLD, audit=True)

    @app.get("/templates", response_model=List[TemplateOut])
    async def templates():
        return [TemplateOut(**t) for t in sched.pipeline.locator.template_info()]

    return app


app = create_app()
