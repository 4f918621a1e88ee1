from __future__ import annotations
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from ticket_agent.services.jobs import BatchItem, BatchSnapshot
from ticket_agent.services.types import FusedField, TicketResult


class FieldOut(BaseModel):
    value: str = ""
    confidence: float = 0.0
    source: str = "pattern"
    needs_review: bool = False

    @classmethod
    def from_fused(cls, f: FusedField, review_threshold: float) -> "FieldOut":
        return cls(
            value=f.value,
            confidence=round(f.confidence, 2),
            source=f.source,
            needs_review=f.needs_review(review_threshold),
        )


class TicketOut(BaseModel):
    fields: Dict[str, FieldOut] = Field(default_factory=dict)
    confidence: float = 0.0
    quality: str = ""
    preprocessing_applied: bool = False
    recognition_confidence: float = 0.0
    ticket_type: str = ""
    needs_review: List[str] = Field(default_factory=list)
    processing_time: float = 0.0
    # audit trail, only filled for synchronous extraction
    text: Optional[str] = None
    pattern_candidates: Optional[Dict[str, Dict[str, Any]]] = None
    heuristic_candidates: Optional[List[Dict[str, Any]]] = None

    @classmethod
    def from_result(cls, r: TicketResult, review_threshold: float, audit: bool = False) -> "TicketOut":
        out = cls(
            fields={k: FieldOut.from_fused(f, review_threshold) for k, f in r.fields.items()},
            confidence=round(r.confidence, 2),
            quality=r.quality,
            preprocessing_applied=r.preprocessing_applied,
            recognition_confidence=round(r.recognition_confidence, 2),
            ticket_type=r.ticket_type,
            needs_review=r.fields_needing_review(review_threshold),
            processing_time=round(r.processing_time, 3),
        )
        if audit:
            d = r.to_dict()
            out.text = r.text
            out.pattern_candidates = d["pattern_candidates"]
            out.heuristic_candidates = d["heuristic_candidates"]
        return out


class ItemOut(BaseModel):
    index: int
    file_id: str
    status: str
    progress: float = 0.0
    error: Optional[str] = None
    result: Optional[TicketOut] = None

    @classmethod
    def from_item(cls, it: BatchItem, review_threshold: float) -> "ItemOut":
        return cls(
            index=it.index,
            file_id=it.file_id,
            status=it.status,
            progress=round(it.progress, 1),
            error=it.error,
            result=TicketOut.from_result(it.result, review_threshold) if it.result else None,
        )


class BatchOut(BaseModel):
    batch_id: str
    status: str
    items: List[ItemOut] = Field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def from_snapshot(cls, snap: BatchSnapshot, review_threshold: float, error: Optional[str] = None) -> "BatchOut":
        return cls(
            batch_id=snap.batch_id,
            status=snap.status,
            items=[ItemOut.from_item(it, review_threshold) for it in snap.items],
            error=error,
        )


class SubmitOut(BaseModel):
    batch_id: str
    items: int = 0


class CancelOut(BaseModel):
    batch_id: str
    cancelled: bool = False


class HealthOut(BaseModel):
    ok: bool = True
    running: bool = False
    workers: int = 0
    queue_length: int = 0
    processing: bool = False
    active_batches: List[str] = Field(default_factory=list)


class TemplateOut(BaseModel):
    key: str
    name: str
    version: str
    accuracy: float
    fields: List[str] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
