from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

# Provenance tags
SOURCE_PATTERN = "pattern"
SOURCE_HEURISTIC = "heuristic"
SOURCE_AGREED = "agreed"


class TicketAgentError(Exception):
    """Base class for errors raised by the extraction service."""


class RecognitionError(TicketAgentError):
    """The OCR engine could not produce text for an image."""


class SchedulerError(TicketAgentError):
    """Batch-level fault: the scheduler cannot accept or run work."""


@dataclass(frozen=True)
class BoundingBox:
    left: int
    top: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.left + self.width

    @property
    def bottom(self) -> int:
        return self.top + self.height

    def union(self, other: "BoundingBox") -> "BoundingBox":
        left = min(self.left, other.left)
        top = min(self.top, other.top)
        return BoundingBox(left, top, max(self.right, other.right) - left, max(self.bottom, other.bottom) - top)

    def to_dict(self) -> Dict[str, int]:
        return {"left": self.left, "top": self.top, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class FieldCandidate:
    """One detector's proposal for a field. Never mutated after creation."""
    field: str
    raw_value: str
    value: str
    confidence: float
    source: str
    bbox: Optional[BoundingBox] = None
    context: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "raw_value": self.raw_value,
            "value": self.value,
            "confidence": round(self.confidence, 2),
            "source": self.source,
            "bbox": self.bbox.to_dict() if self.bbox else None,
            "context": list(self.context),
        }


@dataclass(frozen=True)
class FusedField:
    field: str
    value: str
    confidence: float
    source: str

    @property
    def is_empty(self) -> bool:
        return not self.value

    def needs_review(self, threshold: float) -> bool:
        return self.is_empty or self.confidence < threshold

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "confidence": round(self.confidence, 2), "source": self.source}


@dataclass(frozen=True)
class PreprocessSettings:
    """Pixel-filter parameters suggested by quality triage."""
    brightness: Optional[float] = None
    contrast: Optional[float] = None
    grayscale: bool = False
    threshold: Optional[int] = None
    blur: Optional[float] = None

    def merged_over(self, base: "PreprocessSettings") -> "PreprocessSettings":
        """Return base with every value set here taking precedence."""
        return PreprocessSettings(
            brightness=self.brightness if self.brightness is not None else base.brightness,
            contrast=self.contrast if self.contrast is not None else base.contrast,
            grayscale=self.grayscale or base.grayscale,
            threshold=self.threshold if self.threshold is not None else base.threshold,
            blur=self.blur if self.blur is not None else base.blur,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


@dataclass
class TicketResult:
    """Everything the pipeline learned about one image."""
    fields: Dict[str, FusedField]
    confidence: float
    quality: str = "excellent"
    preprocessing_applied: bool = False
    recognition_confidence: float = 0.0
    ticket_type: str = "generic"
    text: str = ""
    pattern_candidates: Dict[str, FieldCandidate] = field(default_factory=dict)
    heuristic_candidates: Tuple[FieldCandidate, ...] = ()
    processing_time: float = 0.0

    def values(self) -> Dict[str, str]:
        return {name: f.value for name, f in self.fields.items()}

    def fields_needing_review(self, threshold: float) -> list:
        return [name for name, f in self.fields.items() if f.needs_review(threshold)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fields": {name: f.to_dict() for name, f in self.fields.items()},
            "confidence": round(self.confidence, 2),
            "quality": self.quality,
            "preprocessing_applied": self.preprocessing_applied,
            "recognition_confidence": round(self.recognition_confidence, 2),
            "ticket_type": self.ticket_type,
            "text": self.text,
            "pattern_candidates": {k: c.to_dict() for k, c in self.pattern_candidates.items()},
            "heuristic_candidates": [c.to_dict() for c in self.heuristic_candidates],
            "processing_time": round(self.processing_time, 3),
        }
