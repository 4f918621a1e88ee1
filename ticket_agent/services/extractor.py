from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Sequence, Tuple

from ticket_agent.config import settings
from ticket_agent.services.ocr import OcrLine, RecognitionResult
from ticket_agent.services.patterns import FIELD_SPECS, TicketFieldSpec, accepted_matches
from ticket_agent.services.types import SOURCE_PATTERN, BoundingBox, FieldCandidate
from ticket_agent.utils import clamp_confidence

logger = logging.getLogger(__name__)
if settings.DEBUG:
    logger.setLevel(logging.DEBUG)
else:
    logger.setLevel(logging.INFO)


def locate_confidence(
    search_text: str,
    lines: Iterable[OcrLine],
    default: float = 50.0,
) -> Tuple[float, Optional[BoundingBox]]:
    """Best OCR confidence among lines/words overlapping search_text.

    A line counts when it contains the text; a word counts when either
    contains the other (OCR merges and splits tokens). Returns the default
    confidence and no box when nothing overlaps.
    """
    needle = (search_text or "").strip().lower()
    if not needle:
        return default, None
    best = -1.0
    best_box: Optional[BoundingBox] = None
    for line in lines:
        if needle in line.text.lower() and line.confidence > best:
            best = line.confidence
            best_box = line.bbox
        for word in line.words:
            hay = word.text.lower()
            if not hay:
                continue
            if (needle in hay or hay in needle) and word.confidence > best:
                best = word.confidence
                best_box = word.bbox
    if best <= 0:
        # matched but unlocated
        return default, None
    return best, best_box


class FieldExtractor:
    """Pattern-based detector: first validated match per field wins."""

    def __init__(self, specs: Sequence[TicketFieldSpec] = FIELD_SPECS, default_confidence: Optional[float] = None) -> None:
        self.specs = tuple(specs)
        self.default_confidence = float(
            settings.EXTRACT_DEFAULT_CONFIDENCE if default_confidence is None else default_confidence
        )

    def extract_field(self, spec: TicketFieldSpec, recognition: RecognitionResult) -> Optional[FieldCandidate]:
        for match, normalized in accepted_matches(spec, recognition.text):
            raw = match.group(1).strip()
            conf, box = locate_confidence(raw, recognition.lines, self.default_confidence)
            return FieldCandidate(
                field=spec.name,
                raw_value=raw,
                value=normalized,
                confidence=clamp_confidence(conf),
                source=SOURCE_PATTERN,
                bbox=box,
            )
        return None

    def extract(self, recognition: RecognitionResult) -> Dict[str, FieldCandidate]:
        found: Dict[str, FieldCandidate] = {}
        for spec in self.specs:
            cand = self.extract_field(spec, recognition)
            if cand is None:
                logger.debug("No pattern match for field: %s", spec.name)
                continue
            found[spec.name] = cand
            logger.debug("Extracted %s: %r (%.1f%%)", spec.name, cand.value, cand.confidence)
        return found


def extract_fields(text: str) -> Dict[str, FieldCandidate]:
    """Convenience wrapper for plain text without OCR geometry."""
    return FieldExtractor().extract(RecognitionResult.from_text(text))
