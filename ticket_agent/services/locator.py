"""
Heuristic field locator.

A second, independent detector: picks a positional template from a coarse
keyword classification of the ticket, pulls values with the catalog's regex
families, and scores each value from the template's expected precision plus
validation, label-proximity and ambiguity adjustments. It is a fixed
heuristic, not a trained model.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from ticket_agent.services import patterns as P
from ticket_agent.services.types import SOURCE_HEURISTIC, BoundingBox, FieldCandidate
from ticket_agent.utils import clamp_confidence

logger = logging.getLogger(__name__)

VALID_BONUS = 10.0
LABEL_BONUS = 15.0
AMBIGUITY_PENALTY = 20.0
LABEL_WINDOW = 50
CONTEXT_WINDOW = 30
# Ceiling for values that fail the field validator; keeps them below the review threshold
INVALID_CONFIDENCE_CAP = 50.0


@dataclass(frozen=True)
class Region:
    """Expected field position as fractions of the image width/height."""
    x: float
    y: float
    width: float
    height: float

    def to_pixels(self, size: Tuple[int, int]) -> BoundingBox:
        w, h = size
        return BoundingBox(round(self.x * w), round(self.y * h), round(self.width * w), round(self.height * h))


@dataclass(frozen=True)
class TicketTemplate:
    key: str
    name: str
    version: str
    accuracy: float
    regions: Mapping[str, Region]
    keywords: Tuple[str, ...] = ()

    @property
    def fields(self) -> Tuple[str, ...]:
        return tuple(self.regions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "version": self.version,
            "accuracy": self.accuracy,
            "fields": list(self.fields),
            "keywords": list(self.keywords),
        }


TEMPLATES: Tuple[TicketTemplate, ...] = (
    TicketTemplate(
        key="bauxite",
        name="Bauxite Ticket Locator",
        version="1.2.0",
        accuracy=0.94,
        keywords=("bauxite", "mine"),
        regions={
            P.TICKET_NUMBER: Region(0.1, 0.1, 0.3, 0.05),
            P.DATE: Region(0.6, 0.1, 0.25, 0.05),
            P.WEIGHT: Region(0.4, 0.4, 0.2, 0.06),
            P.TRUCK_REGISTRATION: Region(0.1, 0.25, 0.25, 0.05),
            P.DRIVER_NAME: Region(0.1, 0.35, 0.4, 0.05),
        },
    ),
    TicketTemplate(
        key="alumina",
        name="Alumina Ticket Locator",
        version="1.1.0",
        accuracy=0.91,
        keywords=("alumina", "refinery"),
        regions={
            P.TICKET_NUMBER: Region(0.15, 0.08, 0.3, 0.05),
            P.DATE: Region(0.55, 0.08, 0.25, 0.05),
            P.WEIGHT: Region(0.35, 0.45, 0.25, 0.06),
            P.TRUCK_REGISTRATION: Region(0.1, 0.2, 0.3, 0.05),
            P.COMMODITY: Region(0.1, 0.55, 0.4, 0.05),
        },
    ),
    TicketTemplate(
        key="generic",
        name="Generic Ticket Locator",
        version="2.0.0",
        accuracy=0.87,
        regions={
            P.TICKET_NUMBER: Region(0.1, 0.1, 0.35, 0.05),
            P.DATE: Region(0.55, 0.1, 0.3, 0.05),
            P.WEIGHT: Region(0.4, 0.4, 0.25, 0.06),
            P.TRUCK_REGISTRATION: Region(0.1, 0.25, 0.3, 0.05),
            P.DRIVER_NAME: Region(0.1, 0.35, 0.45, 0.05),
            P.COMMODITY: Region(0.1, 0.55, 0.4, 0.05),
        },
    ),
)

DEFAULT_TEMPLATE = "generic"


def classify_ticket_type(text: str, templates: Sequence[TicketTemplate] = TEMPLATES) -> str:
    """Pick a template by keyword substring; first template with a hit wins."""
    low = (text or "").lower()
    for tpl in templates:
        if tpl.keywords and any(k in low for k in tpl.keywords):
            return tpl.key
    return DEFAULT_TEMPLATE


def has_label_before(field: str, value: str, text: str, window: int = LABEL_WINDOW) -> bool:
    low = (text or "").lower()
    idx = low.find((value or "").lower())
    if idx < 0:
        return False
    before = low[max(0, idx - window):idx]
    return any(label in before for label in P.field_labels(field))


def surrounding_context(value: str, text: str, window: int = CONTEXT_WINDOW) -> Tuple[str, ...]:
    idx = (text or "").find(value or "")
    if idx < 0 or not value:
        return ()
    before = text[max(0, idx - window):idx].strip()
    after = text[idx + len(value):idx + len(value) + window].strip()
    return tuple(s for s in (before, after) if s)


def score_value(field: str, value: str, text: str, base_accuracy: float) -> float:
    spec = P.get_spec(field)
    confidence = base_accuracy * 100.0
    valid = spec.is_valid(spec.normalize(value))
    if valid:
        confidence += VALID_BONUS
    if has_label_before(field, value, text):
        confidence += LABEL_BONUS
    if P.is_ambiguous(value):
        confidence -= AMBIGUITY_PENALTY
    if not valid:
        confidence = min(confidence, INVALID_CONFIDENCE_CAP)
    return clamp_confidence(confidence)


class HeuristicLocator:
    def __init__(self, templates: Sequence[TicketTemplate] = TEMPLATES) -> None:
        self.templates: Dict[str, TicketTemplate] = {t.key: t for t in templates}
        if DEFAULT_TEMPLATE not in self.templates:
            raise ValueError(f"template set must include '{DEFAULT_TEMPLATE}'")

    def classify(self, text: str) -> str:
        return classify_ticket_type(text, list(self.templates.values()))

    def template_for(self, ticket_type: Optional[str]) -> TicketTemplate:
        return self.templates.get(ticket_type or DEFAULT_TEMPLATE) or self.templates[DEFAULT_TEMPLATE]

    def locate(
        self,
        text: str,
        image_size: Optional[Tuple[int, int]] = None,
        ticket_type: Optional[str] = None,
    ) -> List[FieldCandidate]:
        tpl = self.template_for(ticket_type or self.classify(text))
        logger.debug("Using %s for field location", tpl.name)
        found: List[FieldCandidate] = []
        for field, region in tpl.regions.items():
            m = P.first_structural_match(P.get_spec(field), text)
            if m is None:
                continue
            raw = m.group(1).strip()
            spec = P.get_spec(field)
            value = spec.normalize(raw) or raw
            bbox = region.to_pixels(image_size) if image_size and all(image_size) else None
            found.append(FieldCandidate(
                field=field,
                raw_value=raw,
                value=value,
                confidence=score_value(field, raw, text, tpl.accuracy),
                source=SOURCE_HEURISTIC,
                bbox=bbox,
                context=surrounding_context(raw, text),
            ))
        found.sort(key=lambda c: c.confidence, reverse=True)
        return found

    def template_info(self) -> List[Dict[str, Any]]:
        return [t.to_dict() for t in self.templates.values()]
