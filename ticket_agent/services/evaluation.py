"""
Accuracy scoring against labelled tickets.

Scores are string similarity between the extracted and the expected value
(case-insensitive, 0..100 per field), averaged over the expected fields.
A field that was not extracted scores 0.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

from rapidfuzz.distance import Levenshtein

from ticket_agent.services.pipeline import TicketPipeline
from ticket_agent.services.types import FusedField, RecognitionError

logger = logging.getLogger(__name__)

FieldValues = Mapping[str, Union[str, FusedField]]


@dataclass
class AccuracyReport:
    accuracy: float
    field_accuracies: Dict[str, float] = field(default_factory=dict)
    processing_time: float = 0.0
    samples: int = 0
    failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "accuracy": round(self.accuracy, 2),
            "field_accuracies": {k: round(v, 2) for k, v in self.field_accuracies.items()},
            "processing_time": round(self.processing_time, 3),
            "samples": self.samples,
            "failures": self.failures,
        }


def _value(v: Union[str, FusedField, None]) -> str:
    if v is None:
        return ""
    if isinstance(v, FusedField):
        return v.value
    return str(v)


def field_similarity(extracted: str, expected: str) -> float:
    return Levenshtein.normalized_similarity((extracted or "").strip().lower(), (expected or "").strip().lower())


def score_extraction(expected: Mapping[str, str], fields: FieldValues) -> AccuracyReport:
    """Compare one ticket's extracted fields with its expected values."""
    per_field: Dict[str, float] = {}
    for name, want in expected.items():
        got = _value(fields.get(name))
        per_field[name] = field_similarity(got, want) * 100.0 if got else 0.0
    overall = sum(per_field.values()) / len(per_field) if per_field else 0.0
    return AccuracyReport(accuracy=overall, field_accuracies=per_field, samples=1)


def benchmark(
    pipeline: TicketPipeline,
    samples: Iterable[Tuple[bytes, Mapping[str, str]]],
    ticket_type: Optional[str] = None,
) -> AccuracyReport:
    """Run the pipeline over labelled images and aggregate accuracy.

    An image the recognizer cannot read scores 0 on every expected field.
    """
    t0 = time.perf_counter()
    totals: Dict[str, float] = {}
    counts: Dict[str, int] = {}
    n = 0
    failures = 0
    for image, expected in samples:
        n += 1
        try:
            result = pipeline.process(image, ticket_type=ticket_type)
            scored = score_extraction(expected, result.fields)
        except RecognitionError as e:
            logger.warning("Benchmark sample %d unreadable: %s", n, e)
            failures += 1
            scored = score_extraction(expected, {})
        for name, acc in scored.field_accuracies.items():
            totals[name] = totals.get(name, 0.0) + acc
            counts[name] = counts.get(name, 0) + 1

    field_acc = {name: totals[name] / counts[name] for name in totals}
    all_scores = sum(totals.values())
    all_count = sum(counts.values())
    report = AccuracyReport(
        accuracy=all_scores / all_count if all_count else 0.0,
        field_accuracies=field_acc,
        processing_time=time.perf_counter() - t0,
        samples=n,
        failures=failures,
    )
    logger.info("Benchmark: %d samples, accuracy %.1f%%, %d unreadable", n, report.accuracy, failures)
    return report
