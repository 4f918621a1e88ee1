"""
Hybrid fusion of the pattern extractor and the heuristic locator.

For every field either detector produced, choose one value with a combined
confidence and a provenance tag. Agreement between the detectors is
rewarded; disagreement is settled by a per-field source preference table
that callers can override.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional, Sequence, Union

from rapidfuzz.distance import Levenshtein

from ticket_agent.config import settings
from ticket_agent.services import patterns as P
from ticket_agent.services.types import (
    SOURCE_AGREED,
    SOURCE_HEURISTIC,
    SOURCE_PATTERN,
    FieldCandidate,
    FusedField,
)
from ticket_agent.utils import alnum_key, clamp_confidence

logger = logging.getLogger(__name__)

# Which detector to trust when they disagree. Structured alphanumerics and
# numerics favour literal pattern matching; free-text fields favour the locator.
DEFAULT_FIELD_PREFERENCES: Dict[str, str] = {
    P.TICKET_NUMBER: SOURCE_PATTERN,
    P.WEIGHT: SOURCE_PATTERN,
    P.TRUCK_REGISTRATION: SOURCE_PATTERN,
    P.DATE: SOURCE_HEURISTIC,
    P.DRIVER_NAME: SOURCE_HEURISTIC,
    P.COMMODITY: SOURCE_HEURISTIC,
    P.LOADING_LOCATION: SOURCE_HEURISTIC,
    P.DESTINATION: SOURCE_HEURISTIC,
    P.DISPATCHER: SOURCE_HEURISTIC,
}

AGREED_WEIGHT = 1.5
FIELD_COUNT_BONUS = 2.0
MAX_FIELD_BONUS = 10.0


@dataclass(frozen=True)
class FusionPolicy:
    agreement_threshold: float = field(default_factory=lambda: settings.FUSION_AGREEMENT_THRESHOLD)
    agreement_bonus: float = field(default_factory=lambda: settings.FUSION_AGREEMENT_BONUS)
    min_preferred_confidence: float = field(default_factory=lambda: settings.FUSION_MIN_PREFERRED_CONFIDENCE)
    preferences: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_FIELD_PREFERENCES))

    def preferred_source(self, field_name: str) -> Optional[str]:
        return self.preferences.get(field_name)

    def with_preferences(self, overrides: Mapping[str, str]) -> "FusionPolicy":
        merged = dict(self.preferences)
        merged.update(overrides)
        return FusionPolicy(
            agreement_threshold=self.agreement_threshold,
            agreement_bonus=self.agreement_bonus,
            min_preferred_confidence=self.min_preferred_confidence,
            preferences=merged,
        )


def similarity(a: str, b: str) -> float:
    """Edit-distance ratio on case-folded alphanumeric forms: 1.0 identical, 0.0 disjoint."""
    s1, s2 = alnum_key(a), alnum_key(b)
    longer = max(len(s1), len(s2))
    if longer == 0:
        return 1.0
    return (longer - Levenshtein.distance(s1, s2)) / float(longer)


def _as_map(candidates: Union[Mapping[str, FieldCandidate], Iterable[FieldCandidate], None]) -> Dict[str, FieldCandidate]:
    if candidates is None:
        return {}
    if isinstance(candidates, Mapping):
        return {k: v for k, v in candidates.items() if v is not None}
    out: Dict[str, FieldCandidate] = {}
    for c in candidates:
        # Keep the highest-confidence proposal per field
        if c.field not in out or c.confidence > out[c.field].confidence:
            out[c.field] = c
    return out


def _value_conf(c: Optional[FieldCandidate]) -> tuple:
    if c is None or not c.value:
        return "", 0.0
    return c.value, clamp_confidence(c.confidence)


def fuse_field(
    name: str,
    pattern: Optional[FieldCandidate],
    heuristic: Optional[FieldCandidate],
    policy: Optional[FusionPolicy] = None,
) -> FusedField:
    policy = policy or FusionPolicy()
    p_val, p_conf = _value_conf(pattern)
    h_val, h_conf = _value_conf(heuristic)

    if not p_val and not h_val:
        return FusedField(name, "", 0.0, SOURCE_PATTERN)

    if p_val and h_val:
        if similarity(p_val, h_val) > policy.agreement_threshold:
            value = p_val if p_conf >= h_conf else h_val
            conf = clamp_confidence(max(p_conf, h_conf) + policy.agreement_bonus)
            return FusedField(name, value, conf, SOURCE_AGREED)

        preferred = policy.preferred_source(name)
        if preferred == SOURCE_PATTERN and p_conf > policy.min_preferred_confidence:
            return FusedField(name, p_val, p_conf, SOURCE_PATTERN)
        if preferred == SOURCE_HEURISTIC and h_conf > policy.min_preferred_confidence:
            return FusedField(name, h_val, h_conf, SOURCE_HEURISTIC)
        logger.debug("Fusion fallback for %s: pattern=%r (%.1f) heuristic=%r (%.1f)", name, p_val, p_conf, h_val, h_conf)
        if p_conf >= h_conf:
            return FusedField(name, p_val, p_conf, SOURCE_PATTERN)
        return FusedField(name, h_val, h_conf, SOURCE_HEURISTIC)

    if p_val:
        return FusedField(name, p_val, p_conf, SOURCE_PATTERN)
    return FusedField(name, h_val, h_conf, SOURCE_HEURISTIC)


def fuse_candidates(
    pattern: Union[Mapping[str, FieldCandidate], Iterable[FieldCandidate], None],
    heuristic: Union[Mapping[str, FieldCandidate], Iterable[FieldCandidate], None],
    policy: Optional[FusionPolicy] = None,
    field_names: Sequence[str] = (),
) -> Dict[str, FusedField]:
    """Fuse both candidate sets.

    Every name in field_names and every field present in either set yields
    exactly one FusedField; fields nobody found come back empty with zero
    confidence.
    """
    policy = policy or FusionPolicy()
    p_map = _as_map(pattern)
    h_map = _as_map(heuristic)
    names = list(dict.fromkeys(field_names))
    names += [n for n in p_map if n not in names]
    names += [n for n in h_map if n not in names]
    return {n: fuse_field(n, p_map.get(n), h_map.get(n), policy) for n in names}


def overall_confidence(fused: Union[Mapping[str, FusedField], Iterable[FusedField]]) -> float:
    """Weighted mean of non-empty fused confidences plus a small field-count bonus, capped at 100."""
    items = list(fused.values()) if isinstance(fused, Mapping) else list(fused)
    filled = [f for f in items if f.value]
    if not filled:
        return 0.0
    total = 0.0
    weight = 0.0
    for f in filled:
        w = AGREED_WEIGHT if f.source == SOURCE_AGREED else 1.0
        total += f.confidence * w
        weight += w
    bonus = min(len(filled) * FIELD_COUNT_BONUS, MAX_FIELD_BONUS)
    return clamp_confidence(total / weight + bonus)
