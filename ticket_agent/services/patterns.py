"""
Field pattern catalog for delivery tickets.

Each field owns an ordered family of regexes (one capture group each), a
validity predicate and a normalizer. Both detectors draw on this table:
the pattern extractor uses it strictly (first match that validates wins),
the heuristic locator uses it loosely (first structural match, validation
only affects confidence).
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional, Tuple

from ticket_agent.utils import collapse_whitespace, normalize_date_to_ddmmyy

TICKET_NUMBER = "ticket_number"
DATE = "date"
WEIGHT = "weight"
TRUCK_REGISTRATION = "truck_registration"
DRIVER_NAME = "driver_name"
COMMODITY = "commodity"
LOADING_LOCATION = "loading_location"
DESTINATION = "destination"
DISPATCHER = "dispatcher"

COMMODITIES = ("bauxite", "alumina", "coal", "limestone")

# Plausible payload range in tons; values outside are non-matches, never clamped
WEIGHT_MIN_TONS = 10.0
WEIGHT_MAX_TONS = 40.0

# Words that open another field; free-text captures stop before them
_STOP_WORDS = r"(?i:to|from|destination|driver|operator|date|weight|truck|vehicle|reg|dispatcher|commodity|material|ticket)\b"
# One free-text token run on a single line, e.g. "St Jago Mine" or "Port Esquivel"
_PLACE = r"([A-Z][A-Za-z0-9.']*(?:[ ](?!" + _STOP_WORDS + r")[A-Za-z0-9.']+){0,5})"
_PERSON = r"([A-Z][a-z]+(?:[ \t]+(?!" + _STOP_WORDS + r")[A-Z][a-z]+){1,2})"
_INITIALED_PERSON = r"([A-Z][a-z]*\.?(?:[ \t]+(?!" + _STOP_WORDS + r")[A-Z][a-z]+){1,2})"


@dataclass(frozen=True)
class FieldPattern:
    regex: "re.Pattern[str]"
    validator: Callable[[str], bool]
    normalizer: Callable[[str], str]

    def matches(self, text: str) -> Iterator["re.Match[str]"]:
        for m in self.regex.finditer(text or ""):
            if m.group(1) and m.group(1).strip():
                yield m


@dataclass(frozen=True)
class TicketFieldSpec:
    name: str
    patterns: Tuple[FieldPattern, ...]
    labels: Tuple[str, ...] = ()

    @property
    def validator(self) -> Callable[[str], bool]:
        return self.patterns[0].validator

    @property
    def normalizer(self) -> Callable[[str], str]:
        return self.patterns[0].normalizer

    def normalize(self, raw: str) -> str:
        return self.normalizer(raw)

    def is_valid(self, value: str) -> bool:
        return bool(value) and self.validator(value)


# ---- Normalizers ----

def normalize_ticket_number(value: str) -> str:
    return (value or "").strip().upper()


def normalize_truck_registration(value: str) -> str:
    return re.sub(r"[\s\-]", "", (value or "").upper())


def normalize_name(value: str) -> str:
    return collapse_whitespace(value)


def normalize_commodity(value: str) -> str:
    v = (value or "").strip().lower()
    if v not in COMMODITIES:
        return ""
    return v.capitalize()


def normalize_weight(value: str) -> str:
    """Render a tonnage with two decimals ('25.5' -> '25.50'); '' when not numeric."""
    try:
        num = float((value or "").strip().replace(",", "."))
    except ValueError:
        return ""
    if num != num or num in (float("inf"), float("-inf")):
        return ""
    return f"{num:.2f}"


def normalize_location(value: str) -> str:
    return collapse_whitespace(value)


# ---- Validators ----

_TICKET_RE = re.compile(r"^[A-Z0-9-]{3,20}$", re.IGNORECASE)
_TRUCK_RE = re.compile(r"^[A-Z0-9]{3,10}$", re.IGNORECASE)
_DRIVER_RE = re.compile(r"^[A-Za-z\s.]{2,50}$")
_DISPATCHER_RE = re.compile(r"^[A-Za-z\s.]{2,30}$")


def valid_ticket_number(value: str) -> bool:
    return bool(_TICKET_RE.match(value or "")) and any(c.isdigit() for c in value)


def valid_date(value: str) -> bool:
    return bool(value) and normalize_date_to_ddmmyy(value) != ""


def valid_weight(value: str) -> bool:
    try:
        num = float(value)
    except (TypeError, ValueError):
        return False
    return WEIGHT_MIN_TONS <= num <= WEIGHT_MAX_TONS


def valid_truck_registration(value: str) -> bool:
    return bool(_TRUCK_RE.match(normalize_truck_registration(value)))


def valid_driver_name(value: str) -> bool:
    return bool(_DRIVER_RE.match(value or ""))


def valid_commodity(value: str) -> bool:
    return (value or "").strip().lower() in COMMODITIES


def valid_location(value: str) -> bool:
    return 3 <= len((value or "").strip()) <= 50


def valid_dispatcher(value: str) -> bool:
    return bool(_DISPATCHER_RE.match(value or ""))


def _family(validator: Callable[[str], bool], normalizer: Callable[[str], str], *regexes: str, flags: int = 0) -> Tuple[FieldPattern, ...]:
    return tuple(FieldPattern(re.compile(rx, flags), validator, normalizer) for rx in regexes)


FIELD_SPECS: Tuple[TicketFieldSpec, ...] = (
    TicketFieldSpec(
        TICKET_NUMBER,
        _family(
            valid_ticket_number, normalize_ticket_number,
            r"\b(?i:slip|ticket|ref)\b[ \t]*(?:(?i:number|no)\b\.?|#)?[ \t]*[:#]?[ \t]*"
            r"(?!(?i:number|no)\b)((?i:[a-z0-9][a-z0-9-]{2,19}))\b",
            r"\b((?i:t[kt]?)[- ]?\d{4,8}(?:-\d{1,6})?)\b",
            r"\b([A-Z]{2,3}[- ]?\d{4,8})\b",
            r"(?i:no\.?|number)[ \t]*[:#][ \t]*(\d{4,8})\b",
        ),
        labels=("ticket", "slip", "ref", "number", "no"),
    ),
    TicketFieldSpec(
        DATE,
        _family(
            valid_date, normalize_date_to_ddmmyy,
            r"(?i:date|issued?)[ \t\w]{0,12}?[:]?[ \t]*(?<!\d)(\d{1,2}[/.\-]\d{1,2}[/.\-]\d{2,4})\b",
            r"(?i:date|issued?)[ \t\w]{0,12}?[:]?[ \t]*(?<!\d)(\d{4}[/\-]\d{1,2}[/\-]\d{1,2})\b",
            r"\b(\d{1,2}[/.\-]\d{1,2}[/.\-]\d{2,4})\b",
            r"\b(\d{4}[/\-]\d{1,2}[/\-]\d{1,2})\b",
        ),
        labels=("date", "issued"),
    ),
    TicketFieldSpec(
        WEIGHT,
        _family(
            valid_weight, normalize_weight,
            r"\b(?i:net[ \t]+weight|net[ \t]+wt\.?|net)[ \t]*(?i:\(t\)|\(tons\))?[ \t]*[:=]?[ \t]*(\d{1,3}(?:[.,]\d{1,3})?)(?!\d)",
            r"\b(?i:weight|gross[ \t]+weight|gross|tonnage)[ \t]*(?i:\(t\)|\(tons\))?[ \t]*[:=]?[ \t]*(\d{1,3}(?:[.,]\d{1,3})?)(?!\d)",
            r"\b(\d{1,3}(?:\.\d{1,3})?)[ \t]*(?i:tons?|t|mt)\b",
        ),
        labels=("weight", "net", "gross", "tons", "tonnage"),
    ),
    TicketFieldSpec(
        TRUCK_REGISTRATION,
        _family(
            valid_truck_registration, normalize_truck_registration,
            # lowercase prefix accepted; a trailing letter suffix must be upper-case so "abc 123 to" stays "abc 123"
            r"\b(?i:truck|vehicle|reg(?:istration)?|plate|licen[cs]e)\b(?:[ \t]*(?:(?i:number|no)\b\.?|#))?[ \t]*[:#]?[ \t]*"
            r"((?i:[a-z]{1,3})[- ]?\d{3,4}(?:[- ]?[A-Z]{1,2})?)\b",
            r"\b([A-Z]{2,3}[- ]?\d{3,4})\b(?![-/.]?\d)",
        ),
        labels=("truck", "vehicle", "reg", "registration", "plate"),
    ),
    TicketFieldSpec(
        DRIVER_NAME,
        _family(
            valid_driver_name, normalize_name,
            r"(?i:driver|operator)(?:[ \t]*(?i:name))?[ \t]*[:\-]?[ \t]*" + _PERSON,
            r"(?i:name)[ \t]*[:\-][ \t]*" + _PERSON,
        ),
        labels=("driver", "operator", "name"),
    ),
    TicketFieldSpec(
        COMMODITY,
        _family(
            valid_commodity, normalize_commodity,
            r"(?:commodity|material|product)[ \t]*[:\-]?[ \t]*(bauxite|alumina|coal|limestone)\b",
            r"\b(bauxite|alumina|coal|limestone)\b",
            flags=re.IGNORECASE,
        ),
        labels=("commodity", "material", "product"),
    ),
    TicketFieldSpec(
        LOADING_LOCATION,
        _family(
            valid_location, normalize_location,
            r"\b(?i:loading[ \t]+(?:point|location|site)|loaded[ \t]+at|from|origin|pick[ \t-]?up)[ \t]*[:\-][ \t]*" + _PLACE,
            r"\b(?i:mine|site|plant)[ \t]*[:\-][ \t]*" + _PLACE,
            r"\b((?i:st\.?[ \t]+jago)(?:[ \t]+(?i:mine))?)\b",
        ),
        labels=("loading", "from", "origin", "pickup", "mine", "site"),
    ),
    TicketFieldSpec(
        DESTINATION,
        _family(
            valid_location, normalize_location,
            r"\b(?i:destination|deliver(?:y|ed)?(?:[ \t]+to)?|drop[ \t-]?off|to)[ \t]*[:\-][ \t]*" + _PLACE,
            r"\b(?i:port|terminal)[ \t]*[:\-][ \t]*" + _PLACE,
            r"\b((?i:jamalco|port[ \t]+esquivel|kingston[ \t]+port))\b",
        ),
        labels=("destination", "delivery", "deliver", "to", "drop"),
    ),
    TicketFieldSpec(
        DISPATCHER,
        _family(
            valid_dispatcher, normalize_name,
            r"(?i:dispatcher|coordinator|supervisor)[ \t]*[:\-]?[ \t]*" + _INITIALED_PERSON,
            r"(?i:authori[sz]ed[ \t]+by|approved[ \t]+by|signature)[ \t]*[:\-]?[ \t]*" + _INITIALED_PERSON,
            r"\b((?i:a\.?[ \t]*)?(?i:bailey))\b",
        ),
        labels=("dispatcher", "coordinator", "supervisor", "authorized", "approved"),
    ),
)

FIELD_NAMES: Tuple[str, ...] = tuple(s.name for s in FIELD_SPECS)
_BY_NAME: Dict[str, TicketFieldSpec] = {s.name: s for s in FIELD_SPECS}


def get_spec(name: str) -> TicketFieldSpec:
    try:
        return _BY_NAME[name]
    except KeyError:
        raise KeyError(f"unknown ticket field: {name}") from None


def field_labels(name: str) -> Tuple[str, ...]:
    spec = _BY_NAME.get(name)
    return spec.labels if spec else ()


# Values that could belong to several fields: 1-2 digit numbers, lone letters, bare 4-digit numbers
_AMBIGUOUS = (
    re.compile(r"^\d{1,2}$"),
    re.compile(r"^[A-Za-z]$"),
    re.compile(r"^\d{4}$"),
)


def is_ambiguous(value: str) -> bool:
    v = (value or "").strip()
    return any(p.match(v) for p in _AMBIGUOUS)


def first_structural_match(spec: TicketFieldSpec, text: str) -> Optional["re.Match[str]"]:
    """First regex hit across the family in declared order, without validation."""
    for pattern in spec.patterns:
        for m in pattern.matches(text):
            return m
    return None


def accepted_matches(spec: TicketFieldSpec, text: str) -> Iterator[Tuple["re.Match[str]", str]]:
    """Yield (match, normalized value) for every hit whose normalized value validates, in family order."""
    for pattern in spec.patterns:
        for m in pattern.matches(text):
            normalized = pattern.normalizer(m.group(1).strip())
            if normalized and pattern.validator(normalized):
                yield m, normalized
