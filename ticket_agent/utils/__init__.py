import re

from .date_utils import normalize_date_to_ddmmyy, parse_ticket_date

_NON_ALNUM = re.compile(r"[^a-z0-9]")
_WS = re.compile(r"\s+")


# Collapse runs of whitespace and trim; used for names and locations
def collapse_whitespace(text: str) -> str:
	return _WS.sub(" ", (text or "")).strip()


# Case-fold and keep only [a-z0-9]; the comparison key for OCR'd strings
def alnum_key(text: str) -> str:
	"""Lower-case and strip everything but letters and digits ('TK-2024 001' -> 'tk2024001')."""
	return _NON_ALNUM.sub("", (text or "").lower())


# Clamp a confidence score into [0, 100]
def clamp_confidence(value: float) -> float:
	try:
		v = float(value)
	except (TypeError, ValueError):
		return 0.0
	if v != v:  # NaN
		return 0.0
	return max(0.0, min(100.0, v))
