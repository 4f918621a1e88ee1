from datetime import datetime
from typing import Optional

from dateutil import parser

# Tickets are printed day-first; try the explicit layouts before falling back to dateutil
_DATE_FORMATS = (
    "%d/%m/%y",
    "%d/%m/%Y",
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%d-%m-%Y",
    "%d-%m-%y",
    "%d.%m.%Y",
    "%d.%m.%y",
)


def parse_ticket_date(raw: str) -> Optional[datetime]:
    raw = (raw or "").strip()
    if not raw:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt)
        except ValueError:
            continue
    try:
        return parser.parse(raw, dayfirst=True, yearfirst=False, fuzzy=True)
    except (ValueError, OverflowError):
        return None


def normalize_date_to_ddmmyy(raw: str) -> str:
    """Render any recognizable date as DD/MM/YY; returns "" when it cannot be parsed."""
    dt = parse_ticket_date(raw)
    if dt is None:
        return ""
    return dt.strftime("%d/%m/%y")

