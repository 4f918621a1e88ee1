import pytest

from ticket_agent.utils import alnum_key, clamp_confidence, collapse_whitespace
from ticket_agent.utils.date_utils import normalize_date_to_ddmmyy, parse_ticket_date


@pytest.mark.parametrize("raw", ["15/01/2024", "2024-01-15", "15/01/24", "15.01.2024", "15-01-2024"])
def test_dates_render_day_first(raw):
    assert normalize_date_to_ddmmyy(raw) == "15/01/24"


def test_unparseable_date_is_empty():
    assert normalize_date_to_ddmmyy("") == ""
    assert normalize_date_to_ddmmyy("garbage") == ""
    assert parse_ticket_date("   ") is None


def test_helpers():
    assert collapse_whitespace("  St   Jago\tMine ") == "St Jago Mine"
    assert alnum_key("TK-2024 001") == "tk2024001"
    assert clamp_confidence(120) == 100.0
    assert clamp_confidence(-5) == 0.0
    assert clamp_confidence(float("nan")) == 0.0
    assert clamp_confidence("n/a") == 0.0
