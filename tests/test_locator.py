import pytest

from ticket_agent.services import patterns as P
from ticket_agent.services.locator import HeuristicLocator, TEMPLATES, classify_ticket_type, score_value
from ticket_agent.services.types import SOURCE_HEURISTIC


def test_classification_by_keyword():
    assert classify_ticket_type("BAUXITE DELIVERY") == "bauxite"
    assert classify_ticket_type("Alumina refinery gate") == "alumina"
    assert classify_ticket_type("Weighbridge slip") == "generic"


def test_locate_uses_template_fields(sample_text):
    found = HeuristicLocator().locate(sample_text)
    names = {c.field for c in found}
    assert names == {P.TICKET_NUMBER, P.DATE, P.WEIGHT, P.TRUCK_REGISTRATION, P.DRIVER_NAME}
    assert all(c.source == SOURCE_HEURISTIC for c in found)
    confs = [c.confidence for c in found]
    assert confs == sorted(confs, reverse=True)


def test_labelled_valid_value_scores_high(sample_text):
    found = {c.field: c for c in HeuristicLocator().locate(sample_text)}
    ticket = found[P.TICKET_NUMBER]
    assert ticket.value == "TK-2024-001"
    # 94 base + valid + label, capped
    assert ticket.confidence == 100.0
    assert ticket.context


def test_ambiguity_penalty():
    # generic base 87, valid +10, no label, ambiguous -20
    assert score_value(P.WEIGHT, "12", "xx 12 yy", 0.87) == pytest.approx(77.0)


def test_unlabelled_value_gets_no_label_bonus():
    assert score_value(P.TICKET_NUMBER, "TK-2024-001", "TK-2024-001", 0.87) == pytest.approx(97.0)


def test_regions_mapped_to_pixels(sample_text):
    found = {c.field: c for c in HeuristicLocator().locate(sample_text, image_size=(1000, 2000))}
    box = found[P.TICKET_NUMBER].bbox
    assert (box.left, box.top, box.width, box.height) == (100, 200, 300, 100)


def test_explicit_ticket_type_overrides_classification(sample_text):
    found = HeuristicLocator().locate(sample_text, ticket_type="alumina")
    assert P.COMMODITY in {c.field for c in found}
    assert P.DRIVER_NAME not in {c.field for c in found}


def test_template_catalog():
    info = HeuristicLocator().template_info()
    assert [t["key"] for t in info] == ["bauxite", "alumina", "generic"]
    assert info[0]["accuracy"] == 0.94


def test_generic_template_required():
    with pytest.raises(ValueError):
        HeuristicLocator(templates=[t for t in TEMPLATES if t.key != "generic"])


def test_label_inside_a_word_is_not_a_label():
    found = {c.field: c for c in HeuristicLocator().locate("ALUMINA REFINERY\nTicket No: TK-2024-001")}
    assert found[P.TICKET_NUMBER].value == "TK-2024-001"


def test_invalid_value_is_capped_below_review_threshold():
    # 87 base + label 15 - ambiguity 20 = 82, but "5" tons fails validation
    assert score_value(P.WEIGHT, "5", "Weight: 5 tons", 0.87) == 50.0
    found = {c.field: c for c in HeuristicLocator().locate("Weight: 5 tons")}
    assert found[P.WEIGHT].value == "5.00"
    assert found[P.WEIGHT].confidence <= 50.0
