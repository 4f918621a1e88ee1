import pytest

from ticket_agent.services.evaluation import benchmark, score_extraction
from ticket_agent.services.pipeline import TicketPipeline
from ticket_agent.services.types import FusedField


def test_score_extraction_per_field():
    report = score_extraction(
        {"ticket_number": "TK-2024-001", "weight": "25.50"},
        {"ticket_number": FusedField("ticket_number", "tk-2024-001", 90.0, "agreed")},
    )
    assert report.field_accuracies == {"ticket_number": 100.0, "weight": 0.0}
    assert report.accuracy == pytest.approx(50.0)


def test_partial_match_scores_by_similarity():
    report = score_extraction({"driver_name": "John Smith"}, {"driver_name": "John Smyth"})
    assert 80.0 < report.field_accuracies["driver_name"] < 100.0


def test_benchmark_counts_unreadable_samples(text_recognizer):
    pipeline = TicketPipeline(recognizer=text_recognizer, enable_preprocessing=False)
    expected = {"ticket_number": "TK-2024-001", "weight": "25.50"}
    report = benchmark(pipeline, [(b"ok", expected), (b"bad", expected)])
    assert report.samples == 2
    assert report.failures == 1
    assert report.field_accuracies["ticket_number"] == pytest.approx(50.0)
    assert report.accuracy == pytest.approx(50.0)
    assert report.processing_time >= 0
    assert report.to_dict()["samples"] == 2
