import cv2
import pytest

from ticket_agent.services import image_preproc
from ticket_agent.services.image_preproc import OpenCVPreprocessor
from ticket_agent.services.patterns import FIELD_NAMES
from ticket_agent.services.pipeline import TicketPipeline
from ticket_agent.services.types import RecognitionError
from conftest import TextRecognizer, png_bytes


class RecordingPreprocessor:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def apply(self, image, options):
        self.calls.append(options)
        if self.fail:
            raise ValueError("cannot decode")
        return b"processed:" + image


def test_clean_image_skips_preprocessing(text_recognizer):
    pre = RecordingPreprocessor()
    pipeline = TicketPipeline(recognizer=text_recognizer, preprocessor=pre)
    image = png_bytes(40, split=220)
    result = pipeline.process(image)

    assert pre.calls == []
    assert text_recognizer.seen == [image]
    assert result.quality == "excellent"
    assert not result.preprocessing_applied
    assert result.values()["ticket_number"] == "TK-2024-001"
    assert result.ticket_type == "bauxite"
    assert 0 < result.confidence <= 100


def test_poor_image_is_preprocessed_with_triage_settings(text_recognizer):
    pre = RecordingPreprocessor()
    pipeline = TicketPipeline(recognizer=text_recognizer, preprocessor=pre)
    image = png_bytes(20)
    result = pipeline.process(image)

    assert result.preprocessing_applied
    assert result.quality == "poor"
    opts = pre.calls[0]
    assert opts.brightness == 30.0
    assert opts.contrast == 1.3
    assert opts.grayscale
    assert text_recognizer.seen == [b"processed:" + image]


def test_preprocessing_failure_falls_back_to_original(text_recognizer):
    pipeline = TicketPipeline(recognizer=text_recognizer, preprocessor=RecordingPreprocessor(fail=True))
    image = png_bytes(128)
    result = pipeline.process(image)
    assert not result.preprocessing_applied
    assert text_recognizer.seen == [image]


def test_preprocessing_can_be_disabled(text_recognizer):
    pre = RecordingPreprocessor()
    pipeline = TicketPipeline(recognizer=text_recognizer, preprocessor=pre, enable_preprocessing=False)
    assert not pipeline.process(png_bytes(20)).preprocessing_applied
    assert pre.calls == []


def test_progress_stages_increase(text_recognizer):
    seen = []
    TicketPipeline(recognizer=text_recognizer, preprocessor=RecordingPreprocessor()).process(png_bytes(128), progress=seen.append)
    assert seen == sorted(seen)
    assert seen[-1] < 100


def test_fused_fields_agree_when_detectors_match(text_recognizer):
    result = TicketPipeline(recognizer=text_recognizer, preprocessor=RecordingPreprocessor()).process(png_bytes(40, split=220))
    ticket = result.fields["ticket_number"]
    assert ticket.source == "agreed"
    assert ticket.confidence == 100.0
    # dispatcher is only seen by the pattern extractor
    assert result.fields["dispatcher"].source == "pattern"
    assert result.fields["dispatcher"].confidence == 50.0
    assert "dispatcher" in result.fields_needing_review(60.0)
    assert set(result.pattern_candidates) >= {"ticket_number", "dispatcher"}
    assert result.heuristic_candidates


def test_recognition_error_propagates(text_recognizer):
    pipeline = TicketPipeline(recognizer=text_recognizer, preprocessor=RecordingPreprocessor(), enable_preprocessing=False)
    with pytest.raises(RecognitionError):
        pipeline.process(b"bad")


def test_opencv_failure_falls_back_to_original(monkeypatch):
    def broken(img, options):
        raise cv2.error("unsupported depth")

    monkeypatch.setattr(image_preproc, "adjust_pixels", broken)
    recognizer = TextRecognizer()
    image = png_bytes(20)
    result = TicketPipeline(recognizer=recognizer, preprocessor=OpenCVPreprocessor()).process(image)
    assert result.quality == "poor"
    assert not result.preprocessing_applied
    assert recognizer.seen == [image]


def test_every_field_is_reported_even_when_not_found():
    pipeline = TicketPipeline(recognizer=TextRecognizer(text="Ticket No: TK-2024-001"), enable_preprocessing=False)
    result = pipeline.process(png_bytes(128))
    assert set(result.fields) == set(FIELD_NAMES)
    dispatcher = result.fields["dispatcher"]
    assert dispatcher.value == ""
    assert dispatcher.confidence == 0.0
    assert "dispatcher" in result.fields_needing_review(60.0)
    assert "ticket_number" not in result.fields_needing_review(60.0)


def test_out_of_range_weight_needs_review():
    pipeline = TicketPipeline(recognizer=TextRecognizer(text="Weight: 5 tons"), enable_preprocessing=False)
    result = pipeline.process(png_bytes(128))
    weight = result.fields["weight"]
    assert weight.source == "heuristic"
    assert weight.confidence <= 50.0
    assert "weight" in result.fields_needing_review(60.0)
