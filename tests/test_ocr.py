import pytest
import pytesseract

from ticket_agent.services.ocr import RecognitionConfig, TesseractRecognizer, decode_image
from ticket_agent.services.types import RecognitionError
from conftest import png_bytes


def _fake_data():
    return {
        "text": ["Ticket", "No:", "TK-2024-001", "", "Net", "Weight:", "25.5"],
        "conf": ["90", "80", "70", "-1", "60", "60", "90"],
        "left": [10, 80, 130, 0, 10, 60, 150],
        "top": [10, 11, 9, 0, 50, 51, 50],
        "width": [60, 40, 110, 0, 40, 80, 40],
        "height": [14, 14, 14, 0, 14, 14, 14],
    }


def test_words_are_grouped_into_lines(monkeypatch):
    calls = []

    def fake_image_to_data(image, lang, config, output_type):
        calls.append((lang, config))
        return _fake_data()

    monkeypatch.setattr("ticket_agent.services.ocr.pytesseract.image_to_data", fake_image_to_data)

    cfg = RecognitionConfig(language="eng", psm=6, oem=3, dpi=300)
    result = TesseractRecognizer(cfg).recognize(png_bytes(200, size=(300, 100)))

    assert calls[0][0] == "eng"
    assert "--psm 6" in calls[0][1]
    assert "--dpi 300" in calls[0][1]
    assert result.text == "Ticket No: TK-2024-001\nNet Weight: 25.5"
    assert len(result.lines) == 2
    assert result.lines[0].confidence == pytest.approx(80.0)
    assert result.confidence == pytest.approx(75.0)
    assert result.size == (300, 100)
    assert len(result.words) == 6


def test_missing_engine_is_a_recognition_error(monkeypatch):
    def boom(*args, **kwargs):
        raise pytesseract.TesseractNotFoundError()

    monkeypatch.setattr("ticket_agent.services.ocr.pytesseract.image_to_data", boom)
    with pytest.raises(RecognitionError):
        TesseractRecognizer().recognize(png_bytes())


def test_undecodable_bytes_raise():
    with pytest.raises(RecognitionError):
        decode_image(b"junk")
    with pytest.raises(RecognitionError):
        decode_image(b"")


def test_char_lists_passed_to_engine():
    args = RecognitionConfig(whitelist="0123456789", preserve_spaces=False, dpi=None).tesseract_args()
    assert "tessedit_char_whitelist=0123456789" in args
    assert "preserve_interword_spaces" not in args
    assert "--dpi" not in args
