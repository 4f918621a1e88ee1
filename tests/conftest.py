"""Pytest configuration shared across the suite."""

from __future__ import annotations

import sys
from io import BytesIO
from pathlib import Path
from typing import List, Optional

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from PIL import Image  # noqa: E402

from ticket_agent.services.ocr import RecognitionConfig, RecognitionResult  # noqa: E402
from ticket_agent.services.types import RecognitionError  # noqa: E402


SAMPLE_TICKET = "\n".join([
    "BAUXITE DELIVERY TICKET",
    "Ticket No: TK-2024-001",
    "Date: 15/01/2024",
    "Truck Reg: ABC 123",
    "Driver: John Smith",
    "Commodity: Bauxite",
    "Net Weight: 25.5 tons",
    "From: St Jago Mine",
    "Destination: Port Esquivel",
    "Dispatcher: A. Bailey",
])


def png_bytes(value: int = 128, size=(64, 32), split: Optional[int] = None) -> bytes:
    """Grayscale PNG; with split, the right half is painted that value instead."""
    img = Image.new("L", size, value)
    if split is not None:
        img.paste(split, (size[0] // 2, 0, size[0], size[1]))
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


class TextRecognizer:
    """Recognizer stand-in: returns fixed text, fails on payloads listed in `unreadable`."""

    def __init__(self, text: str = SAMPLE_TICKET, unreadable=(b"bad",)) -> None:
        self.text = text
        self.unreadable = set(unreadable)
        self.seen: List[bytes] = []

    def recognize(self, image: bytes, config: Optional[RecognitionConfig] = None) -> RecognitionResult:
        self.seen.append(image)
        if image in self.unreadable:
            raise RecognitionError("unreadable image")
        return RecognitionResult.from_text(self.text, confidence=80.0)


@pytest.fixture
def sample_text() -> str:
    return SAMPLE_TICKET


@pytest.fixture
def text_recognizer() -> TextRecognizer:
    return TextRecognizer()
