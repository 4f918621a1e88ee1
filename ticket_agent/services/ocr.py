from __future__ import annotations

from dataclasses import dataclass, field
from io import BytesIO
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union

import logging

import numpy as np
import pytesseract
from PIL import Image, UnidentifiedImageError

from ticket_agent.config import settings
from ticket_agent.services.types import BoundingBox, RecognitionError

# Module logger
logger = logging.getLogger(__name__)
if settings.DEBUG:
    logger.setLevel(logging.DEBUG)
else:
    logger.setLevel(logging.INFO)


"""
Recognition adapter: wraps Tesseract and returns text plus line/word confidence geometry.
"""


@dataclass(frozen=True)
class RecognitionConfig:
    language: str = "eng"
    psm: int = 6
    oem: int = 3
    dpi: Optional[int] = 300
    whitelist: str = ""
    blacklist: str = ""
    preserve_spaces: bool = True

    @classmethod
    def from_settings(cls) -> "RecognitionConfig":
        return cls(
            language=settings.TESSERACT_LANG,
            psm=settings.OCR_PSM,
            oem=settings.OCR_OEM,
            dpi=settings.OCR_USER_DPI or None,
            whitelist=settings.OCR_CHAR_WHITELIST,
            blacklist=settings.OCR_CHAR_BLACKLIST,
            preserve_spaces=settings.OCR_PRESERVE_SPACES,
        )

    def tesseract_args(self) -> str:
        parts = [f"--oem {self.oem}", f"--psm {self.psm}"]
        if self.dpi:
            parts.append(f"--dpi {self.dpi}")
        if self.preserve_spaces:
            parts.append("-c preserve_interword_spaces=1")
        if self.whitelist:
            parts.append(f"-c tessedit_char_whitelist={self.whitelist}")
        if self.blacklist:
            parts.append(f"-c tessedit_char_blacklist={self.blacklist}")
        return " ".join(parts)


@dataclass(frozen=True)
class OcrWord:
    text: str
    confidence: float
    bbox: BoundingBox


@dataclass(frozen=True)
class OcrLine:
    text: str
    confidence: float
    bbox: BoundingBox
    words: Tuple[OcrWord, ...] = ()


@dataclass(frozen=True)
class RecognitionResult:
    text: str
    confidence: float
    lines: Tuple[OcrLine, ...] = ()
    size: Tuple[int, int] = (0, 0)
    engine: str = "tesseract"

    @property
    def words(self) -> List[OcrWord]:
        return [w for ln in self.lines for w in ln.words]

    @classmethod
    def from_text(cls, text: str, confidence: float = 0.0) -> "RecognitionResult":
        """Build a geometry-less result (used when text arrives from elsewhere)."""
        return cls(text=text, confidence=confidence)


class Recognizer(Protocol):
    def recognize(self, image: bytes, config: Optional[RecognitionConfig] = None) -> RecognitionResult:
        ...


ImageInput = Union[bytes, bytearray, np.ndarray, Image.Image]


def decode_image(image: ImageInput) -> Image.Image:
    """Decode bytes or a pixel array into an RGB PIL image; raises RecognitionError."""
    if isinstance(image, Image.Image):
        return image.convert("RGB")
    if isinstance(image, np.ndarray):
        try:
            return Image.fromarray(image).convert("RGB")
        except (TypeError, ValueError) as e:
            raise RecognitionError(f"Unsupported pixel buffer: {e}") from e
    if not image:
        raise RecognitionError("Empty image payload")
    try:
        img = Image.open(BytesIO(bytes(image)))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise RecognitionError(f"Could not decode image: {e}") from e
    return img.convert("RGB")


# Group OCR word boxes into lines by vertical proximity; returns OcrLines top-to-bottom.
def _cluster_lines_by_y(words: List[Dict[str, Any]], tol_frac: float = 0.6, min_px: int = 6) -> List[OcrLine]:
    """Given a flat list of word dicts with coords, build line clusters by Y.

    Words are sorted by vertical center; a word joins the previous cluster when
    its center is within max(min_px, median_height * tol_frac) of the cluster's
    running mean. Within a line words are ordered left-to-right. Line
    confidence is the mean of its word confidences.
    """
    if not words:
        return []

    heights = [max(1, int(w["height"])) for w in words]
    med_h = float(np.median(heights)) if heights else 12.0
    y_tol = max(float(min_px), med_h * float(tol_frac))

    idxs = list(range(len(words)))
    y_mids = [float(w["top"]) + float(w["height"]) / 2.0 for w in words]
    idxs.sort(key=lambda i: (y_mids[i], float(words[i]["left"])))

    clusters: List[List[int]] = []
    cluster_ys: List[float] = []
    for i in idxs:
        y = y_mids[i]
        if clusters and abs(y - cluster_ys[-1]) <= y_tol:
            clusters[-1].append(i)
            cluster_ys[-1] = (cluster_ys[-1] * (len(clusters[-1]) - 1) + y) / float(len(clusters[-1]))
        else:
            clusters.append([i])
            cluster_ys.append(y)

    lines: List[OcrLine] = []
    for inds in clusters:
        inds_sorted = sorted(inds, key=lambda k: float(words[k]["left"]))
        ocr_words = tuple(
            OcrWord(
                text=str(words[k]["text"]),
                confidence=float(words[k]["conf"]),
                bbox=BoundingBox(int(words[k]["left"]), int(words[k]["top"]), int(words[k]["width"]), int(words[k]["height"])),
            )
            for k in inds_sorted
        )
        bbox = ocr_words[0].bbox
        for w in ocr_words[1:]:
            bbox = bbox.union(w.bbox)
        conf = sum(w.confidence for w in ocr_words) / float(len(ocr_words))
        lines.append(OcrLine(text=" ".join(w.text for w in ocr_words), confidence=conf, bbox=bbox, words=ocr_words))
    return lines


class TesseractRecognizer:
    """Default Recognizer backed by pytesseract.image_to_data."""

    def __init__(self, config: Optional[RecognitionConfig] = None, min_word_confidence: float = 0.0) -> None:
        self.config = config or RecognitionConfig.from_settings()
        self.min_word_confidence = min_word_confidence

    def recognize(self, image: ImageInput, config: Optional[RecognitionConfig] = None) -> RecognitionResult:
        cfg = config or self.config
        pil_img = decode_image(image)
        try:
            data = pytesseract.image_to_data(
                pil_img,
                lang=cfg.language,
                config=cfg.tesseract_args(),
                output_type=pytesseract.Output.DICT,
            )
        except pytesseract.TesseractNotFoundError as e:
            raise RecognitionError("Tesseract is not installed or not on PATH") from e
        except (pytesseract.TesseractError, RuntimeError) as e:
            raise RecognitionError(f"OCR engine failed: {e}") from e

        words: List[Dict[str, Any]] = []
        n = len(data.get("text", []))
        for i in range(n):
            txt = (data["text"][i] or "").strip()
            if not txt:
                continue
            try:
                conf = float(data.get("conf", ["-1"] * n)[i])
            except (TypeError, ValueError):
                conf = -1.0
            # Tesseract reports -1 for non-word boxes
            if conf < 0 or conf < self.min_word_confidence:
                continue
            words.append({
                "text": txt,
                "conf": conf,
                "left": int(data["left"][i]),
                "top": int(data["top"][i]),
                "width": int(data["width"][i]),
                "height": int(data["height"][i]),
            })

        lines = _cluster_lines_by_y(words)
        text = "\n".join(ln.text for ln in lines)
        overall = sum(w["conf"] for w in words) / float(len(words)) if words else 0.0
        logger.debug("OCR recognized %d words on %d lines (conf=%.1f)", len(words), len(lines), overall)
        return RecognitionResult(text=text, confidence=overall, lines=tuple(lines), size=pil_img.size)
