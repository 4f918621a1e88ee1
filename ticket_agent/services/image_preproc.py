"""
Image preprocessing applied before recognition when quality triage asks for it.

The filters are deliberately simple (grayscale, linear brightness/contrast,
global threshold, Gaussian blur); the triage step only decides whether to
call them and with which parameters.
"""
from typing import Protocol
import logging

import cv2
import numpy as np

from ticket_agent.services.types import PreprocessSettings

logger = logging.getLogger(__name__)


class Preprocessor(Protocol):
    def apply(self, image: bytes, options: PreprocessSettings) -> bytes:
        ...


def _decode(image: bytes) -> np.ndarray:
    buf = np.frombuffer(image, dtype=np.uint8)
    img = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    if img is None:
        raise ValueError("Failed to decode image for preprocessing")
    return img


def adjust_pixels(img: np.ndarray, options: PreprocessSettings) -> np.ndarray:
    """Apply the filters in order: grayscale, brightness/contrast, threshold, blur."""
    out = img
    if options.grayscale and out.ndim == 3:
        out = cv2.cvtColor(out, cv2.COLOR_BGR2GRAY)

    if options.contrast is not None or options.brightness is not None:
        contrast = float(options.contrast if options.contrast is not None else 1.0)
        brightness = float(options.brightness if options.brightness is not None else 0.0)
        # contrast * (v - 128) + 128 + brightness, clipped to 0..255
        f = out.astype(np.float32)
        f = contrast * (f - 128.0) + 128.0 + brightness
        out = np.clip(f, 0, 255).astype(np.uint8)

    if options.threshold is not None:
        gray = out if out.ndim == 2 else cv2.cvtColor(out, cv2.COLOR_BGR2GRAY)
        _, out = cv2.threshold(gray, float(options.threshold), 255, cv2.THRESH_BINARY)

    if options.blur:
        # Kernel must be odd and at least 3
        k = max(3, int(round(float(options.blur) * 2)) | 1)
        out = cv2.GaussianBlur(out, (k, k), float(options.blur))
    return out


class OpenCVPreprocessor:
    """Default Preprocessor: decode, filter, re-encode as PNG."""

    def apply(self, image: bytes, options: PreprocessSettings) -> bytes:
        img = _decode(image)
        try:
            out = adjust_pixels(img, options)
            ok, encoded = cv2.imencode(".png", out)
        except cv2.error as e:
            raise ValueError(f"OpenCV failed while preprocessing: {e}") from e
        if not ok:
            raise ValueError("Failed to encode preprocessed image")
        logger.debug("Preprocessed image with %s", options.to_dict())
        return encoded.tobytes()
