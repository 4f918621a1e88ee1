from io import BytesIO

import cv2
import numpy as np
import pytest
from PIL import Image

from ticket_agent.services import image_preproc
from ticket_agent.services.image_preproc import OpenCVPreprocessor, adjust_pixels
from ticket_agent.services.types import PreprocessSettings


def test_contrast_and_brightness_formula():
    px = np.array([[100, 128, 200]], dtype=np.uint8)
    out = adjust_pixels(px, PreprocessSettings(contrast=1.5, brightness=10))
    # 1.5 * (v - 128) + 128 + 10
    assert out.tolist() == [[96, 138, 246]]


def test_values_are_clipped():
    px = np.array([[0, 255]], dtype=np.uint8)
    out = adjust_pixels(px, PreprocessSettings(contrast=3.0))
    assert out.tolist() == [[0, 255]]


def test_threshold_binarizes():
    px = np.array([[10, 100, 200]], dtype=np.uint8)
    out = adjust_pixels(px, PreprocessSettings(threshold=128))
    assert out.tolist() == [[0, 0, 255]]


def test_apply_returns_grayscale_png():
    buf = BytesIO()
    Image.new("RGB", (20, 10), (200, 40, 40)).save(buf, format="PNG")
    out = OpenCVPreprocessor().apply(buf.getvalue(), PreprocessSettings(grayscale=True, contrast=1.2))
    img = Image.open(BytesIO(out))
    assert img.mode == "L"
    assert img.size == (20, 10)


def test_apply_rejects_garbage():
    with pytest.raises(ValueError):
        OpenCVPreprocessor().apply(b"garbage", PreprocessSettings(grayscale=True))


def test_settings_merge():
    base = PreprocessSettings(grayscale=True, contrast=1.1)
    merged = PreprocessSettings(brightness=30.0).merged_over(base)
    assert merged == PreprocessSettings(brightness=30.0, contrast=1.1, grayscale=True)


def test_opencv_errors_surface_as_value_error(monkeypatch):
    def broken(img, options):
        raise cv2.error("unsupported depth")

    monkeypatch.setattr(image_preproc, "adjust_pixels", broken)
    buf = BytesIO()
    Image.new("RGB", (20, 10), (200, 40, 40)).save(buf, format="PNG")
    with pytest.raises(ValueError, match="unsupported depth"):
        OpenCVPreprocessor().apply(buf.getvalue(), PreprocessSettings(grayscale=True))
