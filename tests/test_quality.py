import numpy as np

from ticket_agent.services.quality import analyze_image_quality
from conftest import png_bytes


def test_well_exposed_contrasty_image_is_excellent():
    report = analyze_image_quality(png_bytes(40, split=220))
    assert report.tier == "excellent"
    assert not report.needs_preprocessing


def test_flat_grey_image_needs_contrast():
    report = analyze_image_quality(png_bytes(128))
    assert report.tier == "fair"
    assert report.needs_preprocessing
    assert report.suggested.contrast == 1.3
    assert report.suggested.brightness is None
    assert report.suggested.grayscale


def test_dark_flat_image_is_poor_and_brightened():
    report = analyze_image_quality(png_bytes(20))
    assert report.tier == "poor"
    assert report.suggested.brightness == 30.0
    assert report.suggested.contrast == 1.3


def test_bright_image_is_darkened():
    report = analyze_image_quality(png_bytes(210, split=255))
    assert report.suggested.brightness == -20.0


def test_undecodable_input_is_poor_not_an_error():
    report = analyze_image_quality(b"\x00not an image")
    assert report.tier == "poor"
    assert report.needs_preprocessing
    assert report.suggested.grayscale
    assert report.suggested.contrast == 1.2


def test_accepts_pixel_arrays():
    arr = np.zeros((50, 50), dtype=np.uint8)
    arr[:, 25:] = 230
    report = analyze_image_quality(arr)
    assert report.mean_luma is not None
