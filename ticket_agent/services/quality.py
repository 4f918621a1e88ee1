"""
Image-quality triage.

Looks at a small thumbnail of the ticket photo and decides whether the
preprocessing filters should run before recognition, and with which
parameters. Pure function; never raises.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from io import BytesIO
from typing import Any, Dict, Optional, Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from ticket_agent.config import settings
from ticket_agent.services.types import PreprocessSettings

logger = logging.getLogger(__name__)

TIER_EXCELLENT = "excellent"
TIER_GOOD = "good"
TIER_FAIR = "fair"
TIER_POOR = "poor"

# Exposure / contrast thresholds on a 0-255 luma scale
DARK_LUMA = 80.0
SEVERE_DARK_LUMA = 50.0
BRIGHT_LUMA = 200.0
SEVERE_BRIGHT_LUMA = 230.0
LOW_CONTRAST = 30.0
# Within this margin of a threshold an unflagged image is only "good"
GOOD_MARGIN_LUMA = 20.0
GOOD_MARGIN_CONTRAST = 10.0

BRIGHTEN_DELTA = 30.0
DARKEN_DELTA = -20.0
CONTRAST_BOOST = 1.3
FALLBACK_CONTRAST = 1.2


@dataclass(frozen=True)
class QualityReport:
    tier: str
    needs_preprocessing: bool
    suggested: PreprocessSettings = field(default_factory=PreprocessSettings)
    mean_luma: Optional[float] = None
    mean_deviation: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.tier,
            "needs_preprocessing": self.needs_preprocessing,
            "suggested": self.suggested.to_dict(),
            "mean_luma": None if self.mean_luma is None else round(self.mean_luma, 2),
            "mean_deviation": None if self.mean_deviation is None else round(self.mean_deviation, 2),
        }


# Conservative answer used whenever the image cannot be analysed
UNREADABLE_REPORT = QualityReport(
    tier=TIER_POOR,
    needs_preprocessing=True,
    suggested=PreprocessSettings(grayscale=True, contrast=FALLBACK_CONTRAST),
)


def _to_luma(image: Union[bytes, bytearray, np.ndarray, Image.Image], max_size: int) -> np.ndarray:
    if isinstance(image, Image.Image):
        img = image.copy()
    elif isinstance(image, np.ndarray):
        img = Image.fromarray(image)
    else:
        img = Image.open(BytesIO(bytes(image)))
        img.load()
    img = img.convert("L")
    img.thumbnail((max_size, max_size))
    return np.asarray(img, dtype=np.float32)


def analyze_image_quality(image: Union[bytes, bytearray, np.ndarray, Image.Image], max_size: Optional[int] = None) -> QualityReport:
    """Grade exposure and contrast of an image and suggest corrections.

    Mean luma below 80 or above 200 flags under/over-exposure, mean absolute
    deviation below 30 flags low contrast. One flag gives "fair", two flags
    or a severe exposure problem give "poor".
    """
    size = int(max_size or settings.QUALITY_MAX_ANALYSIS_SIZE)
    try:
        luma = _to_luma(image, size)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError, TypeError) as e:
        logger.warning("Quality triage could not decode image, assuming poor quality: %s", e)
        return UNREADABLE_REPORT
    if luma.size == 0:
        return UNREADABLE_REPORT

    mean = float(luma.mean())
    deviation = float(np.abs(luma - mean).mean())

    flags = 0
    severe = False
    brightness: Optional[float] = None
    contrast: Optional[float] = None

    if mean < DARK_LUMA:
        flags += 1
        brightness = BRIGHTEN_DELTA
        severe = mean < SEVERE_DARK_LUMA
    elif mean > BRIGHT_LUMA:
        flags += 1
        brightness = DARKEN_DELTA
        severe = mean > SEVERE_BRIGHT_LUMA

    if deviation < LOW_CONTRAST:
        flags += 1
        contrast = CONTRAST_BOOST

    if flags >= 2 or severe:
        tier = TIER_POOR
    elif flags == 1:
        tier = TIER_FAIR
    elif (
        mean < DARK_LUMA + GOOD_MARGIN_LUMA
        or mean > BRIGHT_LUMA - GOOD_MARGIN_LUMA
        or deviation < LOW_CONTRAST + GOOD_MARGIN_CONTRAST
    ):
        tier = TIER_GOOD
    else:
        tier = TIER_EXCELLENT

    needs = flags > 0
    suggested = PreprocessSettings(brightness=brightness, contrast=contrast, grayscale=needs)
    logger.debug("Quality triage: luma=%.1f deviation=%.1f tier=%s", mean, deviation, tier)
    return QualityReport(
        tier=tier,
        needs_preprocessing=needs,
        suggested=suggested,
        mean_luma=mean,
        mean_deviation=deviation,
    )
