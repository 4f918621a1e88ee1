from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from ticket_agent.config import settings
from ticket_agent.services.extractor import FieldExtractor
from ticket_agent.services.fusion import FusionPolicy, fuse_candidates, overall_confidence
from ticket_agent.services.image_preproc import OpenCVPreprocessor, Preprocessor
from ticket_agent.services.locator import HeuristicLocator
from ticket_agent.services.ocr import RecognitionConfig, Recognizer, TesseractRecognizer
from ticket_agent.services.quality import analyze_image_quality
from ticket_agent.services.types import PreprocessSettings, TicketResult

logger = logging.getLogger(__name__)
if settings.DEBUG:
    logger.setLevel(logging.DEBUG)
else:
    logger.setLevel(logging.INFO)

ProgressFn = Callable[[float], None]

# Per-stage progress reported to the scheduler (percent)
STAGE_TRIAGE = 10.0
STAGE_PREPROCESS = 20.0
STAGE_RECOGNIZED = 60.0
STAGE_DETECTED = 80.0
STAGE_FUSED = 95.0


def _noop(_: float) -> None:
    return None


class TicketPipeline:
    """Single-image flow: triage -> optional preprocessing -> OCR -> both detectors -> fusion."""

    def __init__(
        self,
        recognizer: Optional[Recognizer] = None,
        preprocessor: Optional[Preprocessor] = None,
        extractor: Optional[FieldExtractor] = None,
        locator: Optional[HeuristicLocator] = None,
        policy: Optional[FusionPolicy] = None,
        recognition_config: Optional[RecognitionConfig] = None,
        base_preprocessing: Optional[PreprocessSettings] = None,
        enable_preprocessing: Optional[bool] = None,
    ) -> None:
        self.recognizer = recognizer or TesseractRecognizer()
        self.preprocessor = preprocessor or OpenCVPreprocessor()
        self.extractor = extractor or FieldExtractor()
        self.locator = locator or HeuristicLocator()
        self.policy = policy or FusionPolicy()
        self.recognition_config = recognition_config or RecognitionConfig.from_settings()
        self.base_preprocessing = base_preprocessing or PreprocessSettings(
            grayscale=True, contrast=settings.OCR_DEFAULT_CONTRAST
        )
        self.enable_preprocessing = settings.OCR_ENABLE_PREPROCESSING if enable_preprocessing is None else enable_preprocessing

    def process(self, image: bytes, progress: Optional[ProgressFn] = None, ticket_type: Optional[str] = None) -> TicketResult:
        """Run the whole pipeline; RecognitionError propagates to the caller."""
        report = progress or _noop
        t0 = time.perf_counter()

        quality = analyze_image_quality(image)
        report(STAGE_TRIAGE)

        source = image
        applied = False
        if quality.needs_preprocessing and self.enable_preprocessing:
            options = quality.suggested.merged_over(self.base_preprocessing)
            try:
                source = self.preprocessor.apply(image, options)
                applied = True
            except (ValueError, OSError) as e:
                # fall back to the original image
                logger.warning("Preprocessing failed, using original image: %s", e)
        report(STAGE_PREPROCESS)

        recognition = self.recognizer.recognize(source, self.recognition_config)
        report(STAGE_RECOGNIZED)

        pattern_candidates = self.extractor.extract(recognition)
        detected_type = ticket_type or self.locator.classify(recognition.text)
        heuristic_candidates = self.locator.locate(
            recognition.text,
            image_size=recognition.size if all(recognition.size) else None,
            ticket_type=detected_type,
        )
        report(STAGE_DETECTED)

        fused = fuse_candidates(
            pattern_candidates,
            heuristic_candidates,
            self.policy,
            field_names=[spec.name for spec in self.extractor.specs],
        )
        confidence = overall_confidence(fused)
        report(STAGE_FUSED)

        elapsed = time.perf_counter() - t0
        logger.info(
            "Ticket processed: quality=%s preprocessed=%s type=%s fields=%d confidence=%.1f in %.2fs",
            quality.tier, applied, detected_type, sum(1 for f in fused.values() if f.value), confidence, elapsed,
        )
        return TicketResult(
            fields=fused,
            confidence=confidence,
            quality=quality.tier,
            preprocessing_applied=applied,
            recognition_confidence=recognition.confidence,
            ticket_type=detected_type,
            text=recognition.text,
            pattern_candidates=pattern_candidates,
            heuristic_candidates=tuple(heuristic_candidates),
            processing_time=elapsed,
        )
