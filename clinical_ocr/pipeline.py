"""
Main Clinical OCR Pipeline
Orchestrates the complete workflow: image → multi-pass OCR → fusion → domain correction
"""

import logging
import re
from datetime import datetime

from .config import CONFIDENCE_THRESHOLDS, BASE_ENHANCEMENT, DEFAULT_ENGINE
from .error_correction import DomainCorrector
from .exceptions import NoCandidatesError, PreprocessingFailure
from .fusion import ResultFusion
from .models import AdvancedOCRResult
from .ocr_engine import create_adapter
from .orchestrator import PassOrchestrator
from .pixel_buffer import PixelBuffer
from .preprocessing import ImagePreprocessor

logger = logging.getLogger(__name__)

NO_TEXT_WARNING = 'No text could be extracted from any OCR pass'
UNREADABLE_WARNING = 'Image could not be decoded'

NON_PRINTABLE = re.compile(r'[^\x20-\x7E\n]')
SPACE_RUNS = re.compile(r'[ \t]{2,}')
BLANK_LINES = re.compile(r'\n{3,}')


def clean_text(text):
    """Drop non-printable characters and collapse runs of blanks"""
    text = NON_PRINTABLE.sub('', text)
    text = SPACE_RUNS.sub(' ', text)
    text = BLANK_LINES.sub('\n\n', text)
    return text.strip()


class ClinicalOCRPipeline:
    """
    Complete pipeline for transcribing clinical handwriting

    Every `recognize` call is an independent job: the only state shared
    between jobs is the read-only correction dictionary.
    """

    def __init__(self, adapter=None, catalog=None, corrector=None, engine=DEFAULT_ENGINE,
                 base_enhancement=True, **orchestrator_options):
        logger.info("🚀 Initializing Clinical OCR Pipeline...")
        self.adapter = adapter or create_adapter(engine)
        self.preprocessor = ImagePreprocessor()
        self.orchestrator = PassOrchestrator(
            self.adapter, catalog=catalog, preprocessor=self.preprocessor, **orchestrator_options
        )
        self.corrector = corrector or DomainCorrector()
        self.base_enhancement = base_enhancement
        logger.info("✅ Pipeline initialized successfully")

    def recognize(self, image, target_confidence=None, min_confidence=None,
                  apply_correction=True) -> AdvancedOCRResult:
        """
        Transcribe one image

        Args:
            image: Bytes, path, PIL image, numpy array or PixelBuffer
            target_confidence: Stop as soon as a pass reaches this (default 99)
            min_confidence: Passes below this are flagged low quality (default 60)
            apply_correction: Run fuzzy and dictionary domain correction

        Returns:
            AdvancedOCRResult; never raises for a single bad image
        """
        start_time = datetime.now()
        target_confidence = CONFIDENCE_THRESHOLDS['target'] if target_confidence is None else target_confidence
        min_confidence = CONFIDENCE_THRESHOLDS['minimum'] if min_confidence is None else min_confidence

        try:
            buffer = PixelBuffer.from_source(image)
            if buffer.is_empty:
                raise PreprocessingFailure("Image has no pixels")
            logger.info(f"📄 Processing {buffer.width}x{buffer.height} image")
            if self.base_enhancement:
                buffer = self.preprocessor.enhance(buffer, **BASE_ENHANCEMENT)
        except PreprocessingFailure as e:
            logger.warning(f"⚠️  {e}")
            return AdvancedOCRResult.empty(UNREADABLE_WARNING)

        try:
            report = self.orchestrator.run(
                buffer, target_confidence=target_confidence, min_confidence=min_confidence
            )
        except NoCandidatesError as e:
            logger.warning(f"⚠️  {e}")
            result = AdvancedOCRResult.empty(NO_TEXT_WARNING)
            result.passes = e.attempted
            return result

        fusion = ResultFusion(corrector=self.corrector if apply_correction else None)
        result = fusion.fuse(report.candidates)
        result.text = clean_text(result.text)
        result.passes = report.attempts

        if apply_correction:
            result.corrected_text = self.corrector.correct(result.text)

        best = report.best
        if best.low_quality:
            result.warnings.append(
                f"Best pass confidence {best.confidence:.1f}% is below the {min_confidence}% minimum"
            )
        if report.timed_out:
            result.warnings.append(
                f"Time budget exhausted after {report.attempts} passes; using best result so far"
            )

        processing_time = (datetime.now() - start_time).total_seconds()
        logger.info(
            f"✅ Pipeline completed in {processing_time:.2f}s: "
            f"{result.confidence:.1f}% confidence over {report.attempts} passes"
        )
        return result

    def quick_extract(self, image) -> str:
        """Quick extraction - just get the text"""
        result = self.recognize(image)
        return result.corrected_text or result.text


# Standalone function
def recognize_image(image, engine=DEFAULT_ENGINE, **kwargs):
    """Quick function to transcribe a clinical image"""
    pipeline = ClinicalOCRPipeline(engine=engine)
    return pipeline.recognize(image, **kwargs)
