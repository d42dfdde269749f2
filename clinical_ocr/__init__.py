"""
Clinical OCR Module
Adaptive multi-pass transcription of handwritten clinical text with
result fusion and domain vocabulary correction
"""

from .pipeline import ClinicalOCRPipeline
from .models import AdvancedOCRResult, CandidateResult
from .pixel_buffer import PixelBuffer

__version__ = "1.0.0"
__all__ = ['ClinicalOCRPipeline', 'AdvancedOCRResult', 'CandidateResult', 'PixelBuffer']
