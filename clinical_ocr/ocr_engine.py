"""
Recognition adapters wrapping the external OCR engines
Each adapter turns a PixelBuffer into (text, confidence 0-100)
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from .config import EASYOCR_CONFIG, OCR_ENGINES, TESSERACT_CONFIG
from .exceptions import RecognitionFailure
from .models import RecognitionOutput

logger = logging.getLogger(__name__)


def _clamp_confidence(value):
    return float(min(100.0, max(0.0, value)))


class RecognitionAdapter(ABC):
    """
    Uniform capability over a text-recognition engine.

    `recognize` must not leak engine exceptions: failures and empty
    output are reported as RecognitionFailure so the orchestrator can
    skip that combination.
    """

    name = 'adapter'

    def recognize(self, buffer, mode: Optional[int] = None) -> RecognitionOutput:
        if buffer is None or buffer.is_empty:
            raise RecognitionFailure(f"{self.name}: empty pixel buffer")
        try:
            output = self._recognize(buffer, mode)
        except RecognitionFailure:
            raise
        except MemoryError:
            raise
        except Exception as e:
            raise RecognitionFailure(f"{self.name} failed: {e}") from e

        text = output.text.strip()
        if not text:
            raise RecognitionFailure(f"{self.name} returned no text")
        return RecognitionOutput(text=text, confidence=_clamp_confidence(output.confidence))

    @abstractmethod
    def _recognize(self, buffer, mode) -> RecognitionOutput:
        """Engine-specific call; may raise anything"""


class TesseractAdapter(RecognitionAdapter):
    """Tesseract via pytesseract; `mode` is the page segmentation mode"""

    name = 'tesseract'

    def __init__(self, lang=None, oem=None):
        self.lang = lang or TESSERACT_CONFIG['lang']
        self.oem = TESSERACT_CONFIG['oem'] if oem is None else oem
        self._engine = None

    def _initialize(self):
        if self._engine is None:
            try:
                import pytesseract
                pytesseract.get_tesseract_version()
            except Exception as e:
                raise RecognitionFailure(f"Tesseract not available: {e}") from e
            self._engine = pytesseract
            logger.info("✅ Tesseract ready")
        return self._engine

    def _recognize(self, buffer, mode):
        pytesseract = self._initialize()
        config = f'--oem {self.oem}'
        if mode is not None:
            config += f' --psm {mode}'

        data = pytesseract.image_to_data(
            buffer.to_image(),
            lang=self.lang,
            config=config,
            output_type=pytesseract.Output.DICT,
        )

        lines = {}
        confidences = []
        for i in range(len(data['text'])):
            text = str(data['text'][i]).strip()
            conf = float(data['conf'][i])
            if not text or conf < 0:
                continue
            key = (data['block_num'][i], data['par_num'][i], data['line_num'][i])
            lines.setdefault(key, []).append(text)
            confidences.append(conf)

        combined_text = '\n'.join(' '.join(words) for words in lines.values())
        avg_confidence = float(np.mean(confidences)) if confidences else 0.0
        logger.debug(f"Tesseract psm={mode}: {len(confidences)} words, confidence {avg_confidence:.1f}")
        return RecognitionOutput(combined_text, avg_confidence)


class EasyOCRAdapter(RecognitionAdapter):
    """
    EasyOCR reader (strong on handwriting)
    Layout modes do not apply and are ignored
    """

    name = 'easyocr'

    def __init__(self, use_gpu=None, languages=None):
        self.use_gpu = EASYOCR_CONFIG['gpu'] if use_gpu is None else use_gpu
        self.languages = languages or EASYOCR_CONFIG['languages']
        self._reader = None

    def _initialize(self):
        if self._reader is None:
            try:
                logger.info("🔄 Initializing EasyOCR (may download models on first run, ~100MB)...")
                import easyocr
                self._reader = easyocr.Reader(
                    self.languages,
                    gpu=self.use_gpu,
                    verbose=False,
                    download_enabled=True,
                )
            except Exception as e:
                raise RecognitionFailure(f"EasyOCR initialization failed: {e}") from e
            logger.info("✅ EasyOCR ready (optimized for handwriting)")
        return self._reader

    def _recognize(self, buffer, mode):
        reader = self._initialize()
        # EasyOCR returns: [([bbox], text, confidence), ...]
        results = reader.readtext(
            buffer.to_array(),
            detail=1,
            paragraph=False,
            decoder=EASYOCR_CONFIG['decoder'],
            beamWidth=EASYOCR_CONFIG['beam_width'],
            batch_size=1,
        )

        texts = [text for _, text, _ in results]
        confidences = [conf for _, _, conf in results]
        avg_confidence = float(np.mean(confidences)) * 100 if confidences else 0.0
        return RecognitionOutput(' '.join(texts), avg_confidence)


ADAPTERS = {
    'tesseract': TesseractAdapter,
    'easyocr': EasyOCRAdapter,
}


def create_adapter(engine='tesseract', **kwargs) -> RecognitionAdapter:
    """Build a recognition adapter by engine name"""
    if engine not in ADAPTERS or not OCR_ENGINES.get(engine):
        raise ValueError(f"Unknown or disabled engine: {engine}")
    adapter_cls = ADAPTERS[engine]
    return adapter_cls(**kwargs)
