"""
Pytest configuration and fixtures for the clinical OCR tests.
"""

import io
import threading

import numpy as np
import pytest
from PIL import Image

from clinical_ocr.exceptions import RecognitionFailure
from clinical_ocr.models import RecognitionOutput
from clinical_ocr.ocr_engine import RecognitionAdapter
from clinical_ocr.pixel_buffer import PixelBuffer
from clinical_ocr.strategies import BUILTIN_RECIPES, StrategyCatalog


class ScriptedAdapter(RecognitionAdapter):
    """
    Recognition adapter replaying scripted outputs.

    `script` is either a list of (text, confidence) tuples / exceptions,
    consumed one per call (the last entry repeats), or a callable
    taking (buffer, mode).
    """

    name = 'scripted'

    def __init__(self, script):
        self.script = script
        self.calls = []
        self._lock = threading.Lock()

    def _recognize(self, buffer, mode):
        with self._lock:
            self.calls.append((buffer.width, buffer.height, mode))
            index = len(self.calls) - 1
        if callable(self.script):
            item = self.script(buffer, mode)
        else:
            item = self.script[min(index, len(self.script) - 1)]
        if isinstance(item, BaseException):
            raise item
        return RecognitionOutput(*item)


@pytest.fixture
def scripted_adapter():
    return ScriptedAdapter


@pytest.fixture
def small_catalog():
    """2 recipes x 2 scales x 2 modes, no rotation sweep"""
    return StrategyCatalog(
        recipes=[BUILTIN_RECIPES['otsu_threshold'], BUILTIN_RECIPES['morphology_clean']],
        scale_factors=[1.0, 2.0],
        modes=[6, 11],
        rotation_angles=[],
    )


@pytest.fixture
def text_buffer():
    """Gray 30x20 page with a dark stroke block"""
    data = np.full((20, 30), 230, dtype=np.uint8)
    data[6:14, 5:25] = 30
    return PixelBuffer(data)


@pytest.fixture
def png_bytes():
    image = Image.new('RGB', (40, 24), 'white')
    for x in range(8, 32):
        for y in range(10, 14):
            image.putpixel((x, y), (0, 0, 0))
    out = io.BytesIO()
    image.save(out, format='PNG')
    return out.getvalue()


@pytest.fixture
def failure():
    return RecognitionFailure("engine returned no text")
