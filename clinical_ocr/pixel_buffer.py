"""
Mutable 2D pixel grid shared by every preprocessing transform
"""

import io
import logging
from pathlib import Path

import cv2
import numpy as np
from PIL import Image

from .exceptions import PreprocessingFailure

logger = logging.getLogger(__name__)

LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114])


class PixelBuffer:
    """
    Grayscale (1 channel) or RGBA (4 channel) image backed by a uint8 array
    of shape (height, width, channels).
    """

    def __init__(self, data):
        data = np.asarray(data)
        if data.ndim == 2:
            data = data[:, :, np.newaxis]
        if data.ndim != 3 or data.shape[2] not in (1, 3, 4):
            raise PreprocessingFailure(f"Unsupported pixel layout: {data.shape}")
        if data.shape[2] == 3:
            alpha = np.full(data.shape[:2] + (1,), 255, dtype=np.uint8)
            data = np.concatenate([data.astype(np.uint8), alpha], axis=2)
        self.data = np.ascontiguousarray(data, dtype=np.uint8)

    @classmethod
    def blank(cls, width, height, channels=4, fill=255):
        """Create a buffer filled with a single value"""
        return cls(np.full((height, width, channels), fill, dtype=np.uint8))

    @classmethod
    def from_image(cls, image):
        """Build a buffer from a PIL image"""
        if image.mode == 'L':
            return cls(np.array(image))
        return cls(np.array(image.convert('RGBA')))

    @classmethod
    def from_bytes(cls, raw):
        """Decode an encoded raster (PNG, JPEG, ...) held in memory"""
        try:
            image = Image.open(io.BytesIO(raw))
            image.load()
        except (OSError, ValueError) as e:
            raise PreprocessingFailure(f"Could not decode image: {e}") from e
        return cls.from_image(image)

    @classmethod
    def from_source(cls, source):
        """
        Accept bytes, a filesystem path, a PIL image, a numpy array
        or an existing buffer (copied).
        """
        if isinstance(source, PixelBuffer):
            return source.copy()
        if isinstance(source, (bytes, bytearray, memoryview)):
            return cls.from_bytes(bytes(source))
        if isinstance(source, (str, Path)):
            image = cv2.imread(str(source), cv2.IMREAD_UNCHANGED)
            if image is None:
                raise PreprocessingFailure(f"Could not read image: {source}")
            if image.ndim == 3 and image.shape[2] == 3:
                image = cv2.cvtColor(image, cv2.COLOR_BGR2RGBA)
            elif image.ndim == 3 and image.shape[2] == 4:
                image = cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)
            return cls(image)
        if isinstance(source, Image.Image):
            return cls.from_image(source)
        if isinstance(source, np.ndarray):
            return cls(source.copy())
        raise PreprocessingFailure(f"Unsupported image source: {type(source).__name__}")

    @property
    def width(self):
        return self.data.shape[1]

    @property
    def height(self):
        return self.data.shape[0]

    @property
    def channels(self):
        return self.data.shape[2]

    @property
    def is_gray(self):
        return self.channels == 1

    @property
    def is_empty(self):
        return self.width == 0 or self.height == 0

    def get(self, x, y):
        """Pixel at column x, row y: an int for gray, an RGBA tuple otherwise"""
        pixel = self.data[y, x]
        if self.is_gray:
            return int(pixel[0])
        return tuple(int(v) for v in pixel)

    def set(self, x, y, value):
        """Write a pixel; a scalar is broadcast to the color channels"""
        if np.isscalar(value):
            if self.is_gray:
                self.data[y, x, 0] = value
            else:
                self.data[y, x, :3] = value
        else:
            self.data[y, x] = value

    def copy(self):
        return PixelBuffer(self.data.copy())

    def intensity(self):
        """Luma plane as float64, shape (height, width)"""
        if self.is_gray:
            return self.data[:, :, 0].astype(np.float64)
        return self.data[:, :, :3].astype(np.float64) @ LUMA_WEIGHTS

    def with_intensity(self, plane):
        """
        New buffer with `plane` written to every color channel.
        Alpha is carried over unchanged.
        """
        plane = np.clip(np.rint(plane), 0, 255).astype(np.uint8)
        data = self.data.copy()
        if self.is_gray:
            data[:, :, 0] = plane
        else:
            data[:, :, :3] = plane[:, :, np.newaxis]
        return PixelBuffer(data)

    def to_array(self):
        """Array suited to the recognition engines: 2D gray or 3D RGB"""
        if self.is_gray:
            return self.data[:, :, 0].copy()
        return self.data[:, :, :3].copy()

    def to_image(self):
        return Image.fromarray(self.to_array())

    def __eq__(self, other):
        if not isinstance(other, PixelBuffer):
            return NotImplemented
        return self.data.shape == other.data.shape and np.array_equal(self.data, other.data)

    def __repr__(self):
        return f"PixelBuffer({self.width}x{self.height}, channels={self.channels})"
