"""
Image preprocessing for clinical handwriting OCR
Independent, composable pixel transforms tuned for poor handwriting,
skewed photos and uneven lighting
"""

import logging
import math

import cv2
import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from .exceptions import PreprocessingFailure
from .pixel_buffer import PixelBuffer

logger = logging.getLogger(__name__)

MORPHOLOGY_OPERATIONS = ('dilate', 'erode', 'open', 'close')

SHARPEN_KERNEL = np.array([
    [0, -1, 0],
    [-1, 5, -1],
    [0, -1, 0],
], dtype=np.float64)


def _require_pixels(buffer):
    if buffer is None or buffer.is_empty:
        raise PreprocessingFailure("Cannot transform an empty pixel buffer")


def otsu_threshold(histogram):
    """
    Threshold maximizing between-class variance wB*wF*(mB-mF)^2
    over a 256-bin histogram. Falls back to 128 for single-level images.
    """
    histogram = np.asarray(histogram, dtype=np.float64)
    levels = np.arange(256, dtype=np.float64)
    total = histogram.sum()

    w_back = np.cumsum(histogram)
    w_fore = total - w_back
    sum_back = np.cumsum(levels * histogram)
    sum_all = sum_back[-1]

    valid = (w_back > 0) & (w_fore > 0)
    variance = np.zeros(256)
    if not valid.any():
        return 128

    m_back = sum_back[valid] / w_back[valid]
    m_fore = (sum_all - sum_back[valid]) / w_fore[valid]
    variance[valid] = w_back[valid] * w_fore[valid] * (m_back - m_fore) ** 2

    if variance.max() <= 0:
        return 128
    return int(np.argmax(variance))


def _interior_reduce(plane, reducer):
    """Apply a 3x3 neighborhood reducer to every pixel except the outer ring"""
    out = plane.copy()
    if plane.shape[0] < 3 or plane.shape[1] < 3:
        return out
    windows = sliding_window_view(plane, (3, 3))
    out[1:-1, 1:-1] = reducer(windows, axis=(2, 3))
    return out


class ImagePreprocessor:
    """
    Pixel transforms for clinical OCR passes.

    Every transform takes a PixelBuffer and returns a new PixelBuffer;
    the input is never modified. Intensity transforms work on the luma
    plane and write the result to every color channel.
    """

    def preprocess(self, buffer, steps):
        """
        Run an ordered sequence of transform steps

        Args:
            buffer: Source PixelBuffer
            steps: Iterable of (operation, params) pairs

        Returns:
            Transformed PixelBuffer
        """
        for operation, params in steps:
            buffer = self.apply(buffer, operation, **dict(params))
        return buffer

    def apply(self, buffer, operation, /, **params):
        """Dispatch a single named transform"""
        transform = self.OPERATIONS.get(operation)
        if transform is None:
            raise PreprocessingFailure(f"Unknown preprocessing operation: {operation}")
        try:
            return transform(buffer, **params)
        except TypeError as e:
            raise PreprocessingFailure(f"Bad parameters for {operation}: {e}") from e

    @staticmethod
    def adaptive_threshold(buffer):
        """
        Otsu binarization with two-sided hysteresis
        Pixels above 1.3t are ink-free (white), at or below 0.7t are ink
        (black); the band in between turns white only next to a white pixel
        """
        _require_pixels(buffer)
        gray = np.rint(buffer.intensity()).astype(np.int64)
        histogram = np.bincount(gray.ravel(), minlength=256)
        threshold = otsu_threshold(histogram)

        low = threshold * 0.7
        high = threshold * 1.3
        strong = gray > high

        padded = np.pad(strong, 1, constant_values=False)
        height, width = strong.shape
        near_strong = np.zeros_like(strong)
        for dy in (-1, 0, 1):
            for dx in (-1, 0, 1):
                near_strong |= padded[1 + dy:1 + dy + height, 1 + dx:1 + dx + width]

        white = strong | ((gray > low) & near_strong)
        logger.debug(f"Otsu threshold {threshold} (hysteresis {low:.1f}-{high:.1f})")
        return buffer.with_intensity(np.where(white, 255, 0))

    @staticmethod
    def morphology(buffer, operation):
        """
        3x3 morphology: dilate (max), erode (min), open, close
        The outermost ring of pixels is left untouched
        """
        _require_pixels(buffer)
        if operation not in MORPHOLOGY_OPERATIONS:
            raise PreprocessingFailure(f"Unknown morphology operation: {operation}")

        plane = buffer.intensity()
        if operation == 'dilate':
            plane = _interior_reduce(plane, np.max)
        elif operation == 'erode':
            plane = _interior_reduce(plane, np.min)
        elif operation == 'open':
            plane = _interior_reduce(_interior_reduce(plane, np.min), np.max)
        else:
            plane = _interior_reduce(_interior_reduce(plane, np.max), np.min)

        return buffer.with_intensity(plane)

    @staticmethod
    def deskew(buffer, angle):
        """
        Rotate by `angle` degrees (positive = clockwise) about the center
        onto a canvas large enough to hold the whole rotated image
        """
        _require_pixels(buffer)
        if angle == 0:
            return buffer

        radians = math.radians(angle)
        cos = abs(math.cos(radians))
        sin = abs(math.sin(radians))
        width, height = buffer.width, buffer.height
        new_width = math.ceil(round(width * cos + height * sin, 6))
        new_height = math.ceil(round(width * sin + height * cos, 6))

        matrix = cv2.getRotationMatrix2D((width / 2, height / 2), -angle, 1.0)
        matrix[0, 2] += new_width / 2 - width / 2
        matrix[1, 2] += new_height / 2 - height / 2

        rotated = cv2.warpAffine(
            buffer.data, matrix, (new_width, new_height),
            flags=cv2.INTER_CUBIC,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=(255, 255, 255, 255),
        )
        logger.debug(f"Deskewed by {angle} degrees -> {new_width}x{new_height}")
        return PixelBuffer(rotated)

    @staticmethod
    def bilateral_filter(buffer, radius=3, sigma_space=50.0, sigma_color=50.0):
        """
        Edge-preserving smoothing
        Neighbors are weighted by a spatial Gaussian times a range Gaussian,
        so noise is flattened while stroke edges survive
        """
        _require_pixels(buffer)
        if radius < 0 or sigma_space <= 0 or sigma_color <= 0:
            raise PreprocessingFailure("Bilateral filter needs radius >= 0 and positive sigmas")

        plane = buffer.intensity()
        height, width = plane.shape
        if radius == 0 or height <= 2 * radius or width <= 2 * radius:
            return buffer.copy()

        center = plane[radius:height - radius, radius:width - radius]
        weighted = np.zeros_like(center)
        weights = np.zeros_like(center)
        two_ss = 2 * sigma_space * sigma_space
        two_sc = 2 * sigma_color * sigma_color

        for ky in range(-radius, radius + 1):
            for kx in range(-radius, radius + 1):
                neighbor = plane[radius + ky:height - radius + ky, radius + kx:width - radius + kx]
                spatial = math.exp(-(kx * kx + ky * ky) / two_ss)
                weight = spatial * np.exp(-((neighbor - center) ** 2) / two_sc)
                weighted += neighbor * weight
                weights += weight

        out = plane.copy()
        out[radius:height - radius, radius:width - radius] = weighted / weights
        return buffer.with_intensity(out)

    @staticmethod
    def clahe(buffer, clip_limit=2.0, tile_size=8):
        """
        Contrast Limited Adaptive Histogram Equalization
        Each tile gets its own clipped histogram and CDF; the clipped
        excess is spread evenly over all 256 bins
        """
        _require_pixels(buffer)
        if clip_limit <= 0 or tile_size < 1:
            raise PreprocessingFailure("CLAHE needs a positive clip limit and tile size")

        gray = np.rint(buffer.intensity()).astype(np.int64)
        height, width = gray.shape
        tiles_x = math.ceil(width / tile_size)
        tiles_y = math.ceil(height / tile_size)

        tile_row = np.arange(height) // tile_size
        tile_col = np.arange(width) // tile_size
        tile_id = tile_row[:, np.newaxis] * tiles_x + tile_col[np.newaxis, :]
        n_tiles = tiles_x * tiles_y

        histograms = np.bincount(
            (tile_id * 256 + gray).ravel(), minlength=n_tiles * 256
        ).reshape(n_tiles, 256).astype(np.float64)
        pixel_counts = histograms.sum(axis=1)

        clip = clip_limit * (pixel_counts / 256)
        excess = np.clip(histograms - clip[:, np.newaxis], 0, None).sum(axis=1)
        histograms = np.minimum(histograms, clip[:, np.newaxis])
        histograms += (excess / 256)[:, np.newaxis]

        cdf = np.cumsum(histograms, axis=1)
        lut = np.clip(np.rint(cdf / pixel_counts[:, np.newaxis] * 255), 0, 255)
        return buffer.with_intensity(lut[tile_id, gray])

    @staticmethod
    def scale(buffer, factor):
        """Resize by `factor`: cubic when enlarging, area when shrinking; 1.0 is a no-op"""
        _require_pixels(buffer)
        if factor <= 0:
            raise PreprocessingFailure(f"Scale factor must be positive, got {factor}")
        if factor == 1.0:
            return buffer

        new_width = max(1, round(buffer.width * factor))
        new_height = max(1, round(buffer.height * factor))
        interpolation = cv2.INTER_CUBIC if factor > 1 else cv2.INTER_AREA
        resized = cv2.resize(buffer.data, (new_width, new_height), interpolation=interpolation)
        logger.debug(f"Scaled x{factor} to {new_width}x{new_height}")
        return PixelBuffer(resized)

    @staticmethod
    def invert_if_needed(buffer):
        """Invert net-dark images (light text on a dark background)"""
        _require_pixels(buffer)
        if buffer.intensity().mean() >= 128:
            return buffer

        data = buffer.data.copy()
        if buffer.is_gray:
            data[:, :, 0] = 255 - data[:, :, 0]
        else:
            data[:, :, :3] = 255 - data[:, :, :3]
        logger.debug("Inverted dark image")
        return PixelBuffer(data)

    @staticmethod
    def enhance(buffer, contrast=1.2, brightness=1.0, sharpen=True, denoise=True,
                binarize=False, threshold=128, adaptive_threshold=False):
        """
        Brightness/contrast stretch with optional median denoise,
        sharpening and binarization
        """
        _require_pixels(buffer)
        plane = ((buffer.intensity() - 128) * contrast + 128) * brightness
        if binarize:
            plane = np.where(plane > threshold, 255.0, 0.0)
        else:
            plane = np.clip(np.rint(plane), 0, 255)

        if denoise:
            plane = _interior_reduce(plane, np.median)

        if sharpen and plane.shape[0] >= 3 and plane.shape[1] >= 3:
            windows = sliding_window_view(plane, (3, 3))
            sharpened = plane.copy()
            sharpened[1:-1, 1:-1] = np.clip(
                np.einsum('ijkl,kl->ij', windows, SHARPEN_KERNEL), 0, 255
            )
            plane = sharpened

        enhanced = buffer.with_intensity(plane)
        if adaptive_threshold:
            enhanced = ImagePreprocessor.adaptive_threshold(enhanced)
        return enhanced

    OPERATIONS = {
        'adaptive_threshold': adaptive_threshold.__func__,
        'morphology': morphology.__func__,
        'deskew': deskew.__func__,
        'bilateral_filter': bilateral_filter.__func__,
        'clahe': clahe.__func__,
        'scale': scale.__func__,
        'invert_if_needed': invert_if_needed.__func__,
        'enhance': enhance.__func__,
    }


# Standalone function for quick preprocessing
def preprocess_image(image, steps, output_path=None):
    """
    Quick function to run a sequence of transforms on an image

    Args:
        image: Bytes, path, PIL image, numpy array or PixelBuffer
        steps: Iterable of (operation, params) pairs
        output_path: Optional path to save the result

    Returns:
        PixelBuffer
    """
    preprocessor = ImagePreprocessor()
    result = preprocessor.preprocess(PixelBuffer.from_source(image), steps)

    if output_path:
        result.to_image().save(output_path)
        logger.info(f"Saved preprocessed image to {output_path}")

    return result
