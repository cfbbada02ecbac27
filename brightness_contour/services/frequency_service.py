from __future__ import annotations
import math
import time
import logging

import numpy as np

from ..models.raster_image import RasterImage
from ..models.settings import FrequencySettings
from ..models.results import FrequencyLayers
from ..models.errors import BackendUnavailable
from ..models.opencv_backend import OpenCVBackend
from .pixel_service import PixelService

logger = logging.getLogger(__name__)

MIN_MEDIAN_KERNEL = 3
MAX_MEDIAN_KERNEL = 201


class FrequencyService:
    """
    Splits an image into a low-pass base and high-pass detail layers.

    The combined detail layer encodes diff = original − low as 128 + diff/2,
    so linear-light over the low layer restores the original (±1 from rounding).
    """

    def __init__(self, backend: OpenCVBackend | None = None):
        self.backend = backend

    def separate(self, image: RasterImage, settings: FrequencySettings) -> FrequencyLayers:
        start = time.perf_counter()
        if settings.filter_method == "gaussian":
            low = self.gaussian_low_pass(image, settings.blur_radius)
        elif settings.filter_method == "median":
            low = self.median_low_pass(image, settings.blur_radius)
        else:
            raise ValueError(f"Unknown frequency filter method: {settings.filter_method!r}")

        original = image.pixels.astype(np.float64)
        diff = original[..., :3] - low.pixels[..., :3].astype(np.float64)

        alpha = image.pixels[..., 3].copy()
        alpha[alpha == 0] = 255

        bright = np.minimum(255, 128 + np.maximum(0, diff) * settings.bright_intensity / 2)
        dark = np.maximum(0, 128 - np.maximum(0, -diff) * settings.dark_intensity / 2)
        combined = np.clip(128 + diff / 2, 0, 255)

        layers = FrequencyLayers(
            low_frequency=low,
            high_frequency_bright=self._with_alpha(bright, alpha),
            high_frequency_dark=self._with_alpha(dark, alpha),
            high_frequency_combined=self._with_alpha(combined, alpha),
        )
        logger.info(f"Frequency separation ({settings.filter_method}, r={settings.blur_radius:g}) "
                    f"finished in {time.perf_counter() - start:.2f}s")
        return layers

    def gaussian_low_pass(self, image: RasterImage, radius: float) -> RasterImage:
        if radius <= 0:
            return image.copy()
        return PixelService.separable_blur(image, PixelService.gaussian_kernel_1d(radius))

    def median_low_pass(self, image: RasterImage, radius: float) -> RasterImage:
        if self.backend is None:
            raise BackendUnavailable("Median low-pass requires the OpenCV backend")
        cv2 = self.backend.require()
        ksize = self.median_kernel_size(radius)
        channels = [cv2.medianBlur(np.ascontiguousarray(image.pixels[..., c]), ksize) for c in range(4)]
        return RasterImage(pixels=np.dstack(channels))

    @staticmethod
    def median_kernel_size(radius: float) -> int:
        size = math.ceil(radius * 2) * 2 + 1
        return int(PixelService.clamp(size, MIN_MEDIAN_KERNEL, MAX_MEDIAN_KERNEL))

    @staticmethod
    def recombine(low: RasterImage, combined: RasterImage) -> RasterImage:
        """Linear-light the combined detail back over the low-pass layer."""
        return PixelService.linear_light(low, combined)

    @staticmethod
    def _with_alpha(rgb: np.ndarray, alpha: np.ndarray) -> RasterImage:
        pixels = np.empty(rgb.shape[:2] + (4,), dtype=np.uint8)
        pixels[..., :3] = PixelService.to_uint8(rgb)
        pixels[..., 3] = alpha
        return RasterImage(pixels=pixels)
