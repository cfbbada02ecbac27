from __future__ import annotations
import math
import os
import logging

import numpy as np
from dotenv import load_dotenv

from ..models.raster_image import RasterImage
from ..models.brightness_map import BrightnessMap
from ..models.settings import ContourSettings
from .pixel_service import PixelService

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


class BrightnessService:
    """
    Brightness quantization and contour-line extraction.
    *   analyze() builds the luminance map, detect_contours() draws the
        boundaries between quantization levels as an RGBA overlay.
    *   Contour color tuning constants come from the environment.
    """

    def __init__(self,
                 dark_offset: float = None,
                 light_offset: float = None,
                 transparent_gray: int = None):
        """
        Args:
            dark_offset: Offset applied when the boundary brightness is at or
                above the threshold (defaults to CONTOUR_DARK_OFFSET, -25).
            light_offset: Offset applied below the threshold (defaults to
                CONTOUR_LIGHT_OFFSET, 75).
            transparent_gray: Fixed line gray for transparent backgrounds
                (defaults to CONTOUR_TRANSPARENT_GRAY, 200).
        """
        self.dark_offset = dark_offset if dark_offset is not None else \
            float(os.getenv("CONTOUR_DARK_OFFSET", "-25"))
        self.light_offset = light_offset if light_offset is not None else \
            float(os.getenv("CONTOUR_LIGHT_OFFSET", "75"))
        self.transparent_gray = transparent_gray if transparent_gray is not None else \
            int(os.getenv("CONTOUR_TRANSPARENT_GRAY", "200"))

    # ─── Public API ────────────────────────────────────────────────
    def analyze(self, image: RasterImage, settings: ContourSettings | None = None) -> BrightnessMap:
        return BrightnessMap(values=PixelService.luminance(image))

    def detect_contours(self, brightness: BrightnessMap, settings: ContourSettings) -> RasterImage:
        """
        Contour overlay with adaptive gray: lines are darkened over bright
        regions and lightened over dark ones, then pushed further toward
        black/white by `contour_contrast` percent.
        """
        mask, adjacent = self._boundaries(brightness, settings.levels)

        offset = np.where(adjacent >= settings.brightness_threshold, self.dark_offset, self.light_offset)
        gray = adjacent + offset
        contrast = settings.contour_contrast / 100
        target = np.where(offset < 0, 0.0, 255.0)
        gray = gray * (1 - contrast) + target * contrast

        return self._paint(mask, PixelService.to_uint8(gray), settings)

    def detect_contours_transparent(self, brightness: BrightnessMap, settings: ContourSettings) -> RasterImage:
        """Same detection, fixed light gray so lines stay visible on an empty background."""
        mask, _ = self._boundaries(brightness, settings.levels)
        gray = np.full(mask.shape, self.transparent_gray, dtype=np.uint8)
        return self._paint(mask, gray, settings)

    @staticmethod
    def quantize(brightness: BrightnessMap, levels: int) -> np.ndarray:
        step = 255 / levels
        return np.floor(brightness.values / step).astype(np.int32)

    @staticmethod
    def count_contour_pixels(contours: RasterImage) -> int:
        return int(np.count_nonzero(contours.pixels[..., 3]))

    # ─── Internal helpers ──────────────────────────────────────────
    def _boundaries(self, brightness: BrightnessMap, levels: int):
        """
        Returns:
            (mask, adjacent): boolean contour mask and, where set, the mean of
            the pixel's brightness and its first differing 4-neighbor
            (checked up, down, left, right).
        """
        values = brightness.values
        h, w = values.shape
        mask = np.zeros((h, w), dtype=bool)
        adjacent = np.zeros((h, w), dtype=np.float64)
        if h < 3 or w < 3:
            return mask, adjacent

        level = self.quantize(brightness, levels)
        centre = level[1:-1, 1:-1]
        centre_b = values[1:-1, 1:-1]
        neighbours = (
            (level[:-2, 1:-1], values[:-2, 1:-1]),    # up
            (level[2:, 1:-1], values[2:, 1:-1]),      # down
            (level[1:-1, :-2], values[1:-1, :-2]),    # left
            (level[1:-1, 2:], values[1:-1, 2:]),      # right
        )

        inner_mask = np.zeros(centre.shape, dtype=bool)
        inner_adj = np.zeros(centre.shape, dtype=np.float64)
        for n_level, n_value in neighbours:
            first = (n_level != centre) & ~inner_mask
            inner_adj[first] = (centre_b[first] + n_value[first]) / 2
            inner_mask |= first

        mask[1:-1, 1:-1] = inner_mask
        adjacent[1:-1, 1:-1] = inner_adj
        return mask, adjacent

    def _paint(self, mask: np.ndarray, gray: np.ndarray, settings: ContourSettings) -> RasterImage:
        if settings.min_contour_distance > 0:
            before = int(mask.sum())
            mask = self._thin_by_grid(mask, settings.min_contour_distance)
            logger.debug(f"Contour grid thinning kept {int(mask.sum())}/{before} pixels")

        h, w = mask.shape
        pixels = np.zeros((h, w, 4), dtype=np.uint8)
        alpha = math.floor(255 * settings.transparency / 100)
        pixels[mask, 0] = gray[mask]
        pixels[mask, 1] = gray[mask]
        pixels[mask, 2] = gray[mask]
        pixels[mask, 3] = alpha
        return RasterImage(pixels=pixels)

    @staticmethod
    def _thin_by_grid(mask: np.ndarray, distance: float) -> np.ndarray:
        """
        Approximate density reduction: keeps the first contour pixel (row-major
        order) in each occupied grid cell of size max(2, ceil(distance * 1.2)).
        """
        cell = max(2, math.ceil(distance * 1.2))
        ys, xs = np.nonzero(mask)  # row-major
        if len(ys) == 0:
            return mask
        cells_per_row = mask.shape[1] // cell + 1
        keys = (ys // cell) * cells_per_row + (xs // cell)
        _, first = np.unique(keys, return_index=True)
        thinned = np.zeros_like(mask)
        thinned[ys[first], xs[first]] = True
        return thinned
