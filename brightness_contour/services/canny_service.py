from __future__ import annotations
import math
import os
import time
import logging

import numpy as np
from dotenv import load_dotenv

from ..models.raster_image import RasterImage
from ..models.settings import CannyParams
from ..models.results import EdgeDetectionResult, OtsuResult, ThresholdPair
from ..models.opencv_backend import OpenCVBackend
from .pixel_service import PixelService

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

STRONG = 255
WEAK = 75
SUPPORTED_APERTURES = (3, 5, 7)


class CannyService:
    """
    Canny edge detection: Gaussian smoothing → Sobel gradient →
    non-maximum suppression → hysteresis, plus Otsu auto-thresholds.

    *   Without a backend every call runs the pure numpy path.
    *   With an OpenCVBackend the detector calls cv2.Canny and raises
        BackendUnavailable when the backend is not ready; it never falls
        back silently.
    *   Output is white (255,255,255,255) on edges, transparent elsewhere.
    """

    def __init__(self, backend: OpenCVBackend | None = None, sigma: float = None):
        self.backend = backend
        self.sigma = sigma if sigma is not None else float(os.getenv("CANNY_GAUSSIAN_SIGMA", "1.4"))

    # ─── Public API ────────────────────────────────────────────────
    def detect_edges(self, image: RasterImage, params: CannyParams) -> EdgeDetectionResult:
        start = time.perf_counter()
        if self.backend is not None:
            mask = self._detect_opencv(image, params)
            backend_name = self.backend.name
        else:
            mask = self._detect_pixels(image, params)
            backend_name = "pixel"
        elapsed = time.perf_counter() - start

        edges = self.mask_to_image(mask)
        logger.info(f"Canny ({backend_name} path) finished in {elapsed:.2f}s: "
                    f"{int(mask.sum())} edge pixels "
                    f"(low={params.low_threshold}, high={params.high_threshold})")
        return EdgeDetectionResult(edges=edges, processing_time=elapsed,
                                   parameters=params, backend=backend_name)

    def calculate_optimal_thresholds(self, image: RasterImage) -> ThresholdPair:
        otsu = self.otsu(PixelService.histogram(image))
        pair = ThresholdPair(
            low_threshold=int(PixelService.round_half_up(otsu.threshold * 0.5)),
            high_threshold=int(PixelService.round_half_up(otsu.threshold * 1.5)),
        )
        logger.debug(f"Otsu threshold {otsu.threshold} → low={pair.low_threshold}, high={pair.high_threshold}")
        return pair

    @staticmethod
    def otsu(histogram: np.ndarray) -> OtsuResult:
        """
        Between-class variance w0·w1·(μ0−μ1)² / total² for every split
        "level ≤ t". Splits with an empty class are skipped. When several
        splits share the maximum, the rounded mean of those t is returned.
        """
        hist = np.asarray(histogram, dtype=np.float64)
        total = hist.sum()
        if total == 0:
            return OtsuResult(threshold=0, variance=0.0)

        levels = np.arange(len(hist), dtype=np.float64)
        w0 = np.cumsum(hist)
        w1 = total - w0
        sum0 = np.cumsum(hist * levels)
        sum1 = sum0[-1] - sum0

        valid = (w0 > 0) & (w1 > 0)
        if not valid.any():
            return OtsuResult(threshold=0, variance=0.0)

        variance = np.zeros_like(hist)
        mean0 = sum0[valid] / w0[valid]
        mean1 = sum1[valid] / w1[valid]
        variance[valid] = (w0[valid] / total) * (w1[valid] / total) * (mean0 - mean1) ** 2

        best = variance[valid].max()
        tied = np.nonzero(valid & np.isclose(variance, best, rtol=1e-12, atol=0.0))[0]
        threshold = int(PixelService.round_half_up(tied.mean()))
        return OtsuResult(threshold=threshold, variance=float(best))

    @staticmethod
    def mask_to_image(mask: np.ndarray) -> RasterImage:
        pixels = np.zeros(mask.shape + (4,), dtype=np.uint8)
        pixels[mask] = STRONG
        return RasterImage(pixels=pixels)

    # ─── Pixel path ────────────────────────────────────────────────
    def _detect_pixels(self, image: RasterImage, params: CannyParams) -> np.ndarray:
        if params.aperture_size not in SUPPORTED_APERTURES:
            raise ValueError(f"apertureSize must be one of {SUPPORTED_APERTURES}, got {params.aperture_size}")
        blurred = self.gaussian_smooth(image)
        magnitude, direction = self.sobel(blurred, params.aperture_size)
        suppressed = self.non_maximum_suppression(magnitude, direction)
        classified = self.hysteresis(suppressed, params.low_threshold, params.high_threshold)
        return classified == STRONG

    def gaussian_smooth(self, image: RasterImage) -> np.ndarray:
        """BT.601 luminance blurred with one 2D Gaussian pass (float64, H×W)."""
        kernel = PixelService.gaussian_kernel_2d(self.sigma)
        return PixelService.convolve2d(PixelService.luminance(image), kernel)

    @staticmethod
    def sobel_kernels(aperture: int = 3) -> tuple[np.ndarray, np.ndarray]:
        """
        Sobel Gx/Gy of the given size: binomial smoothing ⊗ binomial-smoothed
        central difference. Size 3 gives [[-1,0,1],[-2,0,2],[-1,0,1]].
        """
        smooth = np.array([1.0])
        for _ in range(aperture - 1):
            smooth = np.convolve(smooth, [1.0, 1.0])
        deriv = np.array([-1.0, 0.0, 1.0])
        for _ in range(aperture - 3):
            deriv = np.convolve(deriv, [1.0, 1.0])
        gx = np.outer(smooth, deriv)
        return gx, gx.T.copy()

    @classmethod
    def sobel(cls, blurred: np.ndarray, aperture: int = 3) -> tuple[np.ndarray, np.ndarray]:
        """
        Returns:
            (magnitude, direction): Euclidean magnitude and atan2(gy, gx) in degrees.
        """
        kx, ky = cls.sobel_kernels(aperture)
        gx = PixelService.convolve2d(blurred, kx)
        gy = PixelService.convolve2d(blurred, ky)
        return np.hypot(gx, gy), np.degrees(np.arctan2(gy, gx))

    @staticmethod
    def non_maximum_suppression(magnitude: np.ndarray, direction: np.ndarray) -> np.ndarray:
        """Keep local maxima along the gradient direction (ties kept); border stays 0."""
        h, w = magnitude.shape
        out = np.zeros_like(magnitude)
        if h < 3 or w < 3:
            return out

        angle = np.mod(direction, 180.0)[1:-1, 1:-1]
        m = magnitude
        centre = m[1:-1, 1:-1]

        bin0 = (angle < 22.5) | (angle >= 157.5)
        bin45 = (angle >= 22.5) & (angle < 67.5)
        bin90 = (angle >= 67.5) & (angle < 112.5)
        bin135 = (angle >= 112.5) & (angle < 157.5)

        # (neighbour a, neighbour b) per bin, image coordinates with y downwards
        n1 = np.select(
            [bin0, bin45, bin90, bin135],
            [m[1:-1, 2:], m[2:, 2:], m[2:, 1:-1], m[2:, :-2]],
        )
        n2 = np.select(
            [bin0, bin45, bin90, bin135],
            [m[1:-1, :-2], m[:-2, :-2], m[:-2, 1:-1], m[:-2, 2:]],
        )
        keep = (centre >= n1) & (centre >= n2)
        out[1:-1, 1:-1] = np.where(keep, centre, 0.0)
        return out

    @staticmethod
    def hysteresis(suppressed: np.ndarray, low: float, high: float) -> np.ndarray:
        """
        Single relaxation pass: weak pixels 8-adjacent to a strong pixel of the
        initial classification are promoted, every other weak pixel is dropped.
        Chains of weak pixels are not followed.
        """
        classified = CannyService.classify(suppressed, low, high)
        strong = classified == STRONG
        weak = classified == WEAK

        h, w = strong.shape
        padded = np.pad(strong, 1, mode="constant", constant_values=False)
        near_strong = np.zeros_like(strong)
        for dy in (-1, 0, 1):
            for dx in (-1, 0, 1):
                if dy == 0 and dx == 0:
                    continue
                near_strong |= padded[1 + dy:1 + dy + h, 1 + dx:1 + dx + w]

        result = np.zeros(suppressed.shape, dtype=np.uint8)
        result[strong | (weak & near_strong)] = STRONG
        return result

    @staticmethod
    def classify(suppressed: np.ndarray, low: float, high: float) -> np.ndarray:
        """Strong (255) / weak (75) / none (0) before the promotion pass."""
        result = np.zeros(suppressed.shape, dtype=np.uint8)
        result[suppressed >= low] = WEAK
        result[suppressed >= high] = STRONG
        return result

    # ─── OpenCV path ───────────────────────────────────────────────
    def _detect_opencv(self, image: RasterImage, params: CannyParams) -> np.ndarray:
        cv2 = self.backend.require()
        gray = cv2.cvtColor(image.pixels, cv2.COLOR_RGBA2GRAY)
        edges = cv2.Canny(gray, params.low_threshold, params.high_threshold,
                          apertureSize=params.aperture_size, L2gradient=params.l2_gradient)
        return edges > 0
