from __future__ import annotations
import copy
import time
import logging

import numpy as np

from ..models.raster_image import RasterImage
from ..models.settings import ImageFilterSettings, IMAGE_FILTER_PRESETS
from ..models.errors import BackendUnavailable
from ..models.opencv_backend import OpenCVBackend
from .pixel_service import PixelService

logger = logging.getLogger(__name__)


def _odd(value: int) -> int:
    return value + 1 if value % 2 == 0 else value


class ImageFilterService:
    """
    Produces the "filtered" layer with OpenCV smoothing/denoising filters.
    Every method needs a ready OpenCV backend.
    """

    def __init__(self, backend: OpenCVBackend | None = None):
        self.backend = backend

    # ─── Public API ────────────────────────────────────────────────
    def apply(self, image: RasterImage, settings: ImageFilterSettings) -> RasterImage | None:
        """
        Returns:
            RasterImage | None: filtered copy, or None when the filter is disabled.
        """
        if not settings.enabled:
            return None
        if self.backend is None:
            raise BackendUnavailable("Image filters require the OpenCV backend")
        cv2 = self.backend.require()

        start = time.perf_counter()
        handler = {
            "gaussian": self._gaussian,
            "median": self._median,
            "bilateral": self._bilateral,
            "nlmeans": self._nlmeans,
            "morphology": self._morphology,
        }.get(settings.method)
        if handler is None:
            raise ValueError(f"Unknown image filter method: {settings.method!r}")

        filtered = handler(cv2, image.pixels, settings)
        logger.info(f"Image filter '{settings.method}' finished in {time.perf_counter() - start:.2f}s")
        return RasterImage(pixels=filtered)

    @staticmethod
    def preset(name: str) -> ImageFilterSettings:
        """Independent copy of a named preset."""
        try:
            return copy.deepcopy(IMAGE_FILTER_PRESETS[name])
        except KeyError:
            raise ValueError(f"Unknown image filter preset {name!r}; "
                             f"choose from {sorted(IMAGE_FILTER_PRESETS)}") from None

    # ─── Filters ───────────────────────────────────────────────────
    @staticmethod
    def _gaussian(cv2, pixels: np.ndarray, settings: ImageFilterSettings) -> np.ndarray:
        p = settings.gaussian_params
        ksize = _odd(int(PixelService.clamp(p.kernel_size, 3, 15)))
        sigma_x = PixelService.clamp(p.sigma_x, 0.1, 5.0)
        sigma_y = PixelService.clamp(p.sigma_y, 0.1, 5.0)
        logger.debug(f"Gaussian filter: kernel={ksize}, sigmaX={sigma_x}, sigmaY={sigma_y}")
        return cv2.GaussianBlur(pixels, (ksize, ksize), sigmaX=sigma_x, sigmaY=sigma_y)

    @staticmethod
    def _median(cv2, pixels: np.ndarray, settings: ImageFilterSettings) -> np.ndarray:
        ksize = _odd(max(3, settings.median_params.kernel_size))
        return cv2.medianBlur(pixels, ksize)

    @staticmethod
    def _bilateral(cv2, pixels: np.ndarray, settings: ImageFilterSettings) -> np.ndarray:
        p = settings.bilateral_params
        d = _odd(int(PixelService.clamp(p.d, 3, 25)))
        sigma_color = PixelService.clamp(p.sigma_color, 10, 200)
        sigma_space = PixelService.clamp(p.sigma_space, 10, 200)
        rgb = np.ascontiguousarray(pixels[..., :3])
        return _restore_alpha(cv2.bilateralFilter(rgb, d, sigma_color, sigma_space), pixels)

    @staticmethod
    def _nlmeans(cv2, pixels: np.ndarray, settings: ImageFilterSettings) -> np.ndarray:
        p = settings.nlmeans_params
        rgb = np.ascontiguousarray(pixels[..., :3])
        out = cv2.fastNlMeansDenoisingColored(rgb, None, p.h, p.h,
                                              _odd(p.template_window_size), _odd(p.search_window_size))
        return _restore_alpha(out, pixels)

    @staticmethod
    def _morphology(cv2, pixels: np.ndarray, settings: ImageFilterSettings) -> np.ndarray:
        p = settings.morphology_params
        shapes = {"rect": cv2.MORPH_RECT, "ellipse": cv2.MORPH_ELLIPSE, "cross": cv2.MORPH_CROSS}
        operations = {
            "opening": cv2.MORPH_OPEN,
            "closing": cv2.MORPH_CLOSE,
            "gradient": cv2.MORPH_GRADIENT,
            "tophat": cv2.MORPH_TOPHAT,
            "blackhat": cv2.MORPH_BLACKHAT,
        }
        ksize = max(1, p.kernel_size)
        kernel = cv2.getStructuringElement(shapes[p.kernel_shape], (ksize, ksize))
        rgb = np.ascontiguousarray(pixels[..., :3])
        out = cv2.morphologyEx(rgb, operations[p.operation], kernel,
                               iterations=p.iterations, borderType=cv2.BORDER_CONSTANT)
        return _restore_alpha(out, pixels)


def _restore_alpha(rgb: np.ndarray, source: np.ndarray) -> np.ndarray:
    out = np.empty_like(source)
    out[..., :3] = rgb
    out[..., 3] = source[..., 3]
    return out
