from __future__ import annotations
import math

import numpy as np

from ..models.raster_image import RasterImage

# ITU-R BT.601 luma weights
LUMA_WEIGHTS = (0.299, 0.587, 0.114)


class PixelService:
    """
    Shared pixel primitives used by every analysis stage.
    *   Stateless; every method returns newly allocated arrays/images.
    *   Arrays are (H, W) or (H, W, C); borders are clamp-extended.
    """

    # ─── Scalars & rounding ──────────────────────────────────────────
    @staticmethod
    def clamp(value, lo, hi):
        return max(lo, min(hi, value))

    @staticmethod
    def round_half_up(values):
        """floor(x + 0.5): the rounding used for every float → byte conversion."""
        return np.floor(np.asarray(values, dtype=np.float64) + 0.5)

    @staticmethod
    def to_uint8(values) -> np.ndarray:
        return np.clip(PixelService.round_half_up(values), 0, 255).astype(np.uint8)

    # ─── Luminance ───────────────────────────────────────────────────
    @staticmethod
    def luminance(image: RasterImage) -> np.ndarray:
        """
        Args:
            image (RasterImage): RGBA image.

        Returns:
            np.ndarray: (H, W) float64 brightness, 0.299R + 0.587G + 0.114B.
        """
        rgb = image.pixels[..., :3].astype(np.float64)
        wr, wg, wb = LUMA_WEIGHTS
        return wr * rgb[..., 0] + wg * rgb[..., 1] + wb * rgb[..., 2]

    @staticmethod
    def to_grayscale(image: RasterImage) -> RasterImage:
        """R = G = B = brightness; alpha untouched."""
        gray = PixelService.to_uint8(PixelService.luminance(image))
        out = np.empty_like(image.pixels)
        out[..., 0] = gray
        out[..., 1] = gray
        out[..., 2] = gray
        out[..., 3] = image.pixels[..., 3]
        return RasterImage(pixels=out)

    @staticmethod
    def histogram(image: RasterImage) -> np.ndarray:
        """256-bin histogram of rounded luminance."""
        levels = PixelService.to_uint8(PixelService.luminance(image))
        return np.bincount(levels.ravel(), minlength=256).astype(np.int64)

    # ─── Kernels ─────────────────────────────────────────────────────
    @staticmethod
    def gaussian_kernel_1d(radius: float) -> np.ndarray:
        """Blur-radius kernel: size ceil(2r)*2+1, sigma r/3, normalized."""
        size = math.ceil(radius * 2) * 2 + 1
        sigma = radius / 3
        center = size // 2
        distance = np.arange(size, dtype=np.float64) - center
        kernel = np.exp(-(distance * distance) / (2 * sigma * sigma))
        return kernel / kernel.sum()

    @staticmethod
    def gaussian_kernel_2d(sigma: float) -> np.ndarray:
        """Sigma kernel: size ceil(3*sigma)*2+1, normalized to sum 1."""
        size = math.ceil(sigma * 3) * 2 + 1
        center = size // 2
        d = np.arange(size, dtype=np.float64) - center
        xx, yy = np.meshgrid(d, d)
        kernel = np.exp(-(xx * xx + yy * yy) / (2 * sigma * sigma))
        return kernel / kernel.sum()

    # ─── Convolution ─────────────────────────────────────────────────
    @staticmethod
    def convolve2d(channel: np.ndarray, kernel: np.ndarray) -> np.ndarray:
        """
        Single 2D pass (correlation orientation) over an (H, W) array with
        clamp-extended borders. Returns float64.
        """
        kernel = np.asarray(kernel, dtype=np.float64)
        kh, kw = kernel.shape
        ry, rx = kh // 2, kw // 2
        h, w = channel.shape
        padded = np.pad(channel.astype(np.float64), ((ry, ry), (rx, rx)), mode="edge")
        out = np.zeros((h, w), dtype=np.float64)
        for dy in range(kh):
            for dx in range(kw):
                weight = kernel[dy, dx]
                if weight == 0:
                    continue
                out += weight * padded[dy:dy + h, dx:dx + w]
        return out

    @staticmethod
    def convolve1d(values: np.ndarray, kernel: np.ndarray, axis: int) -> np.ndarray:
        """1D pass along `axis` (0 = vertical, 1 = horizontal), clamped borders."""
        kernel = np.asarray(kernel, dtype=np.float64)
        r = len(kernel) // 2
        pad = [(0, 0)] * values.ndim
        pad[axis] = (r, r)
        padded = np.pad(values.astype(np.float64), pad, mode="edge")
        n = values.shape[axis]
        out = np.zeros(values.shape, dtype=np.float64)
        for i, weight in enumerate(kernel):
            out += weight * np.take(padded, np.arange(i, i + n), axis=axis)
        return out

    @staticmethod
    def separable_blur(image: RasterImage, kernel: np.ndarray) -> RasterImage:
        """Horizontal then vertical pass over all four channels."""
        temp = PixelService.convolve1d(image.pixels, kernel, axis=1)
        result = PixelService.convolve1d(temp, kernel, axis=0)
        return RasterImage(pixels=PixelService.to_uint8(result))

    # ─── Compositing ─────────────────────────────────────────────────
    @staticmethod
    def alpha_blend(base: RasterImage, overlay: RasterImage, opacity: float = 1.0) -> RasterImage:
        """
        Normal blend: out = base*(1-a) + over*a with a = opacity * overlayAlpha/255;
        out alpha = max(base alpha, overlay alpha).
        """
        base.require_same_size(overlay)
        b = base.pixels.astype(np.float64)
        o = overlay.pixels.astype(np.float64)
        a = (o[..., 3:4] / 255.0) * opacity
        out = np.empty_like(b)
        out[..., :3] = b[..., :3] * (1 - a) + o[..., :3] * a
        out[..., 3] = np.maximum(b[..., 3], o[..., 3])
        return RasterImage(pixels=PixelService.to_uint8(out))

    @staticmethod
    def linear_light(base: RasterImage, overlay: RasterImage) -> RasterImage:
        """base + 2*(overlay - 128) per RGB channel, clamped; alpha = max."""
        base.require_same_size(overlay)
        b = base.pixels.astype(np.float64)
        o = overlay.pixels.astype(np.float64)
        out = np.empty_like(b)
        out[..., :3] = b[..., :3] + 2 * (o[..., :3] - 128)
        out[..., 3] = np.maximum(b[..., 3], o[..., 3])
        return RasterImage(pixels=PixelService.to_uint8(out))
