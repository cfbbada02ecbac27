from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
import numpy as np

from .errors import InvalidImageDimensions


@dataclass
class RasterImage:
    """
    Simple data object: RGBA pixels (+ optional source path for bookkeeping).
    Every pipeline stage consumes and produces these; none of them mutates
    the pixels of an image it was handed.
    """
    pixels: np.ndarray  # Shape (H, W, 4), dtype uint8, RGBA order.
    path: Path | None = None  # Source of the image.

    def __post_init__(self):
        pixels = np.asarray(self.pixels)
        if pixels.ndim != 3 or pixels.shape[2] != 4:
            raise InvalidImageDimensions(
                f"RGBA pixels must have shape (H, W, 4), got {pixels.shape}"
            )
        height, width = pixels.shape[:2]
        if width <= 0 or height <= 0:
            raise InvalidImageDimensions(f"Invalid image size {width}x{height}")
        if pixels.dtype != np.uint8:
            pixels = np.clip(pixels, 0, 255).astype(np.uint8)
        self.pixels = np.ascontiguousarray(pixels)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    # ─── Constructors ────────────────────────────────────────────────
    @classmethod
    def from_buffer(cls, width: int, height: int, buffer, path: Path | None = None) -> RasterImage:
        """
        Build an image from a flat row-major RGBA buffer (bytes, bytearray,
        list or 1-D array). The buffer length must be exactly width*height*4.
        """
        if width <= 0 or height <= 0:
            raise InvalidImageDimensions(f"Invalid image size {width}x{height}")
        flat = np.frombuffer(bytes(buffer), dtype=np.uint8) if isinstance(
            buffer, (bytes, bytearray, memoryview)
        ) else np.asarray(buffer)
        expected = width * height * 4
        if flat.size != expected:
            raise InvalidImageDimensions(
                f"Buffer holds {flat.size} values, expected {expected} for {width}x{height} RGBA"
            )
        return cls(pixels=flat.reshape(height, width, 4).copy(), path=path)

    @classmethod
    def from_rgb(cls, rgb: np.ndarray, alpha: int = 255, path: Path | None = None) -> RasterImage:
        """Wrap an (H, W, 3) RGB array, adding a constant alpha channel."""
        rgb = np.asarray(rgb)
        if rgb.ndim != 3 or rgb.shape[2] != 3:
            raise InvalidImageDimensions(f"RGB pixels must have shape (H, W, 3), got {rgb.shape}")
        a = np.full(rgb.shape[:2] + (1,), alpha, dtype=np.uint8)
        return cls(pixels=np.concatenate([rgb.astype(np.uint8), a], axis=2), path=path)

    @classmethod
    def blank(cls, width: int, height: int, rgba=(0, 0, 0, 0)) -> RasterImage:
        if width <= 0 or height <= 0:
            raise InvalidImageDimensions(f"Invalid image size {width}x{height}")
        pixels = np.empty((height, width, 4), dtype=np.uint8)
        pixels[...] = np.asarray(rgba, dtype=np.uint8)
        return cls(pixels=pixels)

    # ─── Helpers ─────────────────────────────────────────────────────
    def to_bytes(self) -> bytes:
        """Flat row-major RGBA buffer, length width*height*4."""
        return self.pixels.tobytes()

    def copy(self) -> RasterImage:
        return RasterImage(pixels=self.pixels.copy(), path=self.path)

    def same_size(self, other: RasterImage) -> bool:
        return self.pixels.shape == other.pixels.shape

    def require_same_size(self, other: RasterImage) -> None:
        if not self.same_size(other):
            raise InvalidImageDimensions(
                f"Image size mismatch: {self.width}x{self.height} vs {other.width}x{other.height}"
            )
