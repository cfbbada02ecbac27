import numpy as np
import pytest

from brightness_contour.models.raster_image import RasterImage


def gray_image(values, alpha=255) -> RasterImage:
    """Opaque RGBA image with R = G = B = values."""
    v = np.asarray(values, dtype=np.uint8)
    return RasterImage.from_rgb(np.dstack([v, v, v]), alpha=alpha)


def edge_image(mask) -> RasterImage:
    """Edge map in detector format: white opaque on edges, transparent elsewhere."""
    mask = np.asarray(mask, dtype=bool)
    pixels = np.zeros(mask.shape + (4,), dtype=np.uint8)
    pixels[mask] = 255
    return RasterImage(pixels=pixels)


@pytest.fixture
def make_gray():
    return gray_image


@pytest.fixture
def make_edges():
    return edge_image


@pytest.fixture
def checkerboard() -> RasterImage:
    """4×4, alternating black/white 2×2 blocks."""
    return gray_image([
        [0, 0, 255, 255],
        [0, 0, 255, 255],
        [255, 255, 0, 0],
        [255, 255, 0, 0],
    ])


@pytest.fixture
def ramp() -> RasterImage:
    """Horizontal 0→255 gradient, 64 wide, 8 tall."""
    row = np.round(np.linspace(0, 255, 64))
    return gray_image(np.tile(row, (8, 1)))


@pytest.fixture
def step() -> RasterImage:
    """20×20, black left half (cols 0-9), white right half."""
    values = np.zeros((20, 20))
    values[:, 10:] = 255
    return gray_image(values)


@pytest.fixture
def bimodal() -> RasterImage:
    """Half the pixels at gray 30, half at gray 220."""
    values = np.full((20, 20), 30)
    values[:, 10:] = 220
    return gray_image(values)


@pytest.fixture
def disk_mask() -> np.ndarray:
    """Filled disk of radius 8 centered in a 25×25 grid."""
    yy, xx = np.mgrid[0:25, 0:25]
    return (yy - 12) ** 2 + (xx - 12) ** 2 <= 64


@pytest.fixture
def noisy() -> RasterImage:
    """Deterministic textured RGB image."""
    rng = np.random.default_rng(1234)
    rgb = rng.integers(0, 256, size=(24, 32, 3))
    rgb[:, :16] //= 3
    return RasterImage.from_rgb(rgb)
