import numpy as np
import pytest

from brightness_contour.models.raster_image import RasterImage
from brightness_contour.services.pixel_service import PixelService


def test_luminance_formula():
    rng = np.random.default_rng(7)
    rgb = rng.integers(0, 256, size=(10, 10, 3))
    image = RasterImage.from_rgb(rgb)
    expected = 0.299 * rgb[..., 0] + 0.587 * rgb[..., 1] + 0.114 * rgb[..., 2]
    assert np.allclose(PixelService.luminance(image), expected)


def test_grayscale_sets_channels_to_brightness():
    rgb = np.array([[[255, 0, 0], [0, 255, 0], [0, 0, 255], [10, 20, 30]]])
    image = RasterImage(pixels=np.dstack([rgb, np.full((1, 4), 99)]).astype(np.uint8))
    gray = PixelService.to_grayscale(image).pixels
    assert list(gray[0, :, 0]) == [76, 150, 29, 18]
    assert (gray[..., 0] == gray[..., 1]).all()
    assert (gray[..., 1] == gray[..., 2]).all()
    assert (gray[..., 3] == 99).all()


def test_round_half_up():
    assert list(PixelService.round_half_up([0.5, 1.5, 2.5, 2.49])) == [1, 2, 3, 2]


def test_gaussian_kernels_are_normalized():
    k1 = PixelService.gaussian_kernel_1d(5)
    assert len(k1) == 21
    assert k1.sum() == pytest.approx(1.0)
    assert np.allclose(k1, k1[::-1])

    k2 = PixelService.gaussian_kernel_2d(1.4)
    assert k2.shape == (11, 11)
    assert k2.sum() == pytest.approx(1.0)
    assert k2[5, 5] == k2.max()


def test_separable_blur_keeps_uniform_image(make_gray):
    image = make_gray(np.full((6, 9), 120))
    blurred = PixelService.separable_blur(image, PixelService.gaussian_kernel_1d(2))
    assert np.array_equal(blurred.pixels, image.pixels)


def test_alpha_blend():
    base = RasterImage.blank(2, 1, (100, 100, 100, 255))
    over = RasterImage(pixels=np.array([[[200, 200, 200, 255], [200, 200, 200, 0]]], dtype=np.uint8))
    out = PixelService.alpha_blend(base, over).pixels
    assert list(out[0, 0]) == [200, 200, 200, 255]
    assert list(out[0, 1]) == [100, 100, 100, 255]

    half = PixelService.alpha_blend(base, over, opacity=0.5).pixels
    assert list(half[0, 0, :3]) == [150, 150, 150]


def test_alpha_blend_keeps_max_alpha():
    base = RasterImage.blank(1, 1, (0, 0, 0, 0))
    over = RasterImage.blank(1, 1, (255, 255, 255, 51))
    out = PixelService.alpha_blend(base, over).pixels
    assert list(out[0, 0]) == [51, 51, 51, 51]


def test_linear_light():
    base = RasterImage.blank(3, 1, (100, 100, 100, 255))
    over = RasterImage(pixels=np.array([[[128] * 3 + [255], [138] * 3 + [255], [255] * 3 + [255]]],
                                       dtype=np.uint8))
    out = PixelService.linear_light(base, over).pixels
    assert list(out[0, :, 0]) == [100, 120, 255]


def test_convolve2d_clamps_borders():
    values = np.arange(9, dtype=np.float64).reshape(3, 3)
    box = np.full((3, 3), 1 / 9)
    out = PixelService.convolve2d(values, box)
    # top-left sees [[0,0,1],[0,0,1],[3,3,4]]
    assert out[0, 0] == pytest.approx(12 / 9)
    assert out[1, 1] == pytest.approx(4.0)


def test_histogram_counts_every_pixel(make_gray):
    image = make_gray([[0, 0], [10, 255]])
    hist = PixelService.histogram(image)
    assert hist.sum() == 4
    assert hist[0] == 2 and hist[10] == 1 and hist[255] == 1
