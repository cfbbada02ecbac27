import numpy as np
import pytest

from brightness_contour.models.errors import BackendUnavailable
from brightness_contour.models.opencv_backend import OpenCVBackend
from brightness_contour.models.raster_image import RasterImage
from brightness_contour.models.settings import FrequencySettings, FREQUENCY_PRESETS
from brightness_contour.services.frequency_service import FrequencyService


@pytest.fixture
def service():
    return FrequencyService()


@pytest.mark.parametrize("radius", [1.0, 2.5, 5.0])
def test_linear_light_restores_original(service, noisy, radius):
    layers = service.separate(noisy, FrequencySettings(blur_radius=radius))
    restored = service.recombine(layers.low_frequency, layers.high_frequency_combined)
    diff = np.abs(restored.pixels[..., :3].astype(int) - noisy.pixels[..., :3].astype(int))
    assert diff.max() <= 1


def test_bright_and_dark_sides_of_mid_gray(service, noisy):
    layers = service.separate(noisy, FrequencySettings(blur_radius=3))
    assert (layers.high_frequency_bright.pixels[..., :3] >= 128).all()
    assert (layers.high_frequency_dark.pixels[..., :3] <= 128).all()


def test_zero_radius_is_unblurred(service, noisy):
    layers = service.separate(noisy, FrequencySettings(blur_radius=0))
    assert np.array_equal(layers.low_frequency.pixels, noisy.pixels)
    assert (layers.high_frequency_combined.pixels[..., :3] == 128).all()


def test_intensity_scales_detail(service, make_gray):
    values = np.full((9, 9), 100)
    values[4, 4] = 200
    image = make_gray(values)
    soft = service.separate(image, FrequencySettings(blur_radius=1, bright_intensity=0.5))
    hard = service.separate(image, FrequencySettings(blur_radius=1, bright_intensity=2.0))
    assert hard.high_frequency_bright.pixels[4, 4, 0] > soft.high_frequency_bright.pixels[4, 4, 0]


def test_transparent_pixels_become_opaque(service, make_gray):
    image = make_gray(np.full((5, 5), 80), alpha=0)
    layers = service.separate(image, FrequencySettings(blur_radius=1))
    for layer in (layers.high_frequency_bright, layers.high_frequency_dark, layers.high_frequency_combined):
        assert (layer.pixels[..., 3] == 255).all()


def test_median_needs_backend(service, noisy):
    with pytest.raises(BackendUnavailable):
        service.separate(noisy, FrequencySettings(filter_method="median"))


@pytest.mark.parametrize("radius,size", [(0, 3), (1, 5), (5, 21), (200, 201)])
def test_median_kernel_size(radius, size):
    assert FrequencyService.median_kernel_size(radius) == size


def test_median_low_pass_with_backend(make_gray):
    backend = OpenCVBackend()
    backend.load()
    image = make_gray(np.full((12, 12), 90))
    layers = FrequencyService(backend).separate(image, FrequencySettings(filter_method="median", blur_radius=2))
    assert np.array_equal(layers.low_frequency.pixels, image.pixels)
    assert (layers.high_frequency_combined.pixels[..., :3] == 128).all()


def test_unknown_method_rejected(service, noisy):
    with pytest.raises(ValueError):
        service.separate(noisy, FrequencySettings(filter_method="box"))


def test_presets():
    assert FREQUENCY_PRESETS["Portrait"].blur_radius == 15
    assert FREQUENCY_PRESETS["Landscape"].bright_intensity == 1.3
    assert FREQUENCY_PRESETS["Industrial"].dark_intensity == 2.0


def test_outputs_match_input_size(service):
    image = RasterImage.blank(7, 3, (10, 20, 30, 255))
    layers = service.separate(image, FrequencySettings(blur_radius=4))
    for layer in (layers.low_frequency, layers.high_frequency_bright,
                  layers.high_frequency_dark, layers.high_frequency_combined):
        assert layer.size == (7, 3)
