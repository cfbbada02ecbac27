import numpy as np
import pytest
from PIL import Image as PILImage

from brightness_contour.models.errors import InvalidImageDimensions
from brightness_contour.models.raster_image import RasterImage
from brightness_contour.repositories.image_repository import ImageRepository


@pytest.fixture
def repo():
    return ImageRepository(max_dimension=100)


def rgba_sample() -> RasterImage:
    pixels = np.zeros((6, 8, 4), dtype=np.uint8)
    pixels[..., 0] = 200
    pixels[..., 1] = np.arange(8) * 30
    pixels[..., 2] = 10
    pixels[..., 3] = 255
    pixels[:3, :, 3] = 0
    return RasterImage(pixels=pixels)


def test_png_round_trip_keeps_alpha(repo, tmp_path):
    image = rgba_sample()
    path = repo.save(image, tmp_path / "sample.png")
    loaded = repo.load(path)
    assert np.array_equal(loaded.pixels, image.pixels)
    assert loaded.path == path


def test_jpeg_flattens_transparency_onto_black(repo, tmp_path):
    path = repo.save(rgba_sample(), tmp_path / "sample.jpeg", fmt="jpeg", quality=95)
    with PILImage.open(path) as pil:
        assert pil.mode == "RGB"
    loaded = repo.load(path)
    assert (loaded.pixels[..., 3] == 255).all()
    assert loaded.pixels[0, :, :3].max() < 60
    assert loaded.pixels[5, 0, 0] > 150


def test_unknown_format_rejected(repo, tmp_path):
    with pytest.raises(ValueError):
        repo.save(rgba_sample(), tmp_path / "sample.gif", fmt="gif")


def test_grayscale_source_becomes_opaque_rgba(repo, tmp_path):
    path = tmp_path / "gray.png"
    PILImage.fromarray(np.full((5, 7), 123, dtype=np.uint8)).save(path)
    loaded = repo.load(path)
    assert loaded.size == (7, 5)
    assert (loaded.pixels == [123, 123, 123, 255]).all()


def test_rgb_source_channel_order(repo, tmp_path):
    path = tmp_path / "rgb.png"
    rgb = np.zeros((2, 2, 3), dtype=np.uint8)
    rgb[..., 0] = 255
    PILImage.fromarray(rgb).save(path)
    assert list(repo.load(path).pixels[0, 0]) == [255, 0, 0, 255]


def test_oversized_image_rejected(tmp_path):
    path = ImageRepository.save(RasterImage.blank(12, 4, (0, 0, 0, 255)), tmp_path / "wide.png")
    with pytest.raises(InvalidImageDimensions):
        ImageRepository(max_dimension=10).load(path)


def test_missing_file(repo, tmp_path):
    with pytest.raises(FileNotFoundError):
        repo.load(tmp_path / "nope.png")


def test_iter_dir_skips_unreadable_and_foreign_files(repo, tmp_path):
    repo.save(rgba_sample(), tmp_path / "a.png")
    repo.save(rgba_sample(), tmp_path / "b.png")
    (tmp_path / "notes.txt").write_text("hello")
    (tmp_path / "broken.png").write_bytes(b"not an image")

    names = [image.path.name for image in repo.iter_dir(tmp_path)]
    assert names == ["a.png", "b.png"]


def test_iter_dir_requires_directory(repo, tmp_path):
    with pytest.raises(NotADirectoryError):
        list(repo.iter_dir(tmp_path / "missing"))
