import json

import numpy as np
import pytest

from brightness_contour.cli.render_image import build_parser, main, resolve_settings
from brightness_contour.repositories.image_repository import ImageRepository


@pytest.fixture
def source(tmp_path, step):
    return ImageRepository.save(step, tmp_path / "step.png")


def test_render_single_image(tmp_path, source):
    out_dir = tmp_path / "out"
    code = main([str(source), "-o", str(out_dir), "--settings", str(tmp_path / "none.json"),
                 "--layers", "contour,edge", "--no-opencv", "--metadata"])
    assert code == 0

    exports = sorted(out_dir.glob("*.png"))
    assert len(exports) == 1
    assert exports[0].name.startswith("brightness-contour-contour-edge-")
    rendered = ImageRepository().load(exports[0])
    assert rendered.size == (20, 20)

    sidecar = json.loads(exports[0].with_suffix(".json").read_text())
    assert sidecar["imageSize"] == {"width": 20, "height": 20}


def test_missing_input_reports_failure(tmp_path, source):
    code = main([str(source), str(tmp_path / "missing.png"), "-o", str(tmp_path / "out"),
                 "--settings", str(tmp_path / "none.json"), "--no-opencv"])
    assert code == 1
    assert len(list((tmp_path / "out").glob("*.png"))) == 1


def test_unknown_layer_is_a_usage_error(tmp_path, source):
    code = main([str(source), "--layers", "sepia", "--settings", str(tmp_path / "none.json"),
                 "--no-opencv"])
    assert code == 2


def test_resolve_settings_flags(tmp_path):
    args = build_parser().parse_args(["x.png", "--settings", str(tmp_path / "s.json"),
                                      "--grayscale", "--auto-thresholds", "--layers", "original, edge"])
    settings = resolve_settings(args)
    assert settings.display.grayscale_mode
    assert settings.display.layers.enabled() == ["original", "edge"]
    assert settings.canny.threshold_mode == "auto"


def test_jpeg_export(tmp_path, make_gray):
    source = ImageRepository.save(make_gray(np.full((8, 8), 90)), tmp_path / "flat.png")
    code = main([str(source), "-o", str(tmp_path / "out"), "--settings", str(tmp_path / "none.json"),
                 "--layers", "original", "--format", "jpeg", "--quality", "80", "--no-opencv"])
    assert code == 0
    assert len(list((tmp_path / "out").glob("*.jpeg"))) == 1


def test_filter_preset_selects_filter_settings(tmp_path):
    args = build_parser().parse_args(["x.png", "--settings", str(tmp_path / "s.json"),
                                      "--filter-preset", "Illustration"])
    settings = resolve_settings(args)
    assert settings.image_filter.method == "median"
    assert settings.image_filter.median_params.kernel_size == 3


def test_unknown_filter_preset_is_a_usage_error(tmp_path, source):
    code = main([str(source), "--filter-preset", "Vintage", "--settings", str(tmp_path / "none.json"),
                 "--no-opencv"])
    assert code == 2


def test_filtered_layer_rendered_with_preset(tmp_path, source):
    out_dir = tmp_path / "out"
    code = main([str(source), "-o", str(out_dir), "--settings", str(tmp_path / "none.json"),
                 "--layers", "filtered,filtered_contour", "--filter-preset", "Light Smooth"])
    assert code == 0
    exports = list(out_dir.glob("*.png"))
    assert len(exports) == 1
    assert exports[0].name.startswith("brightness-contour-filtered-filteredContour-")
