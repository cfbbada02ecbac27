import json

import pytest

from brightness_contour.models.settings import (
    CannySettings,
    ContourSettings,
    DisplayOptions,
    FrequencySettings,
    SessionSettings,
)
from brightness_contour.repositories.settings_repository import SettingsRepository, STORAGE_KEYS


@pytest.fixture
def repo(tmp_path):
    return SettingsRepository(tmp_path / "settings.json")


def test_missing_file_gives_defaults(repo):
    assert repo.load() == SessionSettings()


def test_round_trip(repo):
    settings = SessionSettings(
        contour=ContourSettings(levels=12, min_contour_distance=2.5),
        canny=CannySettings(threshold_mode="auto", opacity=40),
        frequency=FrequencySettings(filter_method="median", blur_radius=8),
        display=DisplayOptions(grayscale_mode=True).with_layers("original", "edge"),
    )
    path = repo.save(settings)
    assert path.exists()
    assert set(json.loads(path.read_text())) == set(STORAGE_KEYS)
    assert repo.load() == settings


def test_malformed_json_gives_defaults(repo):
    repo.path.write_text("{not json")
    assert repo.load() == SessionSettings()


def test_non_object_file_gives_defaults(repo):
    repo.path.write_text("[1, 2, 3]")
    assert repo.load() == SessionSettings()


def test_invalid_entry_falls_back_alone(repo):
    repo.path.write_text(json.dumps({
        "brightness-contour-frequency-settings": {"filterMethod": "box"},
        "brightness-contour-contour-settings": {"levels": 9},
        "brightness-contour-canny-settings": "loud",
    }))
    loaded = repo.load()
    assert loaded.frequency == FrequencySettings()
    assert loaded.canny == CannySettings()
    assert loaded.contour.levels == 9


def test_clear_removes_file(repo):
    repo.save(SessionSettings())
    repo.clear()
    assert not repo.path.exists()
    repo.clear()


def test_path_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("SETTINGS_PATH", str(tmp_path / "env.json"))
    assert SettingsRepository().path == tmp_path / "env.json"
