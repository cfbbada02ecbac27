from __future__ import annotations
from pathlib import Path
from typing import Any, Union
import json
import logging
import os

from dotenv import load_dotenv

from ..models.settings import (
    ContourSettings,
    CannySettings,
    EdgeProcessingSettings,
    FrequencySettings,
    ImageFilterSettings,
    DisplayOptions,
    SessionSettings,
)

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

# Stable storage keys → (SessionSettings field, settings class)
STORAGE_KEYS = {
    "brightness-contour-contour-settings": ("contour", ContourSettings),
    "brightness-contour-canny-settings": ("canny", CannySettings),
    "brightness-contour-edge-processing": ("edge_processing", EdgeProcessingSettings),
    "brightness-contour-frequency-settings": ("frequency", FrequencySettings),
    "brightness-contour-image-filter": ("image_filter", ImageFilterSettings),
    "brightness-contour-display-options": ("display", DisplayOptions),
}


class SettingsRepository:
    """
    Flat JSON settings store. Anything missing or unreadable falls back to
    the documented defaults; nothing here raises for bad content.
    """
    def __init__(self, path: Union[str, Path] = None):
        self.path = Path(path or os.getenv("SETTINGS_PATH", "brightness_contour_settings.json"))

    def load(self) -> SessionSettings:
        raw = self._read()
        values = {}
        for key, (attr, cls) in STORAGE_KEYS.items():
            data = raw.get(key)
            if data is not None and not isinstance(data, dict):
                logger.warning(f"Ignoring {key}: expected an object, got {type(data).__name__}")
                data = None
            try:
                values[attr] = cls.from_dict(data)
            except (ValueError, TypeError, AttributeError) as err:
                logger.warning(f"Invalid {key} ({err}); using defaults")
                values[attr] = cls()
        return SessionSettings(**values)

    def save(self, settings: SessionSettings) -> Path:
        data = {key: getattr(settings, attr).to_dict() for key, (attr, _) in STORAGE_KEYS.items()}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        logger.debug(f"Settings written to {self.path}")
        return self.path

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
            logger.info(f"Removed settings file {self.path}")

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as err:
            logger.warning(f"Malformed settings file {self.path}: {err}; using defaults")
            return {}
        if not isinstance(raw, dict):
            logger.warning(f"Settings file {self.path} does not hold an object; using defaults")
            return {}
        return raw
