from __future__ import annotations
from dataclasses import dataclass
import numpy as np


@dataclass
class BrightnessMap:
    """
    Per-pixel luminance grid (ITU-R BT.601 weights), values in [0, 255].
    Recomputed wholesale from its source image on every settings change.
    """
    values: np.ndarray  # Shape (H, W), dtype float64.

    @property
    def width(self) -> int:
        return int(self.values.shape[1])

    @property
    def height(self) -> int:
        return int(self.values.shape[0])
