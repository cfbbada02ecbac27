from __future__ import annotations
from dataclasses import dataclass, field

from .raster_image import RasterImage
from .brightness_map import BrightnessMap
from .settings import CannyParams


@dataclass
class ThresholdPair:
    low_threshold: int
    high_threshold: int


@dataclass
class OtsuResult:
    threshold: int
    variance: float


@dataclass
class EdgeDetectionResult:
    """
    Binary-ish edge map (white, alpha 255 on edges; transparent elsewhere)
    plus bookkeeping about how it was produced.
    """
    edges: RasterImage
    processing_time: float          # seconds
    parameters: CannyParams
    backend: str = "pixel"          # "pixel" | "opencv"


@dataclass
class EdgeProcessingStats:
    original_edge_count: int = 0
    processed_edge_count: int = 0
    removed_short_edges: int = 0
    connected_edges: int = 0
    thinning_iterations: list[int] = field(default_factory=list)  # pixels removed per iteration


@dataclass
class EdgeProcessingResult:
    result: RasterImage
    stats: EdgeProcessingStats


@dataclass
class FrequencyLayers:
    low_frequency: RasterImage
    high_frequency_bright: RasterImage
    high_frequency_dark: RasterImage
    high_frequency_combined: RasterImage


@dataclass
class AnalysisOutputs:
    """
    Whatever the analysis stages have produced so far; the compositor skips
    enabled layers whose buffer is missing.
    """
    filtered: RasterImage | None = None
    brightness_map: BrightnessMap | None = None
    filtered_brightness_map: BrightnessMap | None = None
    edges: RasterImage | None = None
    frequency: FrequencyLayers | None = None
