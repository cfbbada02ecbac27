from __future__ import annotations
from dataclasses import dataclass, field, replace
from typing import Any
import logging

logger = logging.getLogger(__name__)


def _clamp(name: str, value, lo, hi):
    """Clamp a settings value into its documented range, warning when it moves."""
    clamped = max(lo, min(hi, value))
    if clamped != value:
        logger.warning(f"{name}={value} outside [{lo}, {hi}], using {clamped}")
    return clamped


def _choice(name: str, value: str, allowed: tuple[str, ...]) -> str:
    if value not in allowed:
        raise ValueError(f"{name} must be one of {allowed}, got {value!r}")
    return value


# ─── Contours ────────────────────────────────────────────────────────
MIN_CONTOUR_LEVELS = 1
MAX_CONTOUR_LEVELS = 64


@dataclass
class ContourSettings:
    """
    How the brightness map is quantized and how contour pixels are colored.
    """
    levels: int = 4                      # [1, 64]
    transparency: int = 80               # [0, 100] %
    min_contour_distance: float = 0.0    # >= 0 px, grid thinning when > 0
    brightness_threshold: int = 65       # [0, 255]
    contour_contrast: int = 0            # [0, 100] %

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ContourSettings:
        data = data or {}
        d = cls()
        return cls(
            levels=_clamp("levels", int(data.get("levels", d.levels)),
                          MIN_CONTOUR_LEVELS, MAX_CONTOUR_LEVELS),
            transparency=_clamp("transparency", int(data.get("transparency", d.transparency)), 0, 100),
            min_contour_distance=max(0.0, float(data.get("minContourDistance", d.min_contour_distance))),
            brightness_threshold=_clamp("brightnessThreshold",
                                        int(data.get("brightnessThreshold", d.brightness_threshold)), 0, 255),
            contour_contrast=_clamp("contourContrast",
                                    int(data.get("contourContrast", d.contour_contrast)), 0, 100),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "levels": self.levels,
            "transparency": self.transparency,
            "minContourDistance": self.min_contour_distance,
            "brightnessThreshold": self.brightness_threshold,
            "contourContrast": self.contour_contrast,
        }


# ─── Canny ───────────────────────────────────────────────────────────
CANNY_THRESHOLD_RANGES = {
    "low_min": 50,
    "low_max": 150,
    "high_min": 100,
    "high_max": 300,
}
THRESHOLD_MODES = ("manual", "auto")


@dataclass
class CannyParams:
    low_threshold: int = 50      # [50, 150]
    high_threshold: int = 150    # [100, 300]
    aperture_size: int = 3       # Sobel kernel size
    l2_gradient: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CannyParams:
        data = data or {}
        d = cls()
        r = CANNY_THRESHOLD_RANGES
        aperture = int(data.get("apertureSize", d.aperture_size))
        if aperture not in (3, 5, 7):
            logger.warning(f"apertureSize={aperture} not in (3, 5, 7), using 3")
            aperture = 3
        return cls(
            low_threshold=_clamp("lowThreshold", int(data.get("lowThreshold", d.low_threshold)),
                                 r["low_min"], r["low_max"]),
            high_threshold=_clamp("highThreshold", int(data.get("highThreshold", d.high_threshold)),
                                  r["high_min"], r["high_max"]),
            aperture_size=aperture,
            l2_gradient=bool(data.get("L2gradient", d.l2_gradient)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "lowThreshold": self.low_threshold,
            "highThreshold": self.high_threshold,
            "apertureSize": self.aperture_size,
            "L2gradient": self.l2_gradient,
        }


@dataclass
class CannySettings:
    enabled: bool = True
    threshold_mode: str = "manual"   # "manual" | "auto" (Otsu)
    params: CannyParams = field(default_factory=CannyParams)
    opacity: int = 80                # [0, 100] %

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CannySettings:
        data = data or {}
        d = cls()
        return cls(
            enabled=bool(data.get("enabled", d.enabled)),
            threshold_mode=_choice("thresholdMode", data.get("thresholdMode", d.threshold_mode),
                                   THRESHOLD_MODES),
            params=CannyParams.from_dict(data.get("params")),
            opacity=_clamp("opacity", int(data.get("opacity", d.opacity)), 0, 100),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "thresholdMode": self.threshold_mode,
            "params": self.params.to_dict(),
            "opacity": self.opacity,
        }


# ─── Edge post-processing ────────────────────────────────────────────
@dataclass
class EdgeProcessingSettings:
    enable_thinning: bool = True
    enable_short_edge_removal: bool = False
    short_edge_threshold: int = 10       # px
    enable_edge_connection: bool = False
    connection_distance: int = 3         # px

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> EdgeProcessingSettings:
        data = data or {}
        d = cls()
        return cls(
            enable_thinning=bool(data.get("enableThinning", d.enable_thinning)),
            enable_short_edge_removal=bool(data.get("enableShortEdgeRemoval", d.enable_short_edge_removal)),
            short_edge_threshold=max(0, int(data.get("shortEdgeThreshold", d.short_edge_threshold))),
            enable_edge_connection=bool(data.get("enableEdgeConnection", d.enable_edge_connection)),
            connection_distance=max(0, int(data.get("connectionDistance", d.connection_distance))),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "enableThinning": self.enable_thinning,
            "enableShortEdgeRemoval": self.enable_short_edge_removal,
            "shortEdgeThreshold": self.short_edge_threshold,
            "enableEdgeConnection": self.enable_edge_connection,
            "connectionDistance": self.connection_distance,
        }


# ─── Frequency separation ────────────────────────────────────────────
FREQUENCY_FILTER_METHODS = ("gaussian", "median")


@dataclass
class FrequencySettings:
    filter_method: str = "gaussian"
    blur_radius: float = 5.0
    bright_intensity: float = 1.0    # [0, 3]
    dark_intensity: float = 1.0      # [0, 3]

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> FrequencySettings:
        data = data or {}
        d = cls()
        return cls(
            filter_method=_choice("filterMethod", data.get("filterMethod", d.filter_method),
                                  FREQUENCY_FILTER_METHODS),
            blur_radius=max(0.0, float(data.get("blurRadius", d.blur_radius))),
            bright_intensity=_clamp("brightIntensity",
                                    float(data.get("brightIntensity", d.bright_intensity)), 0.0, 3.0),
            dark_intensity=_clamp("darkIntensity",
                                  float(data.get("darkIntensity", d.dark_intensity)), 0.0, 3.0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "filterMethod": self.filter_method,
            "blurRadius": self.blur_radius,
            "brightIntensity": self.bright_intensity,
            "darkIntensity": self.dark_intensity,
        }


FREQUENCY_PRESETS: dict[str, FrequencySettings] = {
    "Portrait": FrequencySettings(blur_radius=15, bright_intensity=0.8, dark_intensity=1.2),
    "Landscape": FrequencySettings(blur_radius=8, bright_intensity=1.3, dark_intensity=1.1),
    "Industrial": FrequencySettings(blur_radius=5, bright_intensity=2.0, dark_intensity=2.0),
}


# ─── Image filter ────────────────────────────────────────────────────
IMAGE_FILTER_METHODS = ("gaussian", "median", "bilateral", "nlmeans", "morphology")
MORPHOLOGY_OPERATIONS = ("opening", "closing", "gradient", "tophat", "blackhat")
KERNEL_SHAPES = ("rect", "ellipse", "cross")


@dataclass
class MedianFilterParams:
    kernel_size: int = 5


@dataclass
class GaussianFilterParams:
    kernel_size: int = 5
    sigma_x: float = 1.5
    sigma_y: float = 1.5


@dataclass
class BilateralFilterParams:
    d: int = 9
    sigma_color: float = 75
    sigma_space: float = 75


@dataclass
class NLMeansParams:
    h: float = 10
    template_window_size: int = 7
    search_window_size: int = 21


@dataclass
class MorphologyFilterParams:
    operation: str = "opening"
    kernel_shape: str = "ellipse"
    kernel_size: int = 5
    iterations: int = 1


@dataclass
class ImageFilterSettings:
    """
    Produces the "filtered" layer: a smoothed/denoised copy of the source.
    """
    method: str = "gaussian"
    enabled: bool = True
    opacity: float = 1.0    # [0, 1]
    median_params: MedianFilterParams = field(default_factory=MedianFilterParams)
    gaussian_params: GaussianFilterParams = field(default_factory=GaussianFilterParams)
    bilateral_params: BilateralFilterParams = field(default_factory=BilateralFilterParams)
    nlmeans_params: NLMeansParams = field(default_factory=NLMeansParams)
    morphology_params: MorphologyFilterParams = field(default_factory=MorphologyFilterParams)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ImageFilterSettings:
        data = data or {}
        d = cls()
        median = data.get("medianParams") or {}
        gauss = data.get("gaussianParams") or {}
        bilateral = data.get("bilateralParams") or {}
        nlmeans = data.get("nlmeansParams") or {}
        morph = data.get("morphologyParams") or {}
        return cls(
            method=_choice("method", data.get("method", d.method), IMAGE_FILTER_METHODS),
            enabled=bool(data.get("enabled", d.enabled)),
            opacity=_clamp("opacity", float(data.get("opacity", d.opacity)), 0.0, 1.0),
            median_params=MedianFilterParams(
                kernel_size=int(median.get("kernelSize", d.median_params.kernel_size)),
            ),
            gaussian_params=GaussianFilterParams(
                kernel_size=int(gauss.get("kernelSize", d.gaussian_params.kernel_size)),
                sigma_x=float(gauss.get("sigmaX", d.gaussian_params.sigma_x)),
                sigma_y=float(gauss.get("sigmaY", d.gaussian_params.sigma_y)),
            ),
            bilateral_params=BilateralFilterParams(
                d=int(bilateral.get("d", d.bilateral_params.d)),
                sigma_color=float(bilateral.get("sigmaColor", d.bilateral_params.sigma_color)),
                sigma_space=float(bilateral.get("sigmaSpace", d.bilateral_params.sigma_space)),
            ),
            nlmeans_params=NLMeansParams(
                h=float(nlmeans.get("h", d.nlmeans_params.h)),
                template_window_size=int(nlmeans.get("templateWindowSize",
                                                     d.nlmeans_params.template_window_size)),
                search_window_size=int(nlmeans.get("searchWindowSize",
                                                   d.nlmeans_params.search_window_size)),
            ),
            morphology_params=MorphologyFilterParams(
                operation=_choice("operation", morph.get("operation", d.morphology_params.operation),
                                  MORPHOLOGY_OPERATIONS),
                kernel_shape=_choice("kernelShape",
                                     morph.get("kernelShape", d.morphology_params.kernel_shape),
                                     KERNEL_SHAPES),
                kernel_size=int(morph.get("kernelSize", d.morphology_params.kernel_size)),
                iterations=_clamp("iterations",
                                  int(morph.get("iterations", d.morphology_params.iterations)), 1, 5),
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "method": self.method,
            "enabled": self.enabled,
            "opacity": self.opacity,
            "medianParams": {"kernelSize": self.median_params.kernel_size},
            "gaussianParams": {
                "kernelSize": self.gaussian_params.kernel_size,
                "sigmaX": self.gaussian_params.sigma_x,
                "sigmaY": self.gaussian_params.sigma_y,
            },
            "bilateralParams": {
                "d": self.bilateral_params.d,
                "sigmaColor": self.bilateral_params.sigma_color,
                "sigmaSpace": self.bilateral_params.sigma_space,
            },
            "nlmeansParams": {
                "h": self.nlmeans_params.h,
                "templateWindowSize": self.nlmeans_params.template_window_size,
                "searchWindowSize": self.nlmeans_params.search_window_size,
            },
            "morphologyParams": {
                "operation": self.morphology_params.operation,
                "kernelShape": self.morphology_params.kernel_shape,
                "kernelSize": self.morphology_params.kernel_size,
                "iterations": self.morphology_params.iterations,
            },
        }


IMAGE_FILTER_PRESETS: dict[str, ImageFilterSettings] = {
    "Light Smooth": ImageFilterSettings(
        method="gaussian", gaussian_params=GaussianFilterParams(5, 1.0, 1.0)),
    "Strong Smooth": ImageFilterSettings(
        method="gaussian", gaussian_params=GaussianFilterParams(7, 2.0, 2.0)),
    "Illustration": ImageFilterSettings(
        method="median", median_params=MedianFilterParams(3)),
    "Photo (Light)": ImageFilterSettings(
        method="bilateral", bilateral_params=BilateralFilterParams(5, 50, 50)),
    "Photo (Strong)": ImageFilterSettings(
        method="bilateral", bilateral_params=BilateralFilterParams(9, 100, 100)),
    "Medical": ImageFilterSettings(
        method="morphology", morphology_params=MorphologyFilterParams("opening", "ellipse", 3, 2)),
}


# ─── Display ─────────────────────────────────────────────────────────
# Fixed stacking order, bottom to top.
LAYER_ORDER = (
    "original",
    "filtered",
    "low_frequency",
    "contour",
    "filtered_contour",
    "edge",
    "high_frequency_bright",
    "high_frequency_dark",
)
BASE_LAYERS = ("original", "filtered", "low_frequency")
LINE_ART_LAYERS = ("contour", "filtered_contour")

_LAYER_KEYS = {
    "original": "original",
    "filtered": "filtered",
    "contour": "contour",
    "filtered_contour": "filteredContour",
    "edge": "edge",
    "low_frequency": "lowFrequency",
    "high_frequency_bright": "highFrequencyBright",
    "high_frequency_dark": "highFrequencyDark",
}


@dataclass
class DisplayLayers:
    original: bool = True
    filtered: bool = False
    contour: bool = True
    filtered_contour: bool = False
    edge: bool = False
    low_frequency: bool = False
    high_frequency_bright: bool = False
    high_frequency_dark: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> DisplayLayers:
        data = data or {}
        d = cls()
        return cls(**{
            name: bool(data.get(key, getattr(d, name))) for name, key in _LAYER_KEYS.items()
        })

    @classmethod
    def only(cls, *names: str) -> DisplayLayers:
        """All layers off except `names`."""
        unknown = set(names) - set(LAYER_ORDER)
        if unknown:
            raise ValueError(f"Unknown layers: {sorted(unknown)}")
        return cls(**{name: name in names for name in LAYER_ORDER})

    def to_dict(self) -> dict[str, bool]:
        return {key: getattr(self, name) for name, key in _LAYER_KEYS.items()}

    def enabled(self) -> list[str]:
        """Enabled layer names in stacking order."""
        return [name for name in LAYER_ORDER if getattr(self, name)]


@dataclass
class DisplayOptions:
    layers: DisplayLayers = field(default_factory=DisplayLayers)
    grayscale_mode: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> DisplayOptions:
        data = data or {}
        return cls(
            layers=DisplayLayers.from_dict(data.get("layers")),
            grayscale_mode=bool(data.get("grayscaleMode", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"layers": self.layers.to_dict(), "grayscaleMode": self.grayscale_mode}

    def with_layers(self, *names: str) -> DisplayOptions:
        return replace(self, layers=DisplayLayers.only(*names))

    @property
    def has_base_layer(self) -> bool:
        return any(getattr(self.layers, name) for name in BASE_LAYERS)


@dataclass
class RenderSettings:
    contour: ContourSettings = field(default_factory=ContourSettings)
    edge_opacity: int = 80       # [0, 100] %
    filter_opacity: float = 1.0  # [0, 1]


@dataclass
class SessionSettings:
    """Every settings object one analysis session needs."""
    contour: ContourSettings = field(default_factory=ContourSettings)
    canny: CannySettings = field(default_factory=CannySettings)
    edge_processing: EdgeProcessingSettings = field(default_factory=EdgeProcessingSettings)
    frequency: FrequencySettings = field(default_factory=FrequencySettings)
    image_filter: ImageFilterSettings = field(default_factory=ImageFilterSettings)
    display: DisplayOptions = field(default_factory=DisplayOptions)

    def render_settings(self) -> RenderSettings:
        return RenderSettings(
            contour=self.contour,
            edge_opacity=self.canny.opacity,
            filter_opacity=self.image_filter.opacity,
        )
