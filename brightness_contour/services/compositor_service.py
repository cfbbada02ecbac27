from __future__ import annotations
import logging

import numpy as np

from ..models.raster_image import RasterImage
from ..models.settings import DisplayOptions, RenderSettings, LINE_ART_LAYERS
from ..models.results import AnalysisOutputs
from .brightness_service import BrightnessService
from .pixel_service import PixelService

logger = logging.getLogger(__name__)

HIGH_FREQUENCY_LAYERS = ("high_frequency_bright", "high_frequency_dark")
EDGE_WHITE = 255
EDGE_DARK = 40


class CompositorService:
    """
    Merges the enabled layers of DisplayOptions into one RGBA image, bottom to
    top: background → original/filtered → low frequency → contour → filtered
    contour → edges → high frequency. Inputs are never mutated.
    """

    def __init__(self, brightness_service: BrightnessService | None = None):
        self.brightness = brightness_service or BrightnessService()

    # ─── Public API ────────────────────────────────────────────────
    def render(self,
               image: RasterImage,
               outputs: AnalysisOutputs,
               display: DisplayOptions,
               settings: RenderSettings) -> RasterImage:
        contributions = self.layer_contributions(image, outputs, display, settings)
        canvas = self.background(image, display)

        detail = []
        for name, layer in contributions.items():
            if name == "edge":
                canvas = self.blend_edges(canvas, layer, settings.edge_opacity)
            elif name in HIGH_FREQUENCY_LAYERS:
                if display.layers.low_frequency:
                    canvas = PixelService.linear_light(canvas, layer)
                else:
                    detail.append(layer)
            elif name == "filtered" and "original" in contributions:
                canvas = PixelService.alpha_blend(canvas, layer, settings.filter_opacity)
            else:
                canvas = PixelService.alpha_blend(canvas, layer)

        if detail:
            canvas = PixelService.alpha_blend(canvas, self.merge_detail(detail))

        logger.debug(f"Rendered layers: {', '.join(contributions) or 'none'}")
        return canvas

    def layer_contributions(self,
                            image: RasterImage,
                            outputs: AnalysisOutputs,
                            display: DisplayOptions,
                            settings: RenderSettings) -> dict[str, RasterImage]:
        """
        Overlay image of every enabled layer whose buffer is available, in
        stacking order. Enabled layers with a missing buffer are skipped.
        """
        layers = display.layers
        has_base = display.has_base_layer
        result: dict[str, RasterImage] = {}

        def neutral(img: RasterImage) -> RasterImage:
            return PixelService.to_grayscale(img) if display.grayscale_mode else img

        def contours(brightness_map) -> RasterImage:
            if has_base:
                return self.brightness.detect_contours(brightness_map, settings.contour)
            return self.brightness.detect_contours_transparent(brightness_map, settings.contour)

        for name in layers.enabled():
            if name == "original":
                layer = neutral(image)
            elif name == "filtered":
                layer = neutral(outputs.filtered) if outputs.filtered is not None else None
            elif name == "contour":
                layer = contours(outputs.brightness_map) if outputs.brightness_map is not None else None
            elif name == "filtered_contour":
                bm = outputs.filtered_brightness_map
                layer = contours(bm) if bm is not None else None
            elif name == "edge":
                layer = self.edge_overlay(outputs.edges, self.edge_color(display)) \
                    if outputs.edges is not None else None
            elif outputs.frequency is not None:
                layer = neutral(getattr(outputs.frequency, name))
            else:
                layer = None

            if layer is None:
                logger.warning(f"Layer '{name}' is enabled but has not been computed; skipping")
                continue
            image.require_same_size(layer)
            result[name] = layer
        return result

    @staticmethod
    def background(image: RasterImage, display: DisplayOptions) -> RasterImage:
        """Opaque black under any base layer, fully transparent otherwise."""
        alpha = 255 if display.has_base_layer else 0
        return RasterImage.blank(image.width, image.height, (0, 0, 0, alpha))

    @staticmethod
    def edge_color(display: DisplayOptions) -> int:
        """Dark only when the edges sit on bare line art (contour layers and nothing else)."""
        others = [name for name in display.layers.enabled() if name != "edge"]
        if others and all(name in LINE_ART_LAYERS for name in others):
            return EDGE_DARK
        return EDGE_WHITE

    @staticmethod
    def edge_overlay(edges: RasterImage, color: int) -> RasterImage:
        """Edge pixels (alpha > 0 and any channel > 128) painted `color`, opaque."""
        px = edges.pixels
        mask = (px[..., 3] > 0) & (px[..., :3] > 128).any(axis=-1)
        out = np.zeros_like(px)
        out[mask] = (color, color, color, 255)
        return RasterImage(pixels=out)

    @staticmethod
    def blend_edges(base: RasterImage, overlay: RasterImage, opacity: int) -> RasterImage:
        base.require_same_size(overlay)
        ratio = opacity / 100
        mask = overlay.pixels[..., 3] > 0
        b = base.pixels.astype(np.float64)
        o = overlay.pixels.astype(np.float64)
        out = b.copy()
        out[mask, :3] = b[mask, :3] * (1 - ratio) + o[mask, :3] * ratio
        out[mask, 3] = np.maximum(b[mask, 3], 255 * ratio)
        return RasterImage(pixels=PixelService.to_uint8(out))

    @staticmethod
    def merge_detail(layers: list[RasterImage]) -> RasterImage:
        """Stand-alone detail view: 128 + Σ(layer − 128), alpha = max."""
        rgb = np.full(layers[0].pixels.shape[:2] + (3,), 128.0)
        alpha = np.zeros(layers[0].pixels.shape[:2], dtype=np.uint8)
        for layer in layers:
            rgb += layer.pixels[..., :3].astype(np.float64) - 128
            alpha = np.maximum(alpha, layer.pixels[..., 3])
        pixels = np.empty(rgb.shape[:2] + (4,), dtype=np.uint8)
        pixels[..., :3] = PixelService.to_uint8(rgb)
        pixels[..., 3] = alpha
        return RasterImage(pixels=pixels)
