"""
Host-side orchestration of one image's analysis.

Each stage runs on a worker thread (asyncio.to_thread) and owns a generation
counter. Starting a stage again, changing the settings it depends on or
replacing the image bumps the counter; a run that finishes under an older
generation raises ProcessingCancelled instead of publishing its result.
"""
from __future__ import annotations
import asyncio
import logging
from dataclasses import replace

from ..models.raster_image import RasterImage
from ..models.brightness_map import BrightnessMap
from ..models.settings import SessionSettings
from ..models.results import AnalysisOutputs, EdgeDetectionResult, EdgeProcessingStats, FrequencyLayers
from ..models.errors import ProcessingCancelled
from ..models.opencv_backend import OpenCVBackend
from ..services.brightness_service import BrightnessService
from ..services.canny_service import CannyService
from ..services.edge_processing_service import EdgeProcessingService
from ..services.frequency_service import FrequencyService
from ..services.image_filter_service import ImageFilterService
from ..services.compositor_service import CompositorService

logger = logging.getLogger(__name__)

STAGES = ("brightness", "filter", "edges", "frequency")

# settings field → stages whose output it invalidates
_DEPENDENCIES = {
    "contour": (),
    "canny": ("edges",),
    "edge_processing": ("edges",),
    "frequency": ("frequency",),
    "image_filter": ("filter",),
    "display": (),
}


class AnalysisSession:
    """Manages state for a single image's analysis session."""

    def __init__(self,
                 image: RasterImage,
                 settings: SessionSettings | None = None,
                 backend: OpenCVBackend | None = None):
        self.image = image
        self.settings = settings or SessionSettings()
        self.backend = backend

        self.brightness_service = BrightnessService()
        self.canny_service = CannyService(backend)
        self.edge_processing_service = EdgeProcessingService()
        self.frequency_service = FrequencyService(backend)
        self.image_filter_service = ImageFilterService(backend)
        self.compositor = CompositorService(self.brightness_service)

        self.outputs = AnalysisOutputs()
        self.edge_detection: EdgeDetectionResult | None = None
        self.edge_stats: EdgeProcessingStats | None = None
        self._generations = {stage: 0 for stage in STAGES}
        self._completed: set[str] = set()

    # ─── Generations ─────────────────────────────────────────────────
    def generation(self, stage: str) -> int:
        return self._generations[stage]

    def _begin(self, stage: str) -> int:
        self._generations[stage] += 1
        return self._generations[stage]

    def _check_current(self, stage: str, generation: int) -> None:
        current = self._generations[stage]
        if generation != current:
            raise ProcessingCancelled(stage, generation, current)

    def is_current(self, stage: str) -> bool:
        """The stage has published a result (possibly None) for the current inputs."""
        return stage in self._completed

    def _invalidate(self, *stages: str) -> None:
        for stage in stages:
            self._generations[stage] += 1
            self._completed.discard(stage)
            if stage == "brightness":
                self.outputs.brightness_map = None
            elif stage == "filter":
                self.outputs.filtered = None
                self.outputs.filtered_brightness_map = None
            elif stage == "edges":
                self.outputs.edges = None
                self.edge_detection = None
                self.edge_stats = None
            elif stage == "frequency":
                self.outputs.frequency = None

    # ─── Settings & image ────────────────────────────────────────────
    def update_settings(self, **changes) -> None:
        """
        Replace settings objects by field name (contour, canny, edge_processing,
        frequency, image_filter, display) and drop every output they invalidate.
        """
        unknown = set(changes) - set(_DEPENDENCIES)
        if unknown:
            raise ValueError(f"Unknown settings: {sorted(unknown)}")
        self.settings = replace(self.settings, **changes)
        stale = sorted({stage for name in changes for stage in _DEPENDENCIES[name]})
        if stale:
            logger.debug(f"Settings change invalidates: {', '.join(stale)}")
            self._invalidate(*stale)

    def set_image(self, image: RasterImage) -> None:
        self.image = image
        self._invalidate(*STAGES)

    # ─── Stages ──────────────────────────────────────────────────────
    async def analyze_brightness(self) -> BrightnessMap:
        generation = self._begin("brightness")
        image, contour = self.image, self.settings.contour
        result = await asyncio.to_thread(self.brightness_service.analyze, image, contour)
        self._check_current("brightness", generation)
        self.outputs.brightness_map = result
        self._completed.add("brightness")
        return result

    async def apply_filter(self) -> RasterImage | None:
        generation = self._begin("filter")
        image, filter_settings = self.image, self.settings.image_filter

        def work():
            filtered = self.image_filter_service.apply(image, filter_settings)
            brightness = self.brightness_service.analyze(filtered) if filtered is not None else None
            return filtered, brightness

        filtered, brightness = await asyncio.to_thread(work)
        self._check_current("filter", generation)
        self.outputs.filtered = filtered
        self.outputs.filtered_brightness_map = brightness
        self._completed.add("filter")
        return filtered

    async def detect_edges(self) -> RasterImage | None:
        generation = self._begin("edges")
        image, canny, processing = self.image, self.settings.canny, self.settings.edge_processing
        if not canny.enabled:
            self.outputs.edges = None
            self._completed.add("edges")
            return None

        def work():
            params = canny.params
            if canny.threshold_mode == "auto":
                thresholds = self.canny_service.calculate_optimal_thresholds(image)
                params = replace(params,
                                 low_threshold=thresholds.low_threshold,
                                 high_threshold=thresholds.high_threshold)
            detection = self.canny_service.detect_edges(image, params)
            processed = self.edge_processing_service.process(detection.edges, processing)
            return detection, processed

        detection, processed = await asyncio.to_thread(work)
        self._check_current("edges", generation)
        self.edge_detection = detection
        self.edge_stats = processed.stats
        self.outputs.edges = processed.result
        self._completed.add("edges")
        return processed.result

    async def separate_frequencies(self) -> FrequencyLayers:
        generation = self._begin("frequency")
        image, frequency = self.image, self.settings.frequency
        result = await asyncio.to_thread(self.frequency_service.separate, image, frequency)
        self._check_current("frequency", generation)
        self.outputs.frequency = result
        self._completed.add("frequency")
        return result

    # ─── Orchestration ───────────────────────────────────────────────
    async def refresh(self) -> AnalysisOutputs:
        """
        Compute, concurrently, every missing output the enabled layers need.
        Results superseded while running are discarded.
        """
        if self.backend is not None:
            await self.backend.ensure_ready()

        layers = self.settings.display.layers
        pending = []
        if layers.contour and not self.is_current("brightness"):
            pending.append(self.analyze_brightness())
        if (layers.filtered or layers.filtered_contour) and not self.is_current("filter"):
            pending.append(self.apply_filter())
        if layers.edge and not self.is_current("edges"):
            pending.append(self.detect_edges())
        if (layers.low_frequency or layers.high_frequency_bright or layers.high_frequency_dark) \
                and not self.is_current("frequency"):
            pending.append(self.separate_frequencies())

        await asyncio.gather(*(self._discard_cancelled(job) for job in pending))
        return self.outputs

    @staticmethod
    async def _discard_cancelled(job):
        try:
            return await job
        except ProcessingCancelled as err:
            logger.debug(f"Discarded stale result: {err}")
            return None

    def render(self) -> RasterImage:
        return self.compositor.render(self.image, self.outputs, self.settings.display,
                                      self.settings.render_settings())
