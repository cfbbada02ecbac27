from __future__ import annotations
import os
import logging

import numpy as np
from dotenv import load_dotenv

from ..models.raster_image import RasterImage
from ..models.settings import EdgeProcessingSettings
from ..models.results import EdgeProcessingResult, EdgeProcessingStats

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

_NEIGHBOURS_8 = [(dy, dx) for dy in (-1, 0, 1) for dx in (-1, 0, 1) if (dy, dx) != (0, 0)]


class EdgeProcessingService:
    """
    Clean-up of a Canny edge map, in fixed order: thin → remove short → connect.
    A pixel counts as an edge when its red channel is non-zero.
    """

    def __init__(self, max_iterations: int = None, endpoint_warning: int = None):
        self.max_iterations = max_iterations if max_iterations is not None else \
            int(os.getenv("THINNING_MAX_ITERATIONS", "100"))
        self.endpoint_warning = endpoint_warning if endpoint_warning is not None else \
            int(os.getenv("EDGE_CONNECTION_ENDPOINT_WARNING", "2000"))

    # ─── Public API ────────────────────────────────────────────────
    def process(self, edges: RasterImage, settings: EdgeProcessingSettings) -> EdgeProcessingResult:
        stats = EdgeProcessingStats(original_edge_count=self.count_edge_pixels(edges))
        result = edges.copy()

        if settings.enable_thinning:
            result, stats.thinning_iterations = self.thin_edges(result)
        if settings.enable_short_edge_removal:
            result, stats.removed_short_edges = self.remove_short_edges(result, settings.short_edge_threshold)
        if settings.enable_edge_connection:
            result, stats.connected_edges = self.connect_edges(result, settings.connection_distance)

        stats.processed_edge_count = self.count_edge_pixels(result)
        logger.info(f"Edge processing: {stats.original_edge_count} → {stats.processed_edge_count} pixels "
                    f"(removed {stats.removed_short_edges}, connected {stats.connected_edges})")
        return EdgeProcessingResult(result=result, stats=stats)

    @staticmethod
    def edge_mask(image: RasterImage) -> np.ndarray:
        return image.pixels[..., 0] > 0

    @classmethod
    def count_edge_pixels(cls, image: RasterImage) -> int:
        return int(np.count_nonzero(cls.edge_mask(image)))

    # ─── Thinning ──────────────────────────────────────────────────
    def thin_edges(self, image: RasterImage) -> tuple[RasterImage, list[int]]:
        """
        Zhang-Suen skeletonization, two sub-iterations per iteration, interior
        pixels only. Stops when an iteration removes nothing or after
        `max_iterations`.

        Returns:
            (image, removed): thinned copy and pixels removed per iteration.
        """
        mask = self.edge_mask(image)
        pixels = image.pixels.copy()
        removed_per_iteration: list[int] = []

        while len(removed_per_iteration) < self.max_iterations:
            removed = 0
            for first_pass in (True, False):
                doomed = self._zhang_suen_candidates(mask, first_pass)
                mask &= ~doomed
                pixels[doomed] = 0
                removed += int(doomed.sum())
            removed_per_iteration.append(removed)
            if removed == 0:
                break

        if len(removed_per_iteration) >= self.max_iterations and removed_per_iteration[-1] > 0:
            logger.warning(f"Thinning stopped at the {self.max_iterations}-iteration cap")
        logger.debug(f"Thinning removed {sum(removed_per_iteration)} pixels "
                     f"in {len(removed_per_iteration)} iterations")
        return RasterImage(pixels=pixels), removed_per_iteration

    @staticmethod
    def _zhang_suen_candidates(mask: np.ndarray, first_pass: bool) -> np.ndarray:
        h, w = mask.shape
        doomed = np.zeros_like(mask)
        if h < 3 or w < 3:
            return doomed

        m = mask.astype(np.uint8)
        # P2..P9 clockwise from north
        p2 = m[:-2, 1:-1]
        p3 = m[:-2, 2:]
        p4 = m[1:-1, 2:]
        p5 = m[2:, 2:]
        p6 = m[2:, 1:-1]
        p7 = m[2:, :-2]
        p8 = m[1:-1, :-2]
        p9 = m[:-2, :-2]
        ring = [p2, p3, p4, p5, p6, p7, p8, p9]

        count = sum(p.astype(np.int32) for p in ring)
        transitions = sum(((ring[i] == 0) & (ring[(i + 1) % 8] == 1)).astype(np.int32) for i in range(8))

        if first_pass:
            parity = ((p2 * p4 * p6) == 0) & ((p4 * p6 * p8) == 0)
        else:
            parity = ((p2 * p4 * p8) == 0) & ((p2 * p6 * p8) == 0)

        doomed[1:-1, 1:-1] = (mask[1:-1, 1:-1] & (count >= 2) & (count <= 6)
                              & (transitions == 1) & parity)
        return doomed

    # ─── Short edge removal ────────────────────────────────────────
    def remove_short_edges(self, image: RasterImage, threshold: int) -> tuple[RasterImage, int]:
        """Erase every 8-connected edge component with fewer than `threshold` pixels."""
        mask = self.edge_mask(image)
        visited = np.zeros_like(mask)
        pixels = image.pixels.copy()
        removed = 0

        for y, x in zip(*np.nonzero(mask)):
            if visited[y, x]:
                continue
            component = self._flood_fill(mask, visited, int(y), int(x))
            if len(component) < threshold:
                ys, xs = zip(*component)
                pixels[list(ys), list(xs)] = 0
                removed += len(component)

        logger.debug(f"Short edge removal (< {threshold} px) erased {removed} pixels")
        return RasterImage(pixels=pixels), removed

    @staticmethod
    def _flood_fill(mask: np.ndarray, visited: np.ndarray, y: int, x: int) -> list[tuple[int, int]]:
        h, w = mask.shape
        stack = [(y, x)]
        visited[y, x] = True
        component = []
        while stack:
            cy, cx = stack.pop()
            component.append((cy, cx))
            for dy, dx in _NEIGHBOURS_8:
                ny, nx = cy + dy, cx + dx
                if 0 <= ny < h and 0 <= nx < w and mask[ny, nx] and not visited[ny, nx]:
                    visited[ny, nx] = True
                    stack.append((ny, nx))
        return component

    # ─── Edge connection ───────────────────────────────────────────
    def connect_edges(self, image: RasterImage, max_distance: float) -> tuple[RasterImage, int]:
        """
        Join every pair of endpoints (interior edge pixels with exactly one
        8-neighbor) lying within `max_distance` with a Bresenham line.
        Quadratic in the number of endpoints.
        """
        endpoints = self.find_endpoints(image)
        if len(endpoints) > self.endpoint_warning:
            logger.warning(f"Edge connection over {len(endpoints)} endpoints; "
                           f"pairwise search may be slow on dense edge maps")

        pixels = image.pixels.copy()
        connected = 0
        points = np.array(endpoints, dtype=np.float64).reshape(-1, 2)
        for i in range(len(endpoints)):
            rest = points[i + 1:]
            if len(rest) == 0:
                break
            distance = np.sqrt(((rest - points[i]) ** 2).sum(axis=1))
            for j in np.nonzero(distance <= max_distance)[0]:
                (y1, x1), (y2, x2) = endpoints[i], endpoints[i + 1 + int(j)]
                for py, px in self.bresenham(x1, y1, x2, y2):
                    pixels[py, px] = 255
                connected += 1

        logger.debug(f"Edge connection drew {connected} lines between {len(endpoints)} endpoints")
        return RasterImage(pixels=pixels), connected

    def find_endpoints(self, image: RasterImage) -> list[tuple[int, int]]:
        """(y, x) of interior edge pixels with exactly one edge neighbor, row-major."""
        mask = self.edge_mask(image)
        h, w = mask.shape
        if h < 3 or w < 3:
            return []
        m = mask.astype(np.int32)
        count = sum(m[1 + dy:h - 1 + dy, 1 + dx:w - 1 + dx] for dy, dx in _NEIGHBOURS_8)
        is_end = mask[1:-1, 1:-1] & (count == 1)
        ys, xs = np.nonzero(is_end)
        return [(int(y) + 1, int(x) + 1) for y, x in zip(ys, xs)]

    @staticmethod
    def bresenham(x1: int, y1: int, x2: int, y2: int) -> list[tuple[int, int]]:
        """Integer line from (x1, y1) to (x2, y2) inclusive, as (y, x) pairs."""
        dx, dy = abs(x2 - x1), abs(y2 - y1)
        sx = 1 if x1 < x2 else -1
        sy = 1 if y1 < y2 else -1
        err = dx - dy
        x, y = x1, y1
        points = []
        while True:
            points.append((y, x))
            if x == x2 and y == y2:
                return points
            e2 = 2 * err
            if e2 > -dy:
                err -= dy
                x += sx
            if e2 < dx:
                err += dx
                y += sy
