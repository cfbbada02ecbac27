from __future__ import annotations
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, Union
import json
import logging
import os

from dotenv import load_dotenv

from ..models.raster_image import RasterImage
from ..models.settings import DisplayOptions, SessionSettings
from ..repositories.image_repository import ImageRepository
from .pixel_service import PixelService

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("png", "jpeg")


class ImageService:
    """I/O helpers.  No analysis logic here."""
    def __init__(self, image_repository: ImageRepository = None):
        self.image_repository = image_repository or ImageRepository()
        self.default_quality = int(os.getenv("EXPORT_JPEG_QUALITY", "92"))

    def load(self, path: str | Path) -> RasterImage:
        """Load a single image from disk into an RGBA RasterImage."""
        return self.image_repository.load(path)

    def stream_gallery(
        self,
        folder: Union[str, Path],
        *,
        recursive: bool = False,
        exts: Iterable[str] | None = None,
    ) -> Iterator[RasterImage]:
        """
        Yield images lazily instead of returning a gigantic list.
        """
        return self.image_repository.iter_dir(folder, recursive=recursive, exts=exts)

    # ─── Export ──────────────────────────────────────────────────────
    def export(
        self,
        image: RasterImage,
        out_dir: Union[str, Path],
        display: DisplayOptions,
        fmt: str = "png",
        quality: int | None = None,
        timestamp: datetime | None = None,
    ) -> Path:
        """
        Save a rendered image under a generated name.

        Args:
            image (RasterImage): The composited output.
            out_dir: Destination folder (created if missing).
            display (DisplayOptions): Layers in the render, used for the file name.
            fmt (str): "png" or "jpeg".
            quality (int | None): JPEG quality, clamped to 10-100.

        Returns:
            Path: The written file.
        """
        fmt = fmt.lower()
        if fmt == "jpg":
            fmt = "jpeg"
        if fmt not in EXPORT_FORMATS:
            raise ValueError(f"Export format must be one of {EXPORT_FORMATS}, got {fmt!r}")
        quality = int(PixelService.clamp(quality if quality is not None else self.default_quality, 10, 100))

        out_dir = Path(out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        path = out_dir / self.export_filename(display, fmt, timestamp)
        self.image_repository.save(image, path, fmt=fmt, quality=quality)
        logger.info(f"Exported {path.name} ({image.width}x{image.height}, {fmt})")
        return path

    @staticmethod
    def export_filename(display: DisplayOptions, fmt: str = "png", timestamp: datetime | None = None) -> str:
        """brightness-contour-<layers>[-grayscale]-<YYYYmmddTHHMMSS>.<ext>"""
        stamp = (timestamp or datetime.now()).strftime("%Y%m%dT%H%M%S")
        parts = ["brightness-contour"]
        layer_keys = display.layers.to_dict()
        parts.extend(key for key, on in layer_keys.items() if on)
        if display.grayscale_mode:
            parts.append("grayscale")
        parts.append(stamp)
        return f"{'-'.join(parts)}.{fmt}"

    @staticmethod
    def write_metadata(export_path: Union[str, Path], image: RasterImage, settings: SessionSettings) -> Path:
        """JSON sidecar next to an export describing how it was produced."""
        export_path = Path(export_path)
        metadata = {
            "timestamp": datetime.now().isoformat(timespec="seconds"),
            "displayOptions": settings.display.to_dict(),
            "contourSettings": settings.contour.to_dict(),
            "cannySettings": settings.canny.to_dict(),
            "edgeProcessingSettings": settings.edge_processing.to_dict(),
            "imageSize": {"width": image.width, "height": image.height},
        }
        sidecar = export_path.with_suffix(".json")
        sidecar.write_text(json.dumps(metadata, indent=2), encoding="utf-8")
        return sidecar
