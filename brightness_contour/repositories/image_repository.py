from __future__ import annotations
from pathlib import Path
from typing import Union, Iterable, Iterator
import logging
import os
import signal
import threading

import numpy as np
import cv2
from PIL import Image as PILImage
from dotenv import load_dotenv

from ..models.raster_image import RasterImage
from ..models.errors import InvalidImageDimensions

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

_DEFAULT_EXTS = ".png,.jpg,.jpeg,.bmp,.tif,.tiff,.webp"


class ImageRepository:
    """
    Handles file I/O for RasterImage entities: decoding with OpenCV into RGBA,
    encoding PNG/JPEG with Pillow.
    """
    def __init__(self, max_dimension: int = None):
        self.VALID_EXTS = {ext.strip().lower()
                           for ext in os.getenv("VALID_IMAGE_EXTENSIONS", _DEFAULT_EXTS).split(",")}
        self.max_dimension = max_dimension if max_dimension is not None else \
            int(os.getenv("MAX_IMAGE_DIMENSION", "8000"))

    def load(self, path: Union[str, Path], timeout: int = 5) -> RasterImage:
        path = Path(path)
        arr = self._imread(path, timeout)
        if arr is None:
            raise FileNotFoundError(f"Image not found or unreadable: {path}")

        image = RasterImage(pixels=self.to_rgba(arr), path=path)
        self.check_dimensions(image.width, image.height)
        logger.debug(f"Loaded {path.name} ({image.width}x{image.height})")
        return image

    @staticmethod
    def _imread(path: Path, timeout: int):
        # SIGALRM is only available on the main thread of POSIX interpreters
        if not hasattr(signal, "SIGALRM") or threading.current_thread() is not threading.main_thread():
            return cv2.imread(str(path), cv2.IMREAD_UNCHANGED)

        # ─── timeout wrapper (5 s default) ────────────────────────────────
        def _handler(signum, frame):
            raise TimeoutError(f"cv2.imread timed-out after {timeout}s: {path}")

        previous = signal.signal(signal.SIGALRM, _handler)
        signal.alarm(timeout)
        try:
            return cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
        finally:
            signal.alarm(0)  # always disarm
            signal.signal(signal.SIGALRM, previous)

    @staticmethod
    def to_rgba(arr: np.ndarray) -> np.ndarray:
        """Normalize an OpenCV decode (gray, BGR, BGRA; 8 or 16 bit) to RGBA uint8."""
        if arr.dtype == np.uint16:
            arr = (arr // 257).astype(np.uint8)
        elif arr.dtype != np.uint8:
            arr = np.clip(arr, 0, 255).astype(np.uint8)

        if arr.ndim == 2:
            return cv2.cvtColor(arr, cv2.COLOR_GRAY2RGBA)
        channels = arr.shape[2]
        if channels == 1:
            return cv2.cvtColor(arr[:, :, 0], cv2.COLOR_GRAY2RGBA)
        if channels == 3:
            return cv2.cvtColor(arr, cv2.COLOR_BGR2RGBA)
        if channels == 4:
            return cv2.cvtColor(arr, cv2.COLOR_BGRA2RGBA)
        raise InvalidImageDimensions(f"Unsupported channel count: {channels}")

    def check_dimensions(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise InvalidImageDimensions(f"Invalid image size {width}x{height}")
        if width > self.max_dimension or height > self.max_dimension:
            raise InvalidImageDimensions(
                f"Image {width}x{height} exceeds the {self.max_dimension}px limit"
            )

    @staticmethod
    def save(image: RasterImage, path: Union[str, Path] = None, fmt: str = "png", quality: int = 92) -> Path:
        """
        Write PNG (alpha kept) or JPEG (alpha flattened onto black).
        """
        path = Path(path or image.path)
        pil = PILImage.fromarray(image.pixels)
        fmt = fmt.lower()
        if fmt == "png":
            pil.save(path, format="PNG")
        elif fmt in ("jpeg", "jpg"):
            flat = PILImage.new("RGB", pil.size, (0, 0, 0))
            flat.paste(pil, mask=pil.getchannel("A"))
            flat.save(path, format="JPEG", quality=int(quality))
        else:
            raise ValueError(f"Unsupported export format: {fmt!r}")
        return path

    def iter_dir(
        self,
        folder: Union[str, Path],
        *,
        recursive: bool = False,
        exts: Iterable[str] | None = None,
    ) -> Iterator[RasterImage]:
        """
        Yield RasterImage objects one at a time.  Nothing accumulates in memory.
        """
        folder = Path(folder)
        if not folder.is_dir():
            raise NotADirectoryError(folder)

        allowed = {e.lower() for e in (exts or self.VALID_EXTS)}
        pattern = "**/*" if recursive else "*"

        for p in sorted(folder.glob(pattern)):
            if p.suffix.lower() not in allowed or not p.is_file():
                logger.debug(f"Skipping {p}")
                continue
            try:
                yield self.load(p)
            except (FileNotFoundError, InvalidImageDimensions, TimeoutError) as err:
                logger.warning(f"Skipping {p.name}: {err}")
