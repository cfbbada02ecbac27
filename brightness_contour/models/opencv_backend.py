# models/opencv_backend.py
"""
Injectable handle on the optional OpenCV acceleration.

• Explicit idle → loading → ready / error state machine.
• `await ensure_ready()` acquires the library off the event loop, bounded by
  OPENCV_LOAD_TIMEOUT seconds; concurrent callers share one load.
• Services receive the handle in their constructor and call `require()`,
  which raises BackendUnavailable unless the state is ready.
"""
from __future__ import annotations
import asyncio
import importlib
import logging
import os
import threading
from dataclasses import dataclass
from enum import Enum
from types import ModuleType
from typing import Callable

import numpy as np
from dotenv import load_dotenv

from .errors import BackendUnavailable

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

_REQUIRED_FUNCTIONS = (
    "Canny",
    "cvtColor",
    "GaussianBlur",
    "medianBlur",
    "bilateralFilter",
    "fastNlMeansDenoisingColored",
    "morphologyEx",
    "getStructuringElement",
)


class BackendState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    ERROR = "error"


@dataclass
class BackendStatus:
    state: BackendState
    error: str | None = None

    @property
    def is_loaded(self) -> bool:
        return self.state is BackendState.READY

    @property
    def is_loading(self) -> bool:
        return self.state is BackendState.LOADING


def import_opencv() -> ModuleType:
    """Import cv2, check the functions we call exist and run one tiny warm-up."""
    cv2 = importlib.import_module("cv2")
    missing = [name for name in _REQUIRED_FUNCTIONS if not hasattr(cv2, name)]
    if missing:
        raise ImportError(f"OpenCV build lacks {', '.join(missing)}")
    cv2.Canny(np.zeros((8, 8), dtype=np.uint8), 50, 150)
    return cv2


class OpenCVBackend:
    name = "opencv"

    def __init__(self, loader: Callable[[], ModuleType] | None = None, timeout: float | None = None):
        """
        Args:
            loader: Callable returning the cv2 module. Defaults to a real import.
            timeout: Seconds allowed for loading. Defaults to OPENCV_LOAD_TIMEOUT (30).
        """
        self._loader = loader or import_opencv
        self.timeout = timeout if timeout is not None else float(os.getenv("OPENCV_LOAD_TIMEOUT", "30"))
        self._state = BackendState.IDLE
        self._error: str | None = None
        self._module: ModuleType | None = None
        self._pending: asyncio.Future | None = None
        self._lock = threading.RLock()

    # ─── State ───────────────────────────────────────────────────────
    def status(self) -> BackendStatus:
        with self._lock:
            return BackendStatus(self._state, self._error)

    @property
    def is_ready(self) -> bool:
        return self._state is BackendState.READY

    def require(self) -> ModuleType:
        """Return the loaded cv2 module or raise BackendUnavailable."""
        with self._lock:
            if self._state is not BackendState.READY or self._module is None:
                detail = f": {self._error}" if self._error else ""
                raise BackendUnavailable(f"OpenCV backend is {self._state.value}{detail}")
            return self._module

    # ─── Loading ─────────────────────────────────────────────────────
    async def ensure_ready(self) -> None:
        """Load the backend if needed. Raises BackendUnavailable on failure or timeout."""
        if self._state is BackendState.READY:
            return
        if self._pending is None or self._pending.done():
            self._pending = asyncio.ensure_future(self._load_async())
        await asyncio.shield(self._pending)

    def load(self) -> None:
        """Blocking variant of ensure_ready() for callers without an event loop."""
        if self._state is BackendState.READY:
            return
        self._begin()
        try:
            module = self._loader()
        except Exception as err:
            raise self._fail(f"OpenCV loading failed: {err}") from err
        self._succeed(module)

    async def _load_async(self) -> None:
        self._begin()
        try:
            module = await asyncio.wait_for(asyncio.to_thread(self._loader), timeout=self.timeout)
        except asyncio.TimeoutError as err:
            raise self._fail(f"OpenCV loading timeout after {self.timeout:g}s") from err
        except Exception as err:
            raise self._fail(f"OpenCV loading failed: {err}") from err
        self._succeed(module)

    def _begin(self) -> None:
        with self._lock:
            self._state = BackendState.LOADING
            self._error = None
        logger.debug("Loading OpenCV backend...")

    def _succeed(self, module: ModuleType) -> None:
        with self._lock:
            self._module = module
            self._state = BackendState.READY
        logger.info(f"OpenCV backend ready (version {getattr(module, '__version__', 'unknown')})")

    def _fail(self, message: str) -> BackendUnavailable:
        with self._lock:
            self._module = None
            self._state = BackendState.ERROR
            self._error = message
        logger.error(message)
        return BackendUnavailable(message)
