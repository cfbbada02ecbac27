import asyncio
import threading
import time
from types import SimpleNamespace

import pytest

from brightness_contour.models.errors import BackendUnavailable
from brightness_contour.models.opencv_backend import BackendState, OpenCVBackend, import_opencv


def fake_cv2():
    return SimpleNamespace(__version__="0.0-test")


def test_starts_idle_and_require_fails():
    backend = OpenCVBackend(loader=fake_cv2)
    assert backend.status().state is BackendState.IDLE
    assert not backend.is_ready
    with pytest.raises(BackendUnavailable):
        backend.require()


def test_successful_async_load():
    backend = OpenCVBackend(loader=fake_cv2)
    asyncio.run(backend.ensure_ready())
    status = backend.status()
    assert status.is_loaded and not status.is_loading
    assert backend.require().__version__ == "0.0-test"


def test_failing_loader_reports_error():
    def broken():
        raise ImportError("cv2 missing")

    backend = OpenCVBackend(loader=broken)
    with pytest.raises(BackendUnavailable):
        asyncio.run(backend.ensure_ready())
    status = backend.status()
    assert status.state is BackendState.ERROR
    assert "cv2 missing" in status.error
    with pytest.raises(BackendUnavailable, match="error"):
        backend.require()


def test_load_timeout():
    def slow():
        time.sleep(0.5)
        return fake_cv2()

    backend = OpenCVBackend(loader=slow, timeout=0.05)
    with pytest.raises(BackendUnavailable, match="timeout"):
        asyncio.run(backend.ensure_ready())
    assert backend.status().state is BackendState.ERROR


def test_concurrent_callers_share_one_load():
    calls = []
    lock = threading.Lock()

    def counting():
        with lock:
            calls.append(1)
        time.sleep(0.05)
        return fake_cv2()

    backend = OpenCVBackend(loader=counting)

    async def scenario():
        await asyncio.gather(*(backend.ensure_ready() for _ in range(5)))

    asyncio.run(scenario())
    assert len(calls) == 1
    assert backend.is_ready


def test_retry_after_failure():
    attempts = []

    def flaky():
        attempts.append(1)
        if len(attempts) == 1:
            raise ImportError("first try fails")
        return fake_cv2()

    backend = OpenCVBackend(loader=flaky)
    with pytest.raises(BackendUnavailable):
        backend.load()
    backend.load()
    assert backend.is_ready


def test_real_opencv_import():
    cv2 = import_opencv()
    assert hasattr(cv2, "Canny")


def test_timeout_from_environment(monkeypatch):
    monkeypatch.setenv("OPENCV_LOAD_TIMEOUT", "7")
    assert OpenCVBackend().timeout == 7.0
