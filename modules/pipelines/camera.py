"""Local camera scanning as a cancellable polling task."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional

import cv2
import numpy as np

from config.settings import AppConfig
from modules.errors import DecodeFault, DeviceAccessDenied, QRAssistantError
from modules.pipelines.decoder import DecodeResult, QRDecodeService

logger = logging.getLogger(__name__)

DEVICE_DENIED_MESSAGE = "无法访问摄像头，请检查权限设置"

CaptureFactory = Callable[[int], Any]


@contextmanager
def open_capture(index: int, factory: Optional[CaptureFactory] = None) -> Iterator[Any]:
    """Acquire a capture device and release it on every exit path."""
    factory = factory or cv2.VideoCapture
    try:
        capture = factory(index)
    except (cv2.error, OSError) as exc:
        raise DeviceAccessDenied(f"{DEVICE_DENIED_MESSAGE}（{exc}）") from exc
    try:
        if capture is None or not capture.isOpened():
            raise DeviceAccessDenied(DEVICE_DENIED_MESSAGE)
        logger.info("Camera %s opened", index)
        yield capture
    finally:
        if capture is not None:
            capture.release()
            logger.info("Camera %s released", index)


class ScanHandle:
    """Track one running scan; ``cancel()`` may be called from any thread."""

    def __init__(self) -> None:
        self._cancel_event = threading.Event()
        self._done_event = threading.Event()
        self.result: Optional[DecodeResult] = None
        self.frame: Optional[np.ndarray] = None
        self.error: Optional[QRAssistantError] = None
        self._thread: Optional[threading.Thread] = None

    def cancel(self) -> None:
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def done(self) -> bool:
        return self._done_event.is_set()

    def wait(self, timeout: Optional[float] = None) -> Optional[DecodeResult]:
        """Block until the scan ends; return the result if a code was found."""
        self._done_event.wait(timeout)
        return self.result

    def _sleep(self, seconds: float) -> bool:
        """Sleep until the next tick; True when cancelled meanwhile."""
        return self._cancel_event.wait(seconds)

    def _finish(self) -> None:
        self._done_event.set()


class CameraScanner:
    """Poll frames from a camera until a QR code is decoded or the scan is cancelled."""

    def __init__(
        self,
        decoder: QRDecodeService,
        device_index: int = 0,
        poll_interval: float = 1 / 30,
        capture_factory: Optional[CaptureFactory] = None,
    ) -> None:
        self.decoder = decoder
        self.device_index = device_index
        self.poll_interval = poll_interval
        self.capture_factory = capture_factory

    @classmethod
    def from_config(cls, config: AppConfig, decoder: QRDecodeService) -> "CameraScanner":
        return cls(decoder, device_index=config.camera_index, poll_interval=config.camera_poll_interval)

    def start(self) -> ScanHandle:
        """Open the device on a background thread and begin polling."""
        handle = ScanHandle()
        thread = threading.Thread(
            target=self.run,
            args=(handle,),
            name=f"camera-scan-{self.device_index}",
            daemon=True,
        )
        handle._thread = thread
        thread.start()
        return handle

    def run(self, handle: ScanHandle) -> None:
        """Polling loop; runs on the caller's thread when invoked directly."""
        try:
            with open_capture(self.device_index, self.capture_factory) as capture:
                while not handle.cancelled:
                    ok, frame = capture.read()
                    if ok and frame is not None:
                        result = self.decoder.decode_frame(frame)
                        if result.found:
                            handle.frame = frame
                            handle.result = result
                            logger.info("Camera scan decoded a QR code")
                            return
                    if handle._sleep(self.poll_interval):
                        break
                logger.info("Camera scan cancelled")
        except QRAssistantError as exc:
            logger.warning("Camera scan stopped: %s", exc)
            handle.error = exc
        except cv2.error as exc:
            logger.error("Camera frame processing failed: %s", exc)
            handle.error = DecodeFault(f"摄像头画面处理失败：{exc}")
        finally:
            handle._finish()
