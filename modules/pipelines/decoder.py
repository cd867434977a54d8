"""QR decoding service built on the OpenCV QR detector."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Union

import cv2
import numpy as np
from PIL import Image

from modules.errors import DecodeFault

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "未检测到二维码"

PixelBuffer = Union[bytes, bytearray, memoryview, np.ndarray]

_GRAY_CONVERSIONS = {
    3: cv2.COLOR_RGB2GRAY,
    4: cv2.COLOR_RGBA2GRAY,
}


@dataclass(frozen=True, slots=True)
class DecodeResult:
    """Outcome of a decode attempt; ``text`` is None when no symbol was found."""

    text: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.text is not None


NOT_FOUND = DecodeResult()


class QRDecodeService:
    """Locate and decode a single QR symbol in pixel data."""

    def __init__(self, retry_with_threshold: bool = True) -> None:
        self.retry_with_threshold = retry_with_threshold
        self._detector = cv2.QRCodeDetector()

    def decode_pixels(self, data: PixelBuffer, width: int, height: int) -> DecodeResult:
        """Decode raw row-major pixels (RGBA, RGB or grayscale, inferred from size)."""
        if width <= 0 or height <= 0:
            raise DecodeFault(f"无效的图像尺寸：{width}x{height}")
        flat = np.frombuffer(bytes(data), dtype=np.uint8) if not isinstance(data, np.ndarray) else data
        flat = np.ascontiguousarray(flat, dtype=np.uint8).reshape(-1)

        pixel_count = width * height
        channels, remainder = divmod(flat.size, pixel_count)
        if remainder or channels not in (1, 3, 4):
            raise DecodeFault(
                f"像素数据长度 {flat.size} 与尺寸 {width}x{height} 不匹配"
            )
        if channels == 1:
            gray = flat.reshape(height, width)
        else:
            gray = cv2.cvtColor(flat.reshape(height, width, channels), _GRAY_CONVERSIONS[channels])
        return self._decode_gray(gray)

    def decode_array(self, array: np.ndarray) -> DecodeResult:
        """Decode an RGB/RGBA/grayscale ``(H, W[, C])`` array."""
        if array.ndim == 2:
            return self._decode_gray(np.ascontiguousarray(array, dtype=np.uint8))
        if array.ndim != 3:
            raise DecodeFault(f"不支持的图像数组维度：{array.shape}")
        height, width = array.shape[:2]
        return self.decode_pixels(array, width, height)

    def decode_frame(self, frame: np.ndarray) -> DecodeResult:
        """Decode a BGR frame as produced by ``cv2.VideoCapture``."""
        if frame is None or frame.size == 0:
            return NOT_FOUND
        if frame.ndim == 3:
            frame = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        return self._decode_gray(frame)

    def decode_image(self, image: Image.Image) -> DecodeResult:
        try:
            gray = np.asarray(image.convert("L"), dtype=np.uint8)
        except (OSError, ValueError) as exc:
            raise DecodeFault(f"无法读取图片：{exc}") from exc
        return self._decode_gray(gray)

    def _decode_gray(self, gray: np.ndarray) -> DecodeResult:
        text = self._detect(gray)
        if text is None and self.retry_with_threshold:
            # Otsu binarization recovers low-contrast prints.
            _, binary = cv2.threshold(gray, 0, 255, cv2.THRESH_BINARY + cv2.THRESH_OTSU)
            text = self._detect(binary)
        if text is None:
            logger.info("No QR code found in %dx%d image", gray.shape[1], gray.shape[0])
            return NOT_FOUND
        return DecodeResult(text=text)

    def _detect(self, gray: np.ndarray) -> Optional[str]:
        try:
            text, points, _ = self._detector.detectAndDecode(gray)
        except cv2.error as exc:
            logger.error("QR decoder failed: %s", exc)
            raise DecodeFault(f"二维码解码失败：{exc}") from exc
        if points is None or not text:
            return None
        return text
