"""QR encoding service implementation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Tuple

import qrcode
from PIL import Image
from qrcode.constants import ERROR_CORRECT_H, ERROR_CORRECT_L, ERROR_CORRECT_M, ERROR_CORRECT_Q

from config.settings import AppConfig
from modules.errors import EncodeFault, ValidationError
from modules.utils.image_utils import image_to_data_url

logger = logging.getLogger(__name__)

EMPTY_TEXT_MESSAGE = "请输入要生成二维码的内容"


class ErrorCorrection(str, Enum):
    """Error correction level, trading capacity for resilience."""

    L = "L"
    M = "M"
    Q = "Q"
    H = "H"

    @property
    def label(self) -> str:
        return _LEVEL_LABELS[self]

    @property
    def qrcode_constant(self) -> int:
        return _LEVEL_CONSTANTS[self]

    @classmethod
    def parse(cls, value: Any) -> "ErrorCorrection":
        """Accept an enum member, a level letter or a dropdown label."""
        if isinstance(value, cls):
            return value
        text = str(value or "").strip()
        for level in cls:
            if text.upper() == level.value or text == level.label:
                return level
        raise ValidationError(f"不支持的容错级别：{value}")

    @classmethod
    def choices(cls) -> List[Tuple[str, str]]:
        """Return ``(label, value)`` pairs in display order."""
        return [(level.label, level.value) for level in _DISPLAY_ORDER]


_LEVEL_LABELS = {
    ErrorCorrection.L: "L型 (低容错, 7%)",
    ErrorCorrection.M: "M型 (标准, 15%)",
    ErrorCorrection.Q: "Q型 (中高容错, 25%)",
    ErrorCorrection.H: "H型 (高容错, 30%)",
}

_LEVEL_CONSTANTS = {
    ErrorCorrection.L: ERROR_CORRECT_L,
    ErrorCorrection.M: ERROR_CORRECT_M,
    ErrorCorrection.Q: ERROR_CORRECT_Q,
    ErrorCorrection.H: ERROR_CORRECT_H,
}

_DISPLAY_ORDER = (ErrorCorrection.M, ErrorCorrection.L, ErrorCorrection.H, ErrorCorrection.Q)


@dataclass(slots=True)
class EncodeRequest:
    """Request data for QR generation."""

    text: str
    error_correction: ErrorCorrection = ErrorCorrection.M
    width: int = 300
    border: int = 2
    dark_color: str = "#000000"
    light_color: str = "#FFFFFF"


@dataclass(slots=True)
class EncodeResult:
    """Rendered QR symbol."""

    image: Image.Image
    data_url: str
    text: str
    error_correction: ErrorCorrection


class QREncodeService:
    """Facade around the ``qrcode`` library."""

    def __init__(self, config: AppConfig) -> None:
        self.config = config

    def build_request(self, text: str, level: Any = None) -> EncodeRequest:
        """Fill an :class:`EncodeRequest` from configuration defaults."""
        return EncodeRequest(
            text=text,
            error_correction=ErrorCorrection.parse(level or self.config.default_error_correction),
            width=self.config.qr_width,
            border=self.config.qr_border,
            dark_color=self.config.qr_dark_color,
            light_color=self.config.qr_light_color,
        )

    def encode(self, request: EncodeRequest) -> EncodeResult:
        """Render ``request.text`` as a square PNG of ``request.width`` pixels."""
        if not (request.text or "").strip():
            raise ValidationError(EMPTY_TEXT_MESSAGE)
        level = ErrorCorrection.parse(request.error_correction)

        try:
            qr = qrcode.QRCode(
                version=None,
                error_correction=level.qrcode_constant,
                box_size=1,
                border=request.border,
            )
            qr.add_data(request.text)
            qr.make(fit=True)
            total_modules = qr.modules_count + 2 * request.border
            qr.box_size = max(1, request.width // total_modules)

            rendered = qr.make_image(
                fill_color=request.dark_color,
                back_color=request.light_color,
            )
            image = rendered.get_image().convert("RGB")
            if image.size != (request.width, request.width):
                image = image.resize((request.width, request.width), Image.NEAREST)
            data_url = image_to_data_url(image)
        except Exception as exc:  # noqa: BLE001
            logger.error("QR generation failed for %d chars: %s", len(request.text), exc)
            raise EncodeFault(f"生成二维码失败: {exc}") from exc

        logger.info("Generated QR code (level=%s, %d chars)", level.value, len(request.text))
        return EncodeResult(image=image, data_url=data_url, text=request.text, error_correction=level)
