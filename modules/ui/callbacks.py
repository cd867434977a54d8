"""Callback implementations for the Gradio interface."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterator, List, Optional, Tuple

from PIL import Image

from config.settings import AppConfig
from modules.errors import (
    DecodeFault,
    EncodeFault,
    PersistenceUnavailable,
    ValidationError,
)
from modules.pipelines.camera import CameraScanner, ScanHandle
from modules.pipelines.decoder import NOT_FOUND_MESSAGE, DecodeResult, QRDecodeService
from modules.pipelines.encoder import QREncodeService
from modules.services.history_service import HistoryEntry, HistoryKind, HistoryService
from modules.utils.image_utils import (
    data_url_to_image,
    generate_thumbnail,
    image_to_data_url,
    looks_like_url,
)

logger = logging.getLogger(__name__)

GalleryItem = Tuple[Image.Image, str]
ScanRow = List[str]
ScanOutputs = Tuple[str, str, str, List[ScanRow]]


def format_timestamp(entry: HistoryEntry) -> str:
    return entry.timestamp.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _frame_to_image(frame: Any) -> Optional[Image.Image]:
    """Convert a BGR camera frame into a PIL image."""
    if frame is None:
        return None
    if frame.ndim == 3:
        frame = frame[..., ::-1].copy()
    return Image.fromarray(frame)


def link_markdown(text: str) -> str:
    """Render an "open link" anchor for URL results, otherwise nothing."""
    if not looks_like_url(text):
        return ""
    url = text.strip()
    return f"[访问链接]({url})"


def build_callbacks(
    config: AppConfig,
    encoder: Optional[QREncodeService] = None,
    decoder: Optional[QRDecodeService] = None,
    history: Optional[HistoryService] = None,
    scanner: Optional[CameraScanner] = None,
) -> dict[str, Any]:
    """Return a dictionary of Gradio callback functions."""

    camera_lock = threading.Lock()
    active_scan: Dict[str, Optional[ScanHandle]] = {"handle": None}

    def _ensure_encoder() -> QREncodeService:
        if encoder is None:
            raise RuntimeError("二维码生成服务未配置")
        return encoder

    def _ensure_decoder() -> QRDecodeService:
        if decoder is None:
            raise RuntimeError("二维码识别服务未配置")
        return decoder

    def _ensure_scanner() -> CameraScanner:
        if scanner is None:
            raise RuntimeError("摄像头扫描服务未配置")
        return scanner

    def _entries(kind: HistoryKind, query: str = "") -> List[HistoryEntry]:
        if history is None:
            return []
        return history.store(kind).filter(query or "")

    def _entry_image(entry: HistoryEntry) -> Optional[Image.Image]:
        if entry.artifact:
            try:
                return data_url_to_image(entry.artifact)
            except (ValueError, OSError) as exc:
                logger.warning("History entry %s has an unreadable artifact: %s", entry.id, exc)
        if encoder is None:
            return None
        try:
            return encoder.encode(encoder.build_request(entry.content)).image
        except (ValidationError, EncodeFault):
            return None

    def _gallery(query: str = "") -> List[GalleryItem]:
        items: List[GalleryItem] = []
        for entry in _entries(HistoryKind.GENERATED, query):
            image = _entry_image(entry)
            if image is not None:
                items.append((image, f"{entry.content}\n{format_timestamp(entry)}"))
        return items

    def _scan_rows(query: str = "") -> List[ScanRow]:
        return [[format_timestamp(entry), entry.content] for entry in _entries(HistoryKind.SCANNED, query)]

    def _record(kind: HistoryKind, content: str, artifact: Optional[str]) -> str:
        """Append to history; returns a warning when the entry could not be persisted."""
        if history is None:
            return ""
        try:
            if kind is HistoryKind.GENERATED:
                history.record_generated(content, artifact)
            else:
                history.record_scanned(content, artifact)
        except PersistenceUnavailable as exc:
            return f"（{exc}，刷新页面后该记录将丢失）"
        return ""

    def _thumbnail_url(image: Optional[Image.Image]) -> Optional[str]:
        if image is None:
            return None
        size = config.thumbnail_size
        return image_to_data_url(generate_thumbnail(image, (size, size)))

    def _scan_outputs(result: DecodeResult, image: Optional[Image.Image]) -> ScanOutputs:
        if not result.found:
            return "", "", NOT_FOUND_MESSAGE, _scan_rows()
        text = result.text or ""
        warning = _record(HistoryKind.SCANNED, text, _thumbnail_url(image))
        return text, link_markdown(text), f"识别成功{warning}", _scan_rows()

    def on_generate(text: str, level: str) -> tuple[Optional[Image.Image], str, List[GalleryItem]]:
        service = _ensure_encoder()
        try:
            request = service.build_request(text or "", level)
            result = service.encode(request)
        except (ValidationError, EncodeFault) as exc:
            return None, str(exc), _gallery()

        warning = _record(HistoryKind.GENERATED, result.text, result.data_url)
        return result.image, f"生成成功（容错级别 {result.error_correction.value}）{warning}", _gallery()

    def on_decode_image(image: Optional[Image.Image]) -> ScanOutputs:
        if image is None:
            return "", "", "请先上传、粘贴或拍摄包含二维码的图片", _scan_rows()
        service = _ensure_decoder()
        try:
            result = service.decode_image(image)
        except DecodeFault as exc:
            return "", "", str(exc), _scan_rows()
        return _scan_outputs(result, image)

    def on_start_camera() -> Iterator[ScanOutputs]:
        camera = _ensure_scanner()
        with camera_lock:
            current = active_scan["handle"]
            busy = current is not None and not current.done
            if not busy:
                handle = camera.start()
                active_scan["handle"] = handle
        if busy:
            yield "", "", "摄像头已在扫描中", _scan_rows()
            return

        try:
            yield "", "", "正在扫描...", _scan_rows()
            handle.wait()
        finally:
            handle.cancel()
            with camera_lock:
                if active_scan["handle"] is handle:
                    active_scan["handle"] = None

        if handle.error is not None:
            yield "", "", str(handle.error), _scan_rows()
            return
        if handle.result is None:
            yield "", "", "摄像头已停止", _scan_rows()
            return

        yield _scan_outputs(handle.result, _frame_to_image(handle.frame))

    def on_stop_camera() -> str:
        with camera_lock:
            handle = active_scan["handle"]
        if handle is None or handle.done:
            return "摄像头未在运行"
        handle.cancel()
        return "正在停止摄像头..."

    def on_search_generated(query: str) -> List[GalleryItem]:
        return _gallery(query)

    def on_search_scanned(query: str) -> List[ScanRow]:
        return _scan_rows(query)

    def _clear(kind: HistoryKind) -> str:
        if history is None:
            return "历史记录服务未配置"
        try:
            history.store(kind).clear()
        except PersistenceUnavailable as exc:
            return str(exc)
        return "历史记录已清空"

    def on_clear_generated() -> tuple[List[GalleryItem], str]:
        return [], _clear(HistoryKind.GENERATED)

    def on_clear_scanned() -> tuple[List[ScanRow], str]:
        return [], _clear(HistoryKind.SCANNED)

    def on_load_history() -> tuple[List[GalleryItem], List[ScanRow]]:
        if history is not None:
            history.load_all()
        return _gallery(), _scan_rows()

    return {
        "on_generate": on_generate,
        "on_decode_image": on_decode_image,
        "on_start_camera": on_start_camera,
        "on_stop_camera": on_stop_camera,
        "on_search_generated": on_search_generated,
        "on_search_scanned": on_search_scanned,
        "on_clear_generated": on_clear_generated,
        "on_clear_scanned": on_clear_scanned,
        "on_load_history": on_load_history,
    }
