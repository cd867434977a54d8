"""Configuration helpers for the QR Code Assistant project."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

ERROR_CORRECTION_LEVELS = ("L", "M", "Q", "H")


@dataclass(slots=True)
class AppConfig:
    """Centralized application configuration."""

    data_dir: Path = Path("data")
    log_dir: Path = Path("logs")
    history_limit: int = 20
    default_error_correction: str = "M"
    qr_width: int = 300
    qr_border: int = 2
    qr_dark_color: str = "#000000"
    qr_light_color: str = "#FFFFFF"
    thumbnail_size: int = 128
    camera_index: int = 0
    camera_poll_interval: float = 1 / 30
    storage_quota_bytes: Optional[int] = None
    server_name: str = "127.0.0.1"
    server_port: int = 7860


def _load_env_file(path: Path) -> None:
    """Populate environment variables from a simple KEY=VALUE .env file."""
    if not path.exists():
        return

    for line in path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        os.environ[key.strip()] = value.strip()


def _env_int(name: str, default: Optional[int], minimum: int = 0) -> Optional[int]:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= minimum else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value >= 0 else default


def _env_level(name: str, default: str = "M") -> str:
    raw = (os.getenv(name) or "").strip().upper()
    return raw if raw in ERROR_CORRECTION_LEVELS else default


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """Return an AppConfig instance with environment-aware settings."""
    env_path = Path(config_path) if config_path else Path(".env")
    _load_env_file(env_path)

    defaults = AppConfig()
    data_dir = Path(os.getenv("QR_DATA_DIR") or defaults.data_dir).expanduser()
    log_dir = Path(os.getenv("QR_LOG_DIR") or defaults.log_dir).expanduser()

    return AppConfig(
        data_dir=data_dir,
        log_dir=log_dir,
        history_limit=_env_int("QR_HISTORY_LIMIT", defaults.history_limit, minimum=1) or defaults.history_limit,
        default_error_correction=_env_level("QR_ERROR_CORRECTION", defaults.default_error_correction),
        qr_width=_env_int("QR_WIDTH", defaults.qr_width, minimum=21) or defaults.qr_width,
        camera_index=_env_int("QR_CAMERA_INDEX", defaults.camera_index) or 0,
        camera_poll_interval=_env_float("QR_CAMERA_POLL_INTERVAL", defaults.camera_poll_interval),
        storage_quota_bytes=_env_int("QR_STORAGE_QUOTA", None, minimum=1),
        server_name=os.getenv("QR_SERVER_NAME") or defaults.server_name,
        server_port=_env_int("QR_SERVER_PORT", defaults.server_port, minimum=1) or defaults.server_port,
    )
