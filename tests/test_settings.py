"""Configuration loading tests."""

from __future__ import annotations

from dataclasses import fields
from pathlib import Path

import pytest

from config.settings import AppConfig, load_config

ENV_NAMES = (
    "QR_DATA_DIR",
    "QR_LOG_DIR",
    "QR_HISTORY_LIMIT",
    "QR_ERROR_CORRECTION",
    "QR_WIDTH",
    "QR_CAMERA_INDEX",
    "QR_CAMERA_POLL_INTERVAL",
    "QR_STORAGE_QUOTA",
    "QR_SERVER_NAME",
    "QR_SERVER_PORT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    yield


def test_defaults_without_env(tmp_path):
    config = load_config(str(tmp_path / "missing.env"))
    defaults = AppConfig()

    assert config.history_limit == 20
    assert config.default_error_correction == "M"
    assert config.qr_width == defaults.qr_width
    assert config.storage_quota_bytes is None
    assert config.data_dir == Path("data")


def test_env_file_overrides(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "\n".join(
            [
                "# comment",
                f"QR_DATA_DIR={tmp_path / 'store'}",
                "QR_ERROR_CORRECTION=h",
                "QR_CAMERA_INDEX=2",
                "QR_STORAGE_QUOTA=5000000",
                "QR_SERVER_PORT=9000",
            ]
        ),
        encoding="utf-8",
    )
    for name in ENV_NAMES:
        monkeypatch.setenv(name, "")

    config = load_config(str(env_file))

    assert config.data_dir == tmp_path / "store"
    assert config.default_error_correction == "H"
    assert config.camera_index == 2
    assert config.storage_quota_bytes == 5_000_000
    assert config.server_port == 9000


def test_malformed_values_fall_back(monkeypatch, tmp_path):
    monkeypatch.setenv("QR_HISTORY_LIMIT", "lots")
    monkeypatch.setenv("QR_ERROR_CORRECTION", "Z")
    monkeypatch.setenv("QR_WIDTH", "5")
    monkeypatch.setenv("QR_STORAGE_QUOTA", "-1")

    config = load_config(str(tmp_path / "missing.env"))

    assert config.history_limit == 20
    assert config.default_error_correction == "M"
    assert config.qr_width == 300
    assert config.storage_quota_bytes is None


def test_config_carries_only_settings(tmp_path):
    config = load_config(str(tmp_path / "missing.env"))

    assert {item.name for item in fields(config)} == {
        "data_dir",
        "log_dir",
        "history_limit",
        "default_error_correction",
        "qr_width",
        "qr_border",
        "qr_dark_color",
        "qr_light_color",
        "thumbnail_size",
        "camera_index",
        "camera_poll_interval",
        "storage_quota_bytes",
        "server_name",
        "server_port",
    }
