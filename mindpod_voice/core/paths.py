"""Filesystem helpers for the voice assistant."""

from __future__ import annotations

from pathlib import Path

from .config import Settings, get_settings


def project_root() -> Path:
    """Return the repository root."""
    return Path(__file__).resolve().parents[2]


def data_dir(settings: Settings | None = None) -> Path:
    """Directory storing the durable key-value store."""
    settings = settings or get_settings()
    root = Path(settings.data_dir).expanduser()
    root.mkdir(parents=True, exist_ok=True)
    return root


def log_dir(settings: Settings | None = None) -> Path:
    """Directory receiving the JSON-lines logs."""
    settings = settings or get_settings()
    root = Path(settings.log_dir).expanduser() if settings.log_dir else project_root() / "logs"
    root.mkdir(parents=True, exist_ok=True)
    return root


def voices_dir(settings: Settings | None = None) -> Path:
    """Directory holding the Piper voice models."""
    settings = settings or get_settings()
    if settings.tts_models_dir:
        return Path(settings.tts_models_dir).expanduser()
    return data_dir(settings) / "voices"
