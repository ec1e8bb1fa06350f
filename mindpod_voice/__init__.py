"""MindPod voice assistant package."""

from __future__ import annotations

from typing import Any

__all__ = ["build_assistant"]


def build_assistant(*args: Any, **kwargs: Any) -> Any:
    """Build the voice assistant with the default audio backends (lazy import)."""
    from .runtime.assistant import build_assistant as _build

    return _build(*args, **kwargs)
