"""
Configuration helpers for the style passport studio.

Centralises environment variable loading/validation so the rest of the codebase
can depend on typed config objects instead of sprinkling os.getenv calls.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

CAPTURE_BACKEND_CHOICES = {"auto", "x11grab", "gdigrab", "avfoundation"}
DEFAULT_GEMINI_MODEL = "gemini-3-flash-preview"

# Quality ceiling for screen capture. Requests above these are clamped.
MAX_CAPTURE_WIDTH = 1280
MAX_CAPTURE_HEIGHT = 720
MAX_CAPTURE_FRAME_RATE = 30
MAX_CAPTURE_BITRATE = 1_000_000

DEFAULT_DISPLAYS = {
    "x11grab": ":0.0",
    "gdigrab": "desktop",
    "avfoundation": "1",
}


@dataclass(frozen=True)
class GeminiConfig:
    """Credentials and generation knobs for the Gemini inference service."""

    api_key: Optional[str]
    model_name: str
    analysis_thinking_budget: int
    script_thinking_budget: int
    compare_thinking_budget: int
    output_language: str


@dataclass(frozen=True)
class CaptureConfig:
    """Screen capture settings (ffmpeg grabber, quality ceiling, slicing)."""

    ffmpeg_binary: str
    backend: str
    display: str
    audio_device: Optional[str]
    max_width: int
    max_height: int
    frame_rate: int
    video_bitrate: int
    slice_seconds: float
    stop_grace_seconds: float


@dataclass(frozen=True)
class StoreConfig:
    """Where local state (history) is persisted."""

    data_dir: Path
    history_capacity: int


@dataclass(frozen=True)
class PipelineConfig:
    """Misc runtime knobs."""

    log_level: str


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    """Wrapper around os.getenv that trims whitespace."""
    value = os.getenv(name, default)
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or default


def _get_float_env(name: str, default: float) -> float:
    raw = _get_env(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a float, got '{raw}'.") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}.")
    return value


def _get_int_env(name: str, default: int) -> int:
    raw = _get_env(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got '{raw}'.") from exc
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}.")
    return value


def _detect_capture_backend() -> str:
    if sys.platform.startswith("win"):
        return "gdigrab"
    if sys.platform == "darwin":
        return "avfoundation"
    return "x11grab"


@lru_cache(maxsize=1)
def get_gemini_config() -> GeminiConfig:
    """Return Gemini model configuration. The API key is checked by the client."""
    return GeminiConfig(
        api_key=_get_env("GOOGLE_API_KEY"),
        model_name=_get_env("GEMINI_MODEL") or DEFAULT_GEMINI_MODEL,
        analysis_thinking_budget=_get_int_env("ANALYSIS_THINKING_BUDGET", 4000),
        script_thinking_budget=_get_int_env("SCRIPT_THINKING_BUDGET", 2000),
        compare_thinking_budget=_get_int_env("COMPARE_THINKING_BUDGET", 4000),
        output_language=_get_env("OUTPUT_LANGUAGE") or "English",
    )


@lru_cache(maxsize=1)
def get_capture_config() -> CaptureConfig:
    """Return screen capture settings, clamped to the quality ceiling."""
    backend = (_get_env("CAPTURE_BACKEND") or "auto").lower()
    if backend not in CAPTURE_BACKEND_CHOICES:
        raise ValueError(
            f"CAPTURE_BACKEND must be one of {sorted(CAPTURE_BACKEND_CHOICES)}, got '{backend}'."
        )
    if backend == "auto":
        backend = _detect_capture_backend()

    width = _get_int_env("CAPTURE_MAX_WIDTH", MAX_CAPTURE_WIDTH)
    height = _get_int_env("CAPTURE_MAX_HEIGHT", MAX_CAPTURE_HEIGHT)
    frame_rate = _get_int_env("CAPTURE_FRAME_RATE", 24)
    bitrate = _get_int_env("CAPTURE_VIDEO_BITRATE", MAX_CAPTURE_BITRATE)

    if width > MAX_CAPTURE_WIDTH or height > MAX_CAPTURE_HEIGHT:
        logger.warning(
            "Capture size %dx%d exceeds the %dx%d ceiling; clamping.",
            width, height, MAX_CAPTURE_WIDTH, MAX_CAPTURE_HEIGHT,
        )
    if frame_rate > MAX_CAPTURE_FRAME_RATE:
        logger.warning(
            "CAPTURE_FRAME_RATE=%d exceeds %d fps; clamping.", frame_rate, MAX_CAPTURE_FRAME_RATE
        )
    if bitrate > MAX_CAPTURE_BITRATE:
        logger.warning(
            "CAPTURE_VIDEO_BITRATE=%d exceeds %d bps; clamping.", bitrate, MAX_CAPTURE_BITRATE
        )

    return CaptureConfig(
        ffmpeg_binary=_get_env("FFMPEG_BINARY") or "ffmpeg",
        backend=backend,
        display=_get_env("CAPTURE_DISPLAY") or DEFAULT_DISPLAYS[backend],
        audio_device=_get_env("CAPTURE_AUDIO_DEVICE"),
        max_width=min(width, MAX_CAPTURE_WIDTH),
        max_height=min(height, MAX_CAPTURE_HEIGHT),
        frame_rate=min(frame_rate, MAX_CAPTURE_FRAME_RATE),
        video_bitrate=min(bitrate, MAX_CAPTURE_BITRATE),
        slice_seconds=_get_float_env("CAPTURE_SLICE_SECONDS", 1.0),
        stop_grace_seconds=_get_float_env("CAPTURE_STOP_GRACE_SECONDS", 10.0),
    )


@lru_cache(maxsize=1)
def get_store_config() -> StoreConfig:
    """Return the local persistence location."""
    data_dir = Path(_get_env("STYLEPASS_DATA_DIR") or "~/.stylepass").expanduser()
    return StoreConfig(
        data_dir=data_dir,
        history_capacity=_get_int_env("HISTORY_CAPACITY", 20),
    )


@lru_cache(maxsize=1)
def get_pipeline_config() -> PipelineConfig:
    """Return misc runtime toggles."""
    return PipelineConfig(log_level=_get_env("LOG_LEVEL") or "INFO")


def require_api_key(config: Optional[GeminiConfig] = None) -> str:
    """Return the Gemini API key or raise when it is missing."""
    cfg = config or get_gemini_config()
    if not cfg.api_key:
        raise RuntimeError("Expected environment variable 'GOOGLE_API_KEY' to be set.")
    return cfg.api_key


def clear_config_caches() -> None:
    """Drop cached config objects so the next getter re-reads the environment."""
    get_gemini_config.cache_clear()
    get_capture_config.cache_clear()
    get_store_config.cache_clear()
    get_pipeline_config.cache_clear()


def describe_active_models() -> dict:
    """Return a summary of the currently selected model and capture backend."""
    gemini_cfg = get_gemini_config()
    capture_cfg = get_capture_config()
    return {
        "model": gemini_cfg.model_name,
        "api_key_set": bool(gemini_cfg.api_key),
        "output_language": gemini_cfg.output_language,
        "capture_backend": capture_cfg.backend,
        "capture_display": capture_cfg.display,
        "capture_audio": capture_cfg.audio_device or "none",
        "capture_ceiling": f"{capture_cfg.max_width}x{capture_cfg.max_height}@{capture_cfg.frame_rate}fps",
    }


__all__ = [
    "GeminiConfig",
    "CaptureConfig",
    "StoreConfig",
    "PipelineConfig",
    "MAX_CAPTURE_WIDTH",
    "MAX_CAPTURE_HEIGHT",
    "MAX_CAPTURE_FRAME_RATE",
    "MAX_CAPTURE_BITRATE",
    "get_gemini_config",
    "get_capture_config",
    "get_store_config",
    "get_pipeline_config",
    "require_api_key",
    "clear_config_caches",
    "describe_active_models",
]
