"""
Media utilities: in-memory media blobs, ffmpeg discovery and encoder probing.
"""

from __future__ import annotations

import logging
import mimetypes
import shutil
import subprocess
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Callable, FrozenSet, Optional

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = {".mp4", ".mov", ".mkv", ".webm", ".avi", ".m4v", ".mpg", ".mpeg"}
DEFAULT_VIDEO_MIME = "video/mp4"


@dataclass(frozen=True)
class MediaBlob:
    """A finalised piece of media held in memory, tagged with its mime type."""

    data: bytes
    mime_type: str
    name: str = "capture"

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def base_mime_type(self) -> str:
        """Mime type without codec parameters (``video/webm; codecs=vp9`` -> ``video/webm``)."""
        return self.mime_type.split(";", 1)[0].strip()


def _is_video_file(path: Path) -> bool:
    return path.suffix.lower() in VIDEO_EXTENSIONS


def guess_mime_type(path: str) -> str:
    guessed, _ = mimetypes.guess_type(path)
    if guessed and guessed.startswith("video/"):
        return guessed
    if Path(path).suffix.lower() == ".webm":
        return "video/webm"
    return DEFAULT_VIDEO_MIME


def read_media_file(path: str, mime_type: Optional[str] = None) -> MediaBlob:
    """Load an uploaded video file into a ``MediaBlob``."""
    src = Path(path).expanduser().resolve()
    if not src.exists():
        raise FileNotFoundError(f"Video file not found: {src}")
    if not _is_video_file(src):
        raise ValueError(f"Path is not a supported video file: {src}")
    return MediaBlob(
        data=src.read_bytes(),
        mime_type=mime_type or guess_mime_type(str(src)),
        name=src.name,
    )


def ffmpeg_available(binary: str = "ffmpeg", which: Callable[[str], Optional[str]] = shutil.which) -> bool:
    return which(binary) is not None


def parse_encoder_listing(output: str) -> FrozenSet[str]:
    """
    Parse ``ffmpeg -encoders`` output into encoder names.

    Rows after the ``------`` separator look like
    `` V....D libx264              libx264 H.264 / AVC``.
    """
    names = set()
    in_table = False
    for line in output.splitlines():
        stripped = line.strip()
        if not in_table:
            if stripped.startswith("------"):
                in_table = True
            continue
        parts = stripped.split()
        if len(parts) >= 2:
            names.add(parts[1])
    return frozenset(names)


@lru_cache(maxsize=4)
def list_encoders(binary: str = "ffmpeg") -> FrozenSet[str]:
    """Return the encoders the local ffmpeg build supports (empty when probing fails)."""
    cmd = [binary, "-hide_banner", "-encoders"]
    logger.debug("Probing encoders: %s", " ".join(cmd))
    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, check=True  # noqa: S603,S607
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        logger.warning("Could not list ffmpeg encoders: %s", exc)
        return frozenset()
    return parse_encoder_listing(result.stdout)


__all__ = [
    "MediaBlob",
    "VIDEO_EXTENSIONS",
    "DEFAULT_VIDEO_MIME",
    "guess_mime_type",
    "read_media_file",
    "ffmpeg_available",
    "parse_encoder_listing",
    "list_encoders",
]
