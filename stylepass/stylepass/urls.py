"""
URL normalisation and platform resolution for pasted video links.

``normalize`` turns whatever the user pasted into a ``NormalizedVideoRef``:
a cleaned URL, a closed platform tag and the platform-specific identifier the
embed layer needs. It never raises for malformed input; an unresolvable
YouTube link simply carries ``video_id=None`` and callers render a
"could not resolve" state.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple
from urllib.parse import parse_qs, urlsplit

YOUTUBE_HOST_MARKERS = ("youtube.com", "youtu.be")
INSTAGRAM_HOST_MARKER = "instagram.com"
TIKTOK_HOST_MARKER = "tiktok.com"

# Media that only exists inside this process (uploads, captures). Never persisted.
LOCAL_SCHEME = "local://"

_YOUTUBE_ID = re.compile(r"^[A-Za-z0-9_-]{11}$")
_PATH_TERMINATORS = re.compile(r"[?&/]")
_YOUTUBE_FALLBACK = re.compile(
    r"(?:youtube\.com/(?:[^/]+/.+/|(?:v|e(?:mbed)?)/|.*[?&]v=)|youtu\.be/)([^\"&?/\s]{11})"
)


class VideoPlatform(str, Enum):
    """Where a video reference points. Every consumer matches all four."""

    YOUTUBE = "youtube"
    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    NATIVE = "native"


@dataclass(frozen=True)
class NormalizedVideoRef:
    """Derived view of a pasted reference. Recompute whenever the input changes."""

    original: str
    cleaned: str
    platform: VideoPlatform
    video_id: Optional[str]

    @property
    def is_empty(self) -> bool:
        return not self.cleaned

    @property
    def is_resolved(self) -> bool:
        """True when the embed layer has everything it needs to render a player."""
        if self.is_empty:
            return False
        if self.platform is VideoPlatform.YOUTUBE:
            return self.video_id is not None
        return True


def detect_platform(text: str) -> VideoPlatform:
    """Classify by host marker substring. No marker means native/local media."""
    lowered = text.lower()
    if any(marker in lowered for marker in YOUTUBE_HOST_MARKERS):
        return VideoPlatform.YOUTUBE
    if INSTAGRAM_HOST_MARKER in lowered:
        return VideoPlatform.INSTAGRAM
    if TIKTOK_HOST_MARKER in lowered:
        return VideoPlatform.TIKTOK
    return VideoPlatform.NATIVE


def clean_url(raw: Optional[str]) -> str:
    """
    Apply the per-platform cleaning rules.

    - Instagram/TikTok: query strings are dropped (their embeds reject
      tracking parameters).
    - Instagram: exactly one trailing slash (their embed widget needs it).
    - Everything else: trailing slashes removed.
    """
    if not raw:
        return ""
    cleaned = raw.strip()
    lowered = cleaned.lower()
    is_instagram = INSTAGRAM_HOST_MARKER in lowered

    if is_instagram or TIKTOK_HOST_MARKER in lowered:
        cleaned = cleaned.split("?", 1)[0]

    if is_instagram:
        cleaned = cleaned.rstrip("/") + "/"
    else:
        cleaned = cleaned.rstrip("/")
    return cleaned


def _first_path_token(text: str) -> str:
    return _PATH_TERMINATORS.split(text, 1)[0]


def _after_marker(path: str, marker: str) -> Optional[str]:
    if marker not in path:
        return None
    return _first_path_token(path.split(marker, 1)[1])


def extract_youtube_id(link: str) -> Optional[str]:
    """
    Pull the 11-character video id out of a YouTube link.

    Tried in order: ``/shorts/<id>``, ``?v=<id>``, ``youtu.be/<id>``,
    ``/embed/<id>``, ``/live/<id>``, then a pattern match for an id token
    anywhere in the string. Candidates that are not a well-formed id fall
    through to the next rule.
    """
    if not link:
        return None
    candidate_url = link if link.lower().startswith("http") else f"https://{link}"

    try:
        parts = urlsplit(candidate_url)
        path = parts.path
        query = parse_qs(parts.query)
        host = (parts.hostname or "").lower()
    except ValueError:
        parts = None

    if parts is not None:
        rules: List[Tuple[str, Callable[[], Optional[str]]]] = [
            ("shorts", lambda: _after_marker(path, "/shorts/")),
            ("watch", lambda: (query.get("v") or [None])[0]),
            ("short_host", lambda: _first_path_token(path[1:]) if "youtu.be" in host else None),
            ("embed", lambda: _after_marker(path, "/embed/")),
            ("live", lambda: _after_marker(path, "/live/")),
        ]
        for _name, rule in rules:
            candidate = rule()
            if candidate and _YOUTUBE_ID.match(candidate):
                return candidate

    match = _YOUTUBE_FALLBACK.search(link)
    return match.group(1) if match else None


def extract_tiktok_id(cleaned: str) -> str:
    """Last path segment of a TikTok link, used as the embed's video id."""
    last = cleaned.rstrip("/").split("/")[-1].split("?", 1)[0]
    return last or "tiktok-video"


def normalize(raw_input: Optional[str]) -> NormalizedVideoRef:
    """Derive a ``NormalizedVideoRef`` from a raw pasted string."""
    original = raw_input or ""
    cleaned = clean_url(original)
    platform = detect_platform(cleaned)

    if platform is VideoPlatform.YOUTUBE:
        video_id = extract_youtube_id(cleaned)
    elif platform is VideoPlatform.TIKTOK:
        video_id = extract_tiktok_id(cleaned)
    elif platform is VideoPlatform.INSTAGRAM:
        video_id = cleaned
    elif platform is VideoPlatform.NATIVE:
        video_id = cleaned or None
    else:  # pragma: no cover - closed enum
        raise AssertionError(f"Unhandled platform {platform!r}")

    return NormalizedVideoRef(
        original=original,
        cleaned=cleaned,
        platform=platform,
        video_id=video_id,
    )


def is_youtube_shorts(raw: Optional[str]) -> bool:
    """Shorts are portrait; the player switches to a 9:16 frame for them."""
    return "/shorts/" in (raw or "").lower()


def make_local_reference(name: str) -> str:
    """Reference for media that lives only in this process."""
    return f"{LOCAL_SCHEME}{uuid.uuid4().hex}/{name}"


def is_local_reference(url: Optional[str]) -> bool:
    return bool(url) and (url.startswith(LOCAL_SCHEME) or url.startswith("blob:"))


__all__ = [
    "VideoPlatform",
    "NormalizedVideoRef",
    "LOCAL_SCHEME",
    "detect_platform",
    "clean_url",
    "extract_youtube_id",
    "extract_tiktok_id",
    "normalize",
    "is_youtube_shorts",
    "make_local_reference",
    "is_local_reference",
]
