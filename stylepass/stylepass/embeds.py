"""
Player embeds for normalised video references.

Each platform gets the markup its own embed widget expects. The widget
scripts themselves (Instagram ``embed.js``, TikTok ``embed.js``) are black
boxes: we only say which script to load and the front end triggers it.
"""

from __future__ import annotations

import html
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

from .urls import NormalizedVideoRef, VideoPlatform, normalize

YOUTUBE_EMBED_BASE = "https://www.youtube.com/embed/"
YOUTUBE_ALLOW = (
    "accelerometer; autoplay; clipboard-write; encrypted-media; gyroscope; "
    "picture-in-picture; web-share"
)
INSTAGRAM_EMBED_SCRIPT = "//www.instagram.com/embed.js"
INSTAGRAM_EMBED_VERSION = "14"
TIKTOK_EMBED_SCRIPT = "https://www.tiktok.com/embed.js"


@dataclass(frozen=True)
class PlayerEmbed:
    """What the front end should render for a reference."""

    kind: str  # "iframe" | "instagram" | "tiktok" | "video" | "unresolved" | "empty"
    platform: VideoPlatform
    src: Optional[str] = None
    video_id: Optional[str] = None
    script_src: Optional[str] = None

    def to_html(self) -> str:
        return render_html(self)


def youtube_embed_url(video_id: str, origin: Optional[str] = None) -> str:
    params = {"autoplay": "0", "rel": "0", "playsinline": "1"}
    if origin:
        params["origin"] = origin
    return f"{YOUTUBE_EMBED_BASE}{video_id}?{urlencode(params)}"


def resolve_embed(ref: NormalizedVideoRef, origin: Optional[str] = None) -> PlayerEmbed:
    """Map a reference to a player description, one branch per platform."""
    if ref.is_empty:
        return PlayerEmbed(kind="empty", platform=ref.platform)

    platform = ref.platform
    if platform is VideoPlatform.YOUTUBE:
        if ref.video_id is None:
            return PlayerEmbed(kind="unresolved", platform=platform, src=ref.cleaned)
        return PlayerEmbed(
            kind="iframe",
            platform=platform,
            src=youtube_embed_url(ref.video_id, origin),
            video_id=ref.video_id,
        )
    if platform is VideoPlatform.INSTAGRAM:
        return PlayerEmbed(
            kind="instagram",
            platform=platform,
            src=ref.cleaned,
            script_src=INSTAGRAM_EMBED_SCRIPT,
        )
    if platform is VideoPlatform.TIKTOK:
        return PlayerEmbed(
            kind="tiktok",
            platform=platform,
            src=ref.cleaned,
            video_id=ref.video_id,
            script_src=TIKTOK_EMBED_SCRIPT,
        )
    if platform is VideoPlatform.NATIVE:
        return PlayerEmbed(kind="video", platform=platform, src=ref.cleaned)
    raise AssertionError(f"Unhandled platform {platform!r}")


def embed_for_url(raw: Optional[str], origin: Optional[str] = None) -> PlayerEmbed:
    return resolve_embed(normalize(raw), origin)


def render_html(embed: PlayerEmbed) -> str:
    """HTML snippet for an embed. Attribute values are escaped."""
    src = html.escape(embed.src or "", quote=True)
    if embed.kind == "iframe":
        return (
            f'<iframe src="{src}" title="YouTube video player" frameborder="0" '
            f'allow="{YOUTUBE_ALLOW}" allowfullscreen '
            f'referrerpolicy="strict-origin-when-cross-origin"></iframe>'
        )
    if embed.kind == "instagram":
        return (
            f'<blockquote class="instagram-media" data-instgrm-permalink="{src}" '
            f'data-instgrm-version="{INSTAGRAM_EMBED_VERSION}">'
            f'<a href="{src}" target="_blank" rel="noopener">View on Instagram</a>'
            f"</blockquote>"
            f'<script async src="{embed.script_src}"></script>'
        )
    if embed.kind == "tiktok":
        video_id = html.escape(embed.video_id or "", quote=True)
        return (
            f'<blockquote class="tiktok-embed" cite="{src}" data-video-id="{video_id}">'
            f'<section><a target="_blank" href="{src}">{src}</a></section>'
            f"</blockquote>"
            f'<script async src="{embed.script_src}"></script>'
        )
    if embed.kind == "video":
        return f'<video src="{src}" controls playsinline></video>'
    if embed.kind == "unresolved":
        return '<div class="player-error">Could not resolve the video link.</div>'
    return '<div class="player-empty">No video selected.</div>'


__all__ = [
    "PlayerEmbed",
    "youtube_embed_url",
    "resolve_embed",
    "embed_for_url",
    "render_html",
]
