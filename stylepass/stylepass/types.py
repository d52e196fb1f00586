"""
Type definitions for the style passport studio.

The inference contract is expressed as pydantic models: responses from the
backend are validated against them and anything that does not conform is
rejected as a whole. History items wrap a passport for local persistence.
"""

from __future__ import annotations

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SegmentType = Literal["Hook", "Body", "Climax", "CTA", "Bridge"]
NodeType = Literal["core", "intersection", "related"]
Platform = Literal["youtube", "tiktok", "instagram"]

SEGMENT_TYPES: List[str] = ["Hook", "Body", "Climax", "CTA", "Bridge"]
PLATFORMS: List[str] = ["youtube", "tiktok", "instagram"]

TIME_RANGE_PATTERN = r"^\d{1,2}:\d{2}\s*[-–]\s*\d{1,2}:\d{2}$"


# ---------------------------------------------------------------------------
# Style Passport
# ---------------------------------------------------------------------------

class EmotionalAxis(BaseModel):
    """One axis of the emotional breakdown, scored 0-100."""

    label: str
    score: float = Field(ge=0, le=100)


class StyleMetrics(BaseModel):
    words_per_minute: float = Field(ge=0)
    dominant_emotion: str
    emotional_spectrum: List[EmotionalAxis]
    signature_phrases: List[str]


class VideoSegment(BaseModel):
    time_range: str = Field(pattern=TIME_RANGE_PATTERN)
    segment_type: SegmentType
    description: str


class EngagementMetrics(BaseModel):
    """
    Audience numbers for a video.

    Used both for user-supplied counts (rate and score absent) and for the
    backend's answer. Backend values are unverified: when the counts were read
    off the screen they are a best effort, not ground truth.
    """

    views: int = Field(default=0, ge=0)
    likes: int = Field(default=0, ge=0)
    comments: int = Field(default=0, ge=0)
    engagement_rate: Optional[str] = None
    virality_score: Optional[float] = Field(default=None, ge=0, le=100)

    @field_validator("engagement_rate", mode="before")
    @classmethod
    def _rate_to_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return f"{value}%"
        return value

    @property
    def has_values(self) -> bool:
        return self.views > 0 or self.likes > 0 or self.comments > 0


class StylePassport(BaseModel):
    creator_profile_summary: str
    retention_formula_insights: List[str]
    style_metrics: StyleMetrics
    video_structure: List[VideoSegment]
    engagement_metrics: Optional[EngagementMetrics] = None


# ---------------------------------------------------------------------------
# Downstream tools
# ---------------------------------------------------------------------------

class ScriptLine(BaseModel):
    time_range: str
    visual: str
    audio: str


class RoadmapNode(BaseModel):
    id: str
    label: str
    description: str
    type: NodeType
    x: float
    y: float


class RoadmapEdge(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    source: str = Field(alias="from")
    target: str = Field(alias="to")


class RoadmapData(BaseModel):
    nodes: List[RoadmapNode] = Field(default_factory=list)
    edges: List[RoadmapEdge] = Field(default_factory=list)


class ContentIdea(BaseModel):
    title: str
    hook: str
    format: str
    why_it_works: str


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------

class HistoryItem(BaseModel):
    """A past analysis. ``video_url`` is None for process-local media."""

    id: str
    timestamp: int
    passport: StylePassport
    video_url: Optional[str] = None
    platform: str
    thumbnail: Optional[str] = None


__all__ = [
    "SegmentType",
    "NodeType",
    "Platform",
    "SEGMENT_TYPES",
    "PLATFORMS",
    "EmotionalAxis",
    "StyleMetrics",
    "VideoSegment",
    "EngagementMetrics",
    "StylePassport",
    "ScriptLine",
    "RoadmapNode",
    "RoadmapEdge",
    "RoadmapData",
    "ContentIdea",
    "HistoryItem",
]
