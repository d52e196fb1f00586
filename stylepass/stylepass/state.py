"""
Application state for the studio.

State is an immutable value. Every user action is a function that takes the
current ``AppState`` and returns the next one, so the UI layers (Streamlit
session, API, CLI) only ever swap one value for another.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional

from .types import EngagementMetrics, StylePassport

VIEWS = ("upload", "dashboard", "generate", "history", "roadmap")
THEMES = ("dark", "light", "chechen")
PLATFORMS = ("youtube", "tiktok", "instagram")
ANALYSIS_METHODS = ("vision", "search")

# Views that render the current passport and make no sense without one.
PASSPORT_VIEWS = frozenset({"dashboard", "generate"})


@dataclass(frozen=True)
class AnalysisState:
    is_analyzing: bool = False
    passport: Optional[StylePassport] = None
    video_url: Optional[str] = None
    error: Optional[str] = None
    history_id: Optional[str] = None


@dataclass(frozen=True)
class AppState:
    view: str = "upload"
    theme: str = "dark"
    platform: str = "instagram"
    analysis_method: str = "vision"
    url_input: str = ""
    metrics: EngagementMetrics = field(default_factory=EngagementMetrics)
    analysis: AnalysisState = field(default_factory=AnalysisState)
    is_recording: bool = False

    @property
    def is_busy(self) -> bool:
        """Analyze and capture controls are disabled while this is True."""
        return self.analysis.is_analyzing or self.is_recording


def _check(value: str, allowed: tuple, what: str) -> str:
    if value not in allowed:
        raise ValueError(f"Unknown {what} {value!r}; expected one of {', '.join(allowed)}")
    return value


def set_view(state: AppState, view: str) -> AppState:
    """Switch views. Passport views are refused until an analysis exists."""
    _check(view, VIEWS, "view")
    if view in PASSPORT_VIEWS and state.analysis.passport is None:
        return state
    return replace(state, view=view)


def set_theme(state: AppState, theme: str) -> AppState:
    return replace(state, theme=_check(theme, THEMES, "theme"))


def set_analysis_method(state: AppState, method: str) -> AppState:
    return replace(state, analysis_method=_check(method, ANALYSIS_METHODS, "analysis method"))


def change_platform(state: AppState, platform: str) -> AppState:
    """Switching platform drops the pasted link so it cannot be analysed under the wrong one."""
    _check(platform, PLATFORMS, "platform")
    return replace(
        state,
        platform=platform,
        url_input="",
        analysis=replace(state.analysis, video_url=None, error=None),
    )


def set_url_input(state: AppState, url_input: str) -> AppState:
    return replace(state, url_input=url_input or "")


def set_metrics(
    state: AppState,
    views: Optional[int] = None,
    likes: Optional[int] = None,
    comments: Optional[int] = None,
) -> AppState:
    updates = {
        name: value
        for name, value in (("views", views), ("likes", likes), ("comments", comments))
        if value is not None
    }
    merged = state.metrics.model_dump()
    merged.update(updates)
    return replace(state, metrics=EngagementMetrics(**merged))


def begin_analysis(state: AppState, video_url: Optional[str]) -> AppState:
    return replace(
        state,
        analysis=replace(state.analysis, is_analyzing=True, error=None, video_url=video_url),
    )


def analysis_succeeded(
    state: AppState, passport: StylePassport, history_id: Optional[str] = None
) -> AppState:
    """Show the new passport. ``history_id`` names the entry it was saved as, if any."""
    return replace(
        state,
        view="dashboard",
        analysis=replace(state.analysis, is_analyzing=False, passport=passport, history_id=history_id),
    )


def analysis_failed(state: AppState, message: str) -> AppState:
    """Record a failure. The previous passport, if any, stays in place."""
    return replace(state, analysis=replace(state.analysis, is_analyzing=False, error=message))


def dismiss_error(state: AppState) -> AppState:
    return replace(state, analysis=replace(state.analysis, error=None))


def set_recording(state: AppState, is_recording: bool) -> AppState:
    return replace(state, is_recording=is_recording)


def show_error(state: AppState, message: str) -> AppState:
    """Surface an error that is not tied to an analysis attempt (capture start)."""
    return replace(state, analysis=replace(state.analysis, error=message))


def open_history_item(
    state: AppState,
    passport: StylePassport,
    video_url: Optional[str],
    history_id: Optional[str] = None,
) -> AppState:
    return replace(
        state,
        view="dashboard",
        analysis=AnalysisState(passport=passport, video_url=video_url, history_id=history_id),
    )


__all__ = [
    "VIEWS",
    "THEMES",
    "PLATFORMS",
    "ANALYSIS_METHODS",
    "AnalysisState",
    "AppState",
    "set_view",
    "set_theme",
    "set_analysis_method",
    "change_platform",
    "set_url_input",
    "set_metrics",
    "begin_analysis",
    "analysis_succeeded",
    "analysis_failed",
    "dismiss_error",
    "set_recording",
    "show_error",
    "open_history_item",
]
