"""
Analysis orchestration: turn a capture, an upload or a pasted link into a
style passport and fold the outcome back into application state.

``analyze`` is the raw contract (passport or exception). The ``*_into``
helpers wrap it for the UI: the in-flight flag is set and cleared, failures
become a dismissable error string, successes land in history and switch the
view to the dashboard. Nothing is retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from . import state as st
from .capture import CaptureSessionManager, Region
from .encoder import EncodedPayload, MediaEncoder
from .errors import CaptureError, StudioError
from .gemini_service import GeminiService
from .history import HistoryStore
from .media import MediaBlob
from .state import AppState
from .types import EngagementMetrics, StylePassport
from .urls import is_local_reference, make_local_reference, normalize

logger = logging.getLogger(__name__)

MEDIA_FAILURE_TEXT = "Analysis failed."
SEARCH_FAILURE_TEXT = "Search returned no results."
HISTORY_FAILURE_TEXT = "Analysis finished but could not be saved to history."


@dataclass(frozen=True)
class AnalysisRequest:
    """One analysis attempt: encoded media or a reference URL, never both."""

    platform: str
    payload: Optional[EncodedPayload] = None
    url: Optional[str] = None
    metrics: Optional[EngagementMetrics] = None

    def __post_init__(self):
        if (self.payload is None) == (self.url is None):
            raise ValueError("An analysis request needs exactly one of payload or url.")

    @property
    def is_media(self) -> bool:
        return self.payload is not None


class AnalysisOrchestrator:
    def __init__(
        self,
        service: Optional[GeminiService] = None,
        history: Optional[HistoryStore] = None,
        encoder: Optional[MediaEncoder] = None,
    ):
        self.service = service or GeminiService()
        self.history = history if history is not None else HistoryStore()
        self.encoder = encoder or MediaEncoder()

    def analyze(self, request: AnalysisRequest) -> StylePassport:
        if request.is_media:
            return self.service.analyze_video(request.payload, request.metrics)
        return self.service.analyze_via_search(request.url, request.platform)

    def _run(
        self,
        state: AppState,
        request_factory: Callable[[], AnalysisRequest],
        video_url: Optional[str],
        fallback_message: str,
    ) -> AppState:
        state = st.begin_analysis(state, video_url)
        try:
            request = request_factory()
            passport = self.analyze(request)
        except StudioError as exc:
            logger.warning("Analysis failed: %s", exc)
            return st.analysis_failed(state, exc.user_message or fallback_message)

        persisted_url = None if is_local_reference(video_url) else video_url
        try:
            item = self.history.add(passport, persisted_url, state.platform)
        except OSError as exc:
            logger.error("Could not save analysis to history: %s", exc)
            return st.show_error(st.analysis_succeeded(state, passport), HISTORY_FAILURE_TEXT)
        logger.info("Analysis stored in history (%s)", state.platform)
        return st.analysis_succeeded(state, passport, item.id)

    # -- media mode ----------------------------------------------------------

    def analyze_media_into(
        self, state: AppState, payload: EncodedPayload, video_url: Optional[str] = None
    ) -> AppState:
        """Analyse already-encoded media using the metrics currently entered."""
        return self._run(
            state,
            lambda: AnalysisRequest(platform=state.platform, payload=payload, metrics=state.metrics),
            video_url,
            MEDIA_FAILURE_TEXT,
        )

    def analyze_blob_into(
        self, state: AppState, blob: MediaBlob, video_url: Optional[str] = None
    ) -> AppState:
        payload = self.encoder.encode(blob)
        return self.analyze_media_into(state, payload, video_url or make_local_reference(blob.name))

    def analyze_file_into(
        self, state: AppState, path: str, mime_type: Optional[str] = None
    ) -> AppState:
        try:
            payload = self.encoder.encode_file(path, mime_type)
        except (OSError, ValueError) as exc:
            logger.warning("Could not read upload %s: %s", path, exc)
            return st.show_error(state, str(exc))
        return self.analyze_media_into(state, payload, make_local_reference(Path(path).name))

    # -- reference mode ------------------------------------------------------

    def analyze_reference_into(self, state: AppState, url: Optional[str] = None) -> AppState:
        """Search-based analysis of the pasted link. No-op when nothing was pasted."""
        raw = url if url is not None else state.url_input
        ref = normalize(raw)
        if ref.is_empty:
            return state
        return self._run(
            state,
            lambda: AnalysisRequest(platform=state.platform, url=ref.cleaned),
            ref.cleaned,
            SEARCH_FAILURE_TEXT,
        )

    # -- capture -------------------------------------------------------------

    def start_capture(
        self, state: AppState, manager: CaptureSessionManager, region: Optional[Region] = None
    ) -> AppState:
        try:
            manager.start(region)
        except CaptureError as exc:
            logger.error("Error starting capture: %s", exc)
            return st.set_recording(st.show_error(state, exc.user_message), False)
        return st.set_recording(st.dismiss_error(state), True)

    def stop_capture(self, state: AppState, manager: CaptureSessionManager) -> AppState:
        """Finalise the capture and analyse it. Harmless when nothing is recording."""
        try:
            blob = manager.stop()
        except CaptureError as exc:
            return st.show_error(st.set_recording(state, False), exc.user_message)
        state = st.set_recording(state, False)
        if blob is None:
            return state
        if blob.size == 0:
            return st.show_error(state, "The capture produced no video data.")
        return self.analyze_blob_into(state, blob)

    def close(self) -> None:
        self.encoder.close()


def ensure_orchestrator(
    existing: Optional[AnalysisOrchestrator],
    service: GeminiService,
    history: HistoryStore,
) -> AnalysisOrchestrator:
    """
    Reuse ``existing`` while it is wired to this service and history.

    A changed service (new API key or model) or history replaces it, and the
    old orchestrator is closed so its encoder threads do not leak.
    """
    if existing is not None and existing.service is service and existing.history is history:
        return existing
    if existing is not None:
        logger.info("Analysis service changed; rebuilding the orchestrator.")
        existing.close()
    return AnalysisOrchestrator(service=service, history=history)


__all__ = [
    "AnalysisRequest",
    "AnalysisOrchestrator",
    "ensure_orchestrator",
    "HISTORY_FAILURE_TEXT",
    "MEDIA_FAILURE_TEXT",
    "SEARCH_FAILURE_TEXT",
]
