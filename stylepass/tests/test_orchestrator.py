from unittest.mock import MagicMock

import pytest

from stylepass import state as st
from stylepass.encoder import EncodedPayload
from stylepass.errors import (
    AnalysisError,
    CapturePermissionError,
    PassportSchemaError,
)
from stylepass.history import HistoryStore, LocalStore
from stylepass.media import MediaBlob
from stylepass.orchestrator import (
    HISTORY_FAILURE_TEXT,
    AnalysisOrchestrator,
    AnalysisRequest,
    ensure_orchestrator,
)
from stylepass.state import AppState


PAYLOAD = EncodedPayload(data="YWJj", mime_type="video/mp4", byte_size=3)


class FakeCaptureManager:
    def __init__(self, blob=None, start_error=None):
        self.blob = blob
        self.start_error = start_error
        self.started_with = []

    def start(self, region=None):
        if self.start_error is not None:
            raise self.start_error
        self.started_with.append(region)

    def stop(self):
        return self.blob


@pytest.fixture
def history(tmp_path):
    return HistoryStore(store=LocalStore(tmp_path), capacity=20)


@pytest.fixture
def service(passport):
    service = MagicMock()
    service.analyze_video.return_value = passport
    service.analyze_via_search.return_value = passport
    return service


@pytest.fixture
def orchestrator(service, history):
    orchestrator = AnalysisOrchestrator(service=service, history=history)
    yield orchestrator
    orchestrator.close()


def test_request_needs_exactly_one_source():
    with pytest.raises(ValueError):
        AnalysisRequest(platform="youtube")
    with pytest.raises(ValueError):
        AnalysisRequest(platform="youtube", payload=PAYLOAD, url="https://youtu.be/x")
    assert AnalysisRequest(platform="youtube", payload=PAYLOAD).is_media


def test_media_success_switches_to_dashboard_and_records_history(orchestrator, service, history, passport):
    state = st.set_metrics(AppState(platform="tiktok"), views=500)
    result = orchestrator.analyze_media_into(state, PAYLOAD, "https://www.tiktok.com/@a/video/1")

    assert result.view == "dashboard"
    assert result.analysis.passport == passport
    assert not result.analysis.is_analyzing
    assert result.analysis.error is None
    service.analyze_video.assert_called_once_with(PAYLOAD, state.metrics)
    assert len(history) == 1
    assert history.latest().platform == "tiktok"
    assert history.latest().video_url == "https://www.tiktok.com/@a/video/1"
    assert result.analysis.history_id == history.latest().id


def test_invalid_result_keeps_previous_passport(orchestrator, service, history, passport):
    previous = st.analysis_succeeded(AppState(), passport)
    service.analyze_video.side_effect = PassportSchemaError("bad json", "not json")

    result = orchestrator.analyze_media_into(previous, PAYLOAD)

    assert result.analysis.error == "Analysis failed: the model returned an invalid result."
    assert result.analysis.passport is passport
    assert not result.analysis.is_analyzing
    assert len(history) == 0


def test_backend_error_message_is_surfaced(orchestrator, service):
    service.analyze_via_search.side_effect = AnalysisError("quota exceeded")
    result = orchestrator.analyze_reference_into(AppState(url_input="https://youtu.be/dQw4w9WgXcQ"))
    assert result.analysis.error == "quota exceeded"
    assert result.view == "upload"


def test_blob_analysis_keeps_local_reference_out_of_history(orchestrator, service, history):
    blob = MediaBlob(data=b"webm-bytes", mime_type="video/webm; codecs=vp9", name="capture.webm")
    result = orchestrator.analyze_blob_into(AppState(), blob)

    assert result.analysis.video_url.startswith("local://")
    payload = service.analyze_video.call_args[0][0]
    assert payload.mime_type == "video/webm"
    assert payload.decode() == b"webm-bytes"
    assert history.latest().video_url is None


def test_file_analysis(orchestrator, history, tmp_path):
    path = tmp_path / "clip.mp4"
    path.write_bytes(b"mp4")
    result = orchestrator.analyze_file_into(AppState(), str(path))
    assert result.view == "dashboard"
    assert result.analysis.video_url.endswith("/clip.mp4")
    assert history.latest().video_url is None


def test_unreadable_file_becomes_an_error(orchestrator, service, tmp_path):
    result = orchestrator.analyze_file_into(AppState(), str(tmp_path / "missing.mp4"))
    assert "not found" in result.analysis.error
    service.analyze_video.assert_not_called()


def test_reference_analysis_uses_cleaned_url(orchestrator, service, history):
    state = AppState(platform="instagram", url_input=" https://www.instagram.com/reel/Cxyz/?igsh=1 ")
    result = orchestrator.analyze_reference_into(state)

    service.analyze_via_search.assert_called_once_with(
        "https://www.instagram.com/reel/Cxyz/", "instagram"
    )
    assert result.analysis.video_url == "https://www.instagram.com/reel/Cxyz/"
    assert history.latest().video_url == "https://www.instagram.com/reel/Cxyz/"


def test_empty_reference_is_a_no_op(orchestrator, service):
    state = AppState(url_input="   ")
    assert orchestrator.analyze_reference_into(state) is state
    service.analyze_via_search.assert_not_called()


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------

def test_start_capture_sets_recording(orchestrator):
    manager = FakeCaptureManager()
    result = orchestrator.start_capture(st.show_error(AppState(), "old"), manager)
    assert result.is_recording
    assert result.is_busy
    assert result.analysis.error is None
    assert manager.started_with == [None]


def test_start_capture_failure_shows_message(orchestrator):
    manager = FakeCaptureManager(start_error=CapturePermissionError("denied"))
    result = orchestrator.start_capture(AppState(), manager)
    assert not result.is_recording
    assert "Please allow screen recording" in result.analysis.error


def test_stop_capture_analyses_the_recording(orchestrator, service, passport):
    manager = FakeCaptureManager(blob=MediaBlob(data=b"abc", mime_type="video/webm"))
    recording = st.set_recording(AppState(), True)

    result = orchestrator.stop_capture(recording, manager)

    assert not result.is_recording
    assert result.analysis.passport == passport
    service.analyze_video.assert_called_once()


def test_stop_capture_without_recording_is_harmless(orchestrator, service):
    state = st.set_recording(AppState(), True)
    result = orchestrator.stop_capture(state, FakeCaptureManager(blob=None))
    assert not result.is_recording
    assert result.analysis.error is None
    service.analyze_video.assert_not_called()


def test_stop_capture_with_empty_recording(orchestrator, service):
    manager = FakeCaptureManager(blob=MediaBlob(data=b"", mime_type="video/webm"))
    result = orchestrator.stop_capture(st.set_recording(AppState(), True), manager)
    assert result.analysis.error == "The capture produced no video data."
    service.analyze_video.assert_not_called()


class ReadOnlyStore(LocalStore):
    def set(self, key, value):
        raise PermissionError("read-only data dir")


def test_history_write_failure_still_shows_the_passport(service, passport, tmp_path):
    history = HistoryStore(store=ReadOnlyStore(tmp_path), capacity=20)
    orchestrator = AnalysisOrchestrator(service=service, history=history)
    try:
        result = orchestrator.analyze_media_into(AppState(), PAYLOAD, "https://youtu.be/x")
    finally:
        orchestrator.close()

    assert not result.analysis.is_analyzing
    assert result.analysis.passport == passport
    assert result.analysis.history_id is None
    assert result.analysis.error == HISTORY_FAILURE_TEXT
    assert result.view == "dashboard"
    assert len(history) == 0


def test_each_result_names_its_own_history_entry(orchestrator, history):
    first = orchestrator.analyze_reference_into(AppState(), "https://youtu.be/first")
    second = orchestrator.analyze_reference_into(AppState(), "https://youtu.be/second")

    assert first.analysis.history_id != second.analysis.history_id
    assert history.get(first.analysis.history_id).video_url == "https://youtu.be/first"
    assert history.get(second.analysis.history_id).video_url == "https://youtu.be/second"


def test_failed_reanalysis_keeps_the_shown_entry(orchestrator, service, history):
    shown = orchestrator.analyze_reference_into(AppState(), "https://youtu.be/first")
    service.analyze_via_search.side_effect = AnalysisError("boom")
    failed = orchestrator.analyze_reference_into(shown, "https://youtu.be/second")

    assert failed.analysis.error
    assert failed.analysis.history_id == shown.analysis.history_id
    assert len(history) == 1


def test_ensure_orchestrator_reuses_while_wiring_is_unchanged(service, history):
    existing = AnalysisOrchestrator(service=service, history=history)
    try:
        assert ensure_orchestrator(existing, service, history) is existing
    finally:
        existing.close()


def test_ensure_orchestrator_rebuilds_for_a_new_service(service, history):
    stale = MagicMock(service=service, history=history)
    fresh_service = MagicMock()

    rebuilt = ensure_orchestrator(stale, fresh_service, history)
    try:
        assert rebuilt is not stale
        assert rebuilt.service is fresh_service
        assert rebuilt.history is history
        stale.close.assert_called_once_with()
    finally:
        rebuilt.close()


def test_ensure_orchestrator_builds_when_missing(service, history):
    built = ensure_orchestrator(None, service, history)
    try:
        assert built.service is service
    finally:
        built.close()
