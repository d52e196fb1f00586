import base64
import binascii
import logging
import os
import threading
from functools import lru_cache
from typing import Any, Dict, List, Optional, Union
from urllib.parse import quote

from fastapi import Depends, FastAPI, File, Form, HTTPException, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from stylepass import state as st
from stylepass.capture import CaptureSessionManager, Region
from stylepass.config import describe_active_models
from stylepass.embeds import resolve_embed
from stylepass.encoder import EncodedPayload
from stylepass.errors import AnalysisError, CaptureBusyError, CaptureError, StudioError
from stylepass.exports import COMPARISON_FILENAME, EXPORT_KINDS, render_export, script_filename
from stylepass.gemini_service import GeminiService
from stylepass.history import MAX_COMPARE, MIN_COMPARE, HistoryStore
from stylepass.media import MediaBlob, guess_mime_type
from stylepass.orchestrator import AnalysisOrchestrator
from stylepass.roadmap import move_node
from stylepass.state import AppState
from stylepass.types import (
    ContentIdea,
    HistoryItem,
    RoadmapData,
    ScriptLine,
    StylePassport,
)
from stylepass.urls import is_local_reference, make_local_reference, normalize

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("api")

app = FastAPI(
    title="Style Passport Studio API",
    description="Short-form video style analysis",
    version="0.1.0",
)

origins = [
    "http://localhost:3000",
    "http://localhost:8501",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Shared services ---

@lru_cache(maxsize=1)
def get_service() -> GeminiService:
    return GeminiService()


@lru_cache(maxsize=1)
def get_history() -> HistoryStore:
    return HistoryStore()


@lru_cache(maxsize=1)
def get_capture_manager() -> CaptureSessionManager:
    return CaptureSessionManager()


def get_orchestrator(
    service: GeminiService = Depends(get_service),
    history: HistoryStore = Depends(get_history),
):
    orchestrator = AnalysisOrchestrator(service=service, history=history)
    try:
        yield orchestrator
    finally:
        orchestrator.close()


# Captures are started and stopped by separate requests; remember which
# platform and metrics the pending recording should be analysed with.
_capture_lock = threading.Lock()
_capture_context: Dict[str, Any] = {}


# --- Models ---

class MetricsInput(BaseModel):
    views: int = Field(default=0, ge=0)
    likes: int = Field(default=0, ge=0)
    comments: int = Field(default=0, ge=0)


class MediaAnalysisRequest(BaseModel):
    data: str
    mime_type: str = "video/mp4"
    platform: str = "instagram"
    metrics: MetricsInput = Field(default_factory=MetricsInput)
    video_url: Optional[str] = None


class UrlAnalysisRequest(BaseModel):
    url: str
    platform: str = "instagram"


class CaptureStartRequest(BaseModel):
    platform: str = "instagram"
    metrics: MetricsInput = Field(default_factory=MetricsInput)
    region: Optional[List[int]] = Field(default=None, min_length=4, max_length=4)


class AnalysisResponse(BaseModel):
    passport: StylePassport
    history_id: Optional[str] = None
    video_url: Optional[str] = None
    warning: Optional[str] = None


class CompareRequest(BaseModel):
    ids: List[str]


class CompareResponse(BaseModel):
    text: str


class ScriptRequest(BaseModel):
    topic: str
    history_id: Optional[str] = None


class RoadmapRequest(BaseModel):
    interest_a: str
    interest_b: str


class MoveNodeRequest(BaseModel):
    roadmap: RoadmapData
    node_id: str
    x: float
    y: float


class IdeasRequest(BaseModel):
    topic: str
    personalise: bool = True


class ExportRequest(BaseModel):
    content: Union[str, List[ScriptLine], Dict[str, Any]]
    kind: str = "txt"
    basename: Optional[str] = None
    topic: Optional[str] = None


# --- Helpers ---

def _state_for(platform: str, metrics: MetricsInput) -> AppState:
    try:
        state = st.change_platform(AppState(), platform)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return st.set_metrics(state, views=metrics.views, likes=metrics.likes, comments=metrics.comments)


def _analysis_response(state: AppState) -> AnalysisResponse:
    analysis = state.analysis
    # Requests start from a fresh state, so no passport means this attempt failed.
    if analysis.passport is None:
        raise HTTPException(status_code=502, detail=analysis.error or "Analysis failed.")
    return AnalysisResponse(
        passport=analysis.passport,
        history_id=analysis.history_id,
        video_url=None if is_local_reference(analysis.video_url) else analysis.video_url,
        warning=analysis.error,
    )


def _decode_payload(data: str, mime_type: str) -> EncodedPayload:
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="Media data is not valid base64")
    if not raw:
        raise HTTPException(status_code=400, detail="No media data to analyse.")
    base_mime = mime_type.split(";", 1)[0].strip() or "video/mp4"
    return EncodedPayload(data=data, mime_type=base_mime, byte_size=len(raw))


def _studio_error(e: StudioError) -> HTTPException:
    status = 502 if isinstance(e, AnalysisError) else 400
    return HTTPException(status_code=status, detail=e.user_message)


# --- Endpoints ---

@app.get("/api/status")
async def get_status(history: HistoryStore = Depends(get_history)):
    """Health check plus the size of the local history."""
    try:
        models = describe_active_models()
    except ValueError as e:
        logger.error(f"Status check failed: {e}")
        return {"status": "degraded", "error": str(e)}
    return {"status": "online", "history_items": len(history), "config": models, "version": app.version}


@app.get("/api/resolve")
async def resolve_url(url: str, origin: Optional[str] = None):
    ref = normalize(url)
    embed = resolve_embed(ref, origin)
    return {
        "original": ref.original,
        "cleaned": ref.cleaned,
        "platform": ref.platform.value,
        "video_id": ref.video_id,
        "resolved": ref.is_resolved,
        "embed_kind": embed.kind,
        "html": embed.to_html(),
    }


@app.post("/api/analyze/media", response_model=AnalysisResponse)
def analyze_media(
    request: MediaAnalysisRequest,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """Analyse base64-encoded media sent by the client."""
    payload = _decode_payload(request.data, request.mime_type)
    state = _state_for(request.platform, request.metrics)
    video_url = request.video_url or make_local_reference("upload")
    state = orchestrator.analyze_media_into(state, payload, video_url)
    return _analysis_response(state)


@app.post("/api/analyze/upload", response_model=AnalysisResponse)
def analyze_upload(
    file: UploadFile = File(...),
    platform: str = Form("instagram"),
    views: int = Form(0),
    likes: int = Form(0),
    comments: int = Form(0),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    data = file.file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    name = file.filename or "upload"
    mime_type = file.content_type if (file.content_type or "").startswith("video/") else guess_mime_type(name)
    try:
        metrics = MetricsInput(views=views, likes=likes, comments=comments)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    state = _state_for(platform, metrics)
    logger.info(f"Received upload {name} ({len(data)} bytes, {mime_type})")
    state = orchestrator.analyze_blob_into(state, MediaBlob(data=data, mime_type=mime_type, name=name))
    return _analysis_response(state)


@app.post("/api/analyze/url", response_model=AnalysisResponse)
def analyze_url(
    request: UrlAnalysisRequest,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """Search-based analysis of a platform link."""
    if normalize(request.url).is_empty:
        raise HTTPException(status_code=400, detail="A video link is required")
    state = _state_for(request.platform, MetricsInput())
    state = orchestrator.analyze_reference_into(state, request.url)
    return _analysis_response(state)


@app.get("/api/capture")
async def capture_status(manager: CaptureSessionManager = Depends(get_capture_manager)):
    session = manager.current_session
    return {
        "recording": manager.is_recording,
        "state": session.state.value if session else "idle",
        "mime_type": session.mime_type if session else None,
        "chunks": len(session.chunks) if session else 0,
    }


@app.post("/api/capture/start")
def start_capture(
    request: CaptureStartRequest,
    manager: CaptureSessionManager = Depends(get_capture_manager),
):
    state = _state_for(request.platform, request.metrics)
    region = Region(*request.region) if request.region else None
    try:
        session = manager.start(region)
    except CaptureError as e:
        logger.error(f"Error starting capture: {e}")
        status = 409 if isinstance(e, CaptureBusyError) else 400
        raise HTTPException(status_code=status, detail=e.user_message)
    with _capture_lock:
        _capture_context["state"] = state
    return {"recording": True, "mime_type": session.mime_type}


@app.post("/api/capture/stop", response_model=Optional[AnalysisResponse])
def stop_capture(
    manager: CaptureSessionManager = Depends(get_capture_manager),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
):
    """Finalise the recording and analyse it. Returns null when nothing was recording."""
    with _capture_lock:
        state = _capture_context.pop("state", None) or AppState()
    state = st.set_recording(state, True)
    state = orchestrator.stop_capture(state, manager)
    if state.analysis.passport is None and not state.analysis.error:
        return None
    return _analysis_response(state)


@app.get("/api/history", response_model=List[HistoryItem])
async def list_history(history: HistoryStore = Depends(get_history)):
    return list(history.items)


@app.get("/api/history/{item_id}", response_model=HistoryItem)
async def get_history_item(item_id: str, history: HistoryStore = Depends(get_history)):
    item = history.get(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="History item not found")
    return item


@app.delete("/api/history/{item_id}")
async def delete_history_item(item_id: str, history: HistoryStore = Depends(get_history)):
    if not history.delete(item_id):
        raise HTTPException(status_code=404, detail="History item not found")
    return {"deleted": item_id}


@app.post("/api/history/compare", response_model=CompareResponse)
def compare_history(
    request: CompareRequest,
    service: GeminiService = Depends(get_service),
    history: HistoryStore = Depends(get_history),
):
    ids = list(dict.fromkeys(request.ids))
    if not MIN_COMPARE <= len(ids) <= MAX_COMPARE:
        raise HTTPException(
            status_code=400,
            detail=f"Select between {MIN_COMPARE} and {MAX_COMPARE} items to compare",
        )
    items = history.select(ids)
    if len(items) != len(ids):
        raise HTTPException(status_code=404, detail="History item not found")
    try:
        return CompareResponse(text=service.compare_videos(items))
    except StudioError as e:
        raise _studio_error(e)


@app.post("/api/scripts", response_model=List[ScriptLine])
def generate_script(
    request: ScriptRequest,
    service: GeminiService = Depends(get_service),
    history: HistoryStore = Depends(get_history),
):
    item = history.get(request.history_id) if request.history_id else history.latest()
    if item is None:
        raise HTTPException(status_code=404, detail="No analysis to base the script on")
    try:
        return service.generate_script(request.topic, item.passport)
    except StudioError as e:
        raise _studio_error(e)


@app.post("/api/roadmap", response_model=RoadmapData, response_model_by_alias=True)
def generate_roadmap(request: RoadmapRequest, service: GeminiService = Depends(get_service)):
    if not request.interest_a.strip() or not request.interest_b.strip():
        raise HTTPException(status_code=400, detail="Both interests are required")
    try:
        return service.generate_interest_map(request.interest_a, request.interest_b)
    except StudioError as e:
        raise _studio_error(e)


@app.post("/api/roadmap/move", response_model=RoadmapData, response_model_by_alias=True)
async def move_roadmap_node(request: MoveNodeRequest):
    return move_node(request.roadmap, request.node_id, request.x, request.y)


@app.post("/api/ideas", response_model=List[ContentIdea])
def generate_ideas(
    request: IdeasRequest,
    service: GeminiService = Depends(get_service),
    history: HistoryStore = Depends(get_history),
):
    latest = history.latest() if request.personalise else None
    try:
        return service.generate_content_ideas(request.topic, latest.passport if latest else None)
    except StudioError as e:
        raise _studio_error(e)


@app.post("/api/export")
async def export_content(request: ExportRequest):
    if request.kind not in EXPORT_KINDS:
        raise HTTPException(status_code=400, detail=f"kind must be one of {', '.join(EXPORT_KINDS)}")
    if request.basename:
        basename = request.basename
    elif request.topic:
        basename = script_filename(request.topic)
    else:
        basename = COMPARISON_FILENAME
    export = render_export(request.content, request.kind, basename)
    return Response(
        content=export.data.encode("utf-8"),
        media_type=export.mime_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(export.filename)}"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
