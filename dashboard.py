import os
import tempfile
import time
from pathlib import Path

import dotenv
import streamlit as st
import streamlit.components.v1 as components

from stylepass import config as studio_config
from stylepass import state as app
from stylepass.capture import CaptureSessionManager
from stylepass.embeds import resolve_embed
from stylepass.errors import StudioError
from stylepass.exports import COMPARISON_FILENAME, EXPORT_KINDS, render_export, script_filename
from stylepass.gemini_service import GeminiService
from stylepass.history import ComparisonSelection, HistoryStore
from stylepass.media import VIDEO_EXTENSIONS, ffmpeg_available
from stylepass.orchestrator import AnalysisOrchestrator, ensure_orchestrator
from stylepass.roadmap import PREDEFINED_CATEGORIES, move_node
from stylepass.state import AppState
from stylepass.urls import is_youtube_shorts, normalize

# --- Config & Setup ---
st.set_page_config(
    page_title="Style Passport Studio",
    page_icon="🎬",
    layout="wide",
    initial_sidebar_state="expanded",
)

ENV_PATH = Path(".env")

if not ENV_PATH.exists():
    ENV_PATH.touch()

THEME_CSS = {
    "dark": {"bg": "#0b0b0f", "card": "#15151c", "text": "#f5f5f7", "accent": "#3b82f6"},
    "light": {"bg": "#f7f7fa", "card": "#ffffff", "text": "#111114", "accent": "#2563eb"},
    "chechen": {"bg": "#00331c", "card": "#00733e", "text": "#fff8dc", "accent": "#ffd700"},
}

VIEW_LABELS = {
    "upload": "📤 Upload",
    "dashboard": "📊 Dashboard",
    "generate": "✍️ Script Generator",
    "history": "🕘 History",
    "roadmap": "🧭 Interest Map",
}


def load_env_vars():
    """Reload environment variables from file."""
    dotenv.load_dotenv(ENV_PATH, override=True)


def save_env_var(key: str, value: str):
    """Update a single key in the .env file and drop cached config."""
    dotenv.set_key(ENV_PATH, key, value)
    load_env_vars()
    studio_config.clear_config_caches()
    get_service.clear()


@st.cache_resource
def get_service() -> GeminiService:
    return GeminiService()


@st.cache_resource
def get_history() -> HistoryStore:
    return HistoryStore()


@st.cache_resource
def get_capture_manager() -> CaptureSessionManager:
    return CaptureSessionManager()


def get_orchestrator() -> AnalysisOrchestrator:
    # Rebuilt whenever save_env_var dropped the cached service.
    st.session_state.orchestrator = ensure_orchestrator(
        st.session_state.get("orchestrator"), get_service(), get_history()
    )
    return st.session_state.orchestrator


def current_state() -> AppState:
    if "app_state" not in st.session_state:
        st.session_state.app_state = AppState()
    return st.session_state.app_state


def commit(state: AppState, rerun: bool = True):
    st.session_state.app_state = state
    if rerun:
        st.rerun()


def selection() -> ComparisonSelection:
    if "compare_selection" not in st.session_state:
        st.session_state.compare_selection = ComparisonSelection()
    return st.session_state.compare_selection


def apply_theme(theme: str):
    colors = THEME_CSS[theme]
    st.markdown(
        f"""
        <style>
        .stApp {{ background-color: {colors['bg']}; color: {colors['text']}; }}
        section[data-testid="stSidebar"] {{ background-color: {colors['card']}; }}
        .stButton > button {{ border-color: {colors['accent']}; }}
        </style>
        """,
        unsafe_allow_html=True,
    )


def download_buttons(content, basename: str, key: str):
    cols = st.columns(len(EXPORT_KINDS))
    for col, kind in zip(cols, EXPORT_KINDS):
        payload = {"text": content} if kind == "json" and isinstance(content, str) else content
        export = render_export(payload, kind, basename)
        col.download_button(
            f"⬇️ {kind.upper()}",
            data=export.data,
            file_name=export.filename,
            mime=export.mime_type,
            key=f"{key}_{kind}",
        )


load_env_vars()
state = current_state()
history = get_history()
manager = get_capture_manager()
apply_theme(state.theme)


# --- Sidebar ---
st.sidebar.title("🎬 Style Passport")

view_keys = list(VIEW_LABELS)
chosen_view = st.sidebar.radio(
    "Navigation",
    view_keys,
    index=view_keys.index(state.view),
    format_func=lambda v: VIEW_LABELS[v],
)
if chosen_view != state.view:
    next_state = app.set_view(state, chosen_view)
    if next_state is state:
        st.sidebar.warning("Analyse a video first.")
    else:
        commit(next_state)

chosen_theme = st.sidebar.selectbox("Theme", list(app.THEMES), index=list(app.THEMES).index(state.theme))
if chosen_theme != state.theme:
    commit(app.set_theme(state, chosen_theme))

st.sidebar.subheader("System Status")
if os.getenv("GOOGLE_API_KEY"):
    st.sidebar.success("✅ Google API Key Set")
else:
    st.sidebar.error("❌ Google API Key Missing")

capture_cfg = studio_config.get_capture_config()
if ffmpeg_available(capture_cfg.ffmpeg_binary):
    st.sidebar.success(f"✅ ffmpeg found ({capture_cfg.backend})")
else:
    st.sidebar.warning("⚠️ ffmpeg missing: screen capture disabled")

st.sidebar.caption(f"History: {len(history)} / {history.capacity}")

with st.sidebar.expander("⚙️ Settings"):
    with st.form("env_config_form"):
        st.text_input("GOOGLE_API_KEY", value=os.getenv("GOOGLE_API_KEY", ""), key="env_GOOGLE_API_KEY", type="password")
        st.text_input("GEMINI_MODEL", value=os.getenv("GEMINI_MODEL", studio_config.DEFAULT_GEMINI_MODEL), key="env_GEMINI_MODEL")
        st.text_input("OUTPUT_LANGUAGE", value=os.getenv("OUTPUT_LANGUAGE", "English"), key="env_OUTPUT_LANGUAGE")
        st.text_input("FFMPEG_BINARY", value=os.getenv("FFMPEG_BINARY", "ffmpeg"), key="env_FFMPEG_BINARY")
        if st.form_submit_button("💾 Save"):
            for name in ("GOOGLE_API_KEY", "GEMINI_MODEL", "OUTPUT_LANGUAGE", "FFMPEG_BINARY"):
                save_env_var(name, str(st.session_state.get(f"env_{name}", "")))
            st.success("Configuration saved and reloaded.")
            time.sleep(1)
            st.rerun()


# --- Error banner ---
if state.analysis.error:
    err_col, dismiss_col = st.columns([6, 1])
    err_col.error(state.analysis.error)
    if dismiss_col.button("✖ Dismiss"):
        commit(app.dismiss_error(state))


# --- Upload ---
def render_upload(state: AppState):
    st.header("Analyse a video")

    platforms = list(app.PLATFORMS)
    platform = st.radio(
        "Platform", platforms, index=platforms.index(state.platform), horizontal=True,
        disabled=state.is_busy,
    )
    if platform != state.platform:
        commit(app.change_platform(state, platform))

    methods = list(app.ANALYSIS_METHODS)
    method = st.radio(
        "Method",
        methods,
        index=methods.index(state.analysis_method),
        format_func=lambda m: "Vision (upload or capture)" if m == "vision" else "Search (link only)",
        horizontal=True,
        disabled=state.is_busy,
    )
    if method != state.analysis_method:
        commit(app.set_analysis_method(state, method))

    url_input = st.text_input("Video link", value=state.url_input, placeholder="Paste a YouTube, TikTok or Instagram link")
    if url_input != state.url_input:
        commit(app.set_url_input(state, url_input))

    ref = normalize(state.url_input)
    col_player, col_controls = st.columns([3, 2])

    with col_player:
        if not ref.is_empty:
            embed = resolve_embed(ref)
            if embed.kind == "unresolved":
                st.warning("Could not resolve a video id from this link.")
            else:
                height = 720 if is_youtube_shorts(state.url_input) or ref.platform.value != "youtube" else 420
                components.html(embed.to_html(), height=height, scrolling=True)

    with col_controls:
        st.subheader("Engagement (optional)")
        m = state.metrics
        views = st.number_input("Views", min_value=0, value=m.views, step=100)
        likes = st.number_input("Likes", min_value=0, value=m.likes, step=10)
        comments = st.number_input("Comments", min_value=0, value=m.comments, step=1)
        if (views, likes, comments) != (m.views, m.likes, m.comments):
            commit(app.set_metrics(state, views=int(views), likes=int(likes), comments=int(comments)))
        if not m.has_values:
            st.caption("Leave at zero to let the model read the counts off the player.")

        orchestrator = get_orchestrator()
        if state.analysis_method == "search":
            if st.button("🔎 Analyse link", disabled=state.is_busy or ref.is_empty, type="primary"):
                with st.spinner("Searching and analysing..."):
                    commit(orchestrator.analyze_reference_into(state))
        else:
            uploaded = st.file_uploader(
                "Upload a video",
                type=sorted(ext.lstrip(".") for ext in VIDEO_EXTENSIONS),
                disabled=state.is_busy,
            )
            if uploaded is not None and st.button("🚀 Analyse upload", disabled=state.is_busy, type="primary"):
                suffix = Path(uploaded.name).suffix
                with tempfile.NamedTemporaryFile(suffix=suffix, delete=False) as tmp:
                    tmp.write(uploaded.getvalue())
                    tmp_path = tmp.name
                try:
                    with st.spinner("Analysing video..."):
                        next_state = orchestrator.analyze_file_into(state, tmp_path, uploaded.type or None)
                finally:
                    os.unlink(tmp_path)
                commit(next_state)

            st.divider()
            st.subheader("Screen capture")
            if manager.is_recording:
                st.info("🔴 Recording...")
                if st.button("⏹️ Stop & analyse", type="primary"):
                    with st.spinner("Finalising capture and analysing..."):
                        commit(orchestrator.stop_capture(app.set_recording(state, True), manager))
            elif st.button("⏺️ Start capture", disabled=state.analysis.is_analyzing):
                commit(orchestrator.start_capture(state, manager))


# --- Dashboard ---
def render_dashboard(state: AppState):
    passport = state.analysis.passport
    st.header("Style Passport")
    if state.analysis.video_url and not state.analysis.video_url.startswith("local://"):
        embed = resolve_embed(normalize(state.analysis.video_url))
        if embed.kind not in ("empty", "unresolved"):
            with st.expander("▶️ Source video"):
                components.html(embed.to_html(), height=560, scrolling=True)

    st.write(passport.creator_profile_summary)

    sm = passport.style_metrics
    em = passport.engagement_metrics
    cols = st.columns(4)
    cols[0].metric("Pace", f"{sm.words_per_minute:.0f} WPM")
    cols[1].metric("Dominant emotion", sm.dominant_emotion)
    if em is not None:
        cols[2].metric("Engagement rate", em.engagement_rate or "-")
        cols[3].metric("Virality", f"{em.virality_score:.0f}/100" if em.virality_score is not None else "-")
        st.caption(
            f"Views {em.views:,} · Likes {em.likes:,} · Comments {em.comments:,} "
            "(model-reported, unverified)"
        )

    st.subheader("Emotional spectrum")
    st.bar_chart({axis.label: axis.score for axis in sm.emotional_spectrum})

    st.subheader("Structure")
    st.dataframe(
        [
            {"Time": s.time_range, "Segment": s.segment_type, "Description": s.description}
            for s in passport.video_structure
        ],
        hide_index=True,
        use_container_width=True,
    )

    col_ins, col_phr = st.columns(2)
    with col_ins:
        st.subheader("Retention formula")
        for insight in passport.retention_formula_insights:
            st.markdown(f"- {insight}")
    with col_phr:
        st.subheader("Signature phrases")
        for phrase in sm.signature_phrases:
            st.markdown(f"> {phrase}")


# --- Script generator ---
def render_generate(state: AppState):
    st.header("Script Generator")
    topic = st.text_input("Topic", key="script_topic", placeholder="What should the next video be about?")
    if st.button("✍️ Generate script", disabled=not topic.strip(), type="primary"):
        try:
            with st.spinner("Writing in the creator's style..."):
                st.session_state.script = get_service().generate_script(topic, state.analysis.passport)
                st.session_state.script_basename = script_filename(topic)
        except StudioError as e:
            st.error(e.user_message)

    script = st.session_state.get("script")
    if script:
        st.dataframe(
            [{"Time": line.time_range, "Visual": line.visual, "Audio": line.audio} for line in script],
            hide_index=True,
            use_container_width=True,
        )
        download_buttons(script, st.session_state.script_basename, "script")


# --- History ---
def render_history(state: AppState):
    st.header("History")
    items = history.items
    if not items:
        st.info("No analyses yet.")
        return

    picked = selection()
    picked.prune(history)
    st.caption(f"Selected for comparison: {len(picked.selected)} / 5")

    for item in items:
        with st.container(border=True):
            col_sel, col_info, col_open, col_del = st.columns([1, 6, 1, 1])
            checked = item.id in picked.selected
            if col_sel.checkbox("Compare", value=checked, key=f"cmp_{item.id}", label_visibility="collapsed") != checked:
                picked.toggle(item.id)
                st.rerun()
            created = time.strftime("%Y-%m-%d %H:%M", time.localtime(item.timestamp / 1000))
            col_info.markdown(f"**{item.platform}** · {created}")
            col_info.caption(item.passport.creator_profile_summary[:160])
            if col_open.button("Open", key=f"open_{item.id}"):
                commit(app.open_history_item(state, item.passport, item.video_url, item.id))
            if col_del.button("🗑️", key=f"del_{item.id}"):
                history.delete(item.id)
                st.rerun()

    if st.button("⚖️ Compare selected", disabled=not picked.can_compare, type="primary"):
        try:
            with st.spinner("Comparing..."):
                st.session_state.comparison = get_service().compare_videos(history.select(picked.selected))
        except StudioError as e:
            st.error(e.user_message)

    report = st.session_state.get("comparison")
    if report:
        st.text(report)
        download_buttons(report, COMPARISON_FILENAME, "comparison")


# --- Interest map ---
def render_roadmap(state: AppState):
    st.header("Interest Map")
    col_a, col_b, col_go = st.columns([3, 3, 2])
    interest_a = col_a.selectbox("Interest 1", [""] + PREDEFINED_CATEGORIES, accept_new_options=True)
    interest_b = col_b.selectbox("Interest 2", [""] + PREDEFINED_CATEGORIES, accept_new_options=True)
    if col_go.button("🧭 Build map", disabled=not (interest_a and interest_b), type="primary"):
        try:
            with st.spinner("Fusing interests..."):
                st.session_state.roadmap = get_service().generate_interest_map(interest_a, interest_b)
                st.session_state.pop("ideas", None)
        except StudioError as e:
            st.error(e.user_message)

    roadmap = st.session_state.get("roadmap")
    if roadmap is None:
        return

    st.scatter_chart(
        [{"x": n.x, "y": 100 - n.y, "label": n.label, "type": n.type} for n in roadmap.nodes],
        x="x",
        y="y",
        color="type",
    )

    labels = {n.id: n.label for n in roadmap.nodes}
    node_id = st.selectbox("Node", list(labels), format_func=labels.get)
    node = next(n for n in roadmap.nodes if n.id == node_id)
    st.caption(node.description)

    col_x, col_y = st.columns(2)
    new_x = col_x.slider("X %", 0.0, 100.0, float(node.x))
    new_y = col_y.slider("Y %", 0.0, 100.0, float(node.y))
    if (new_x, new_y) != (node.x, node.y):
        st.session_state.roadmap = move_node(roadmap, node_id, new_x, new_y)
        st.rerun()

    if st.button(f"💡 Ideas for {node.label}"):
        latest = history.latest()
        try:
            with st.spinner("Generating ideas..."):
                st.session_state.ideas = get_service().generate_content_ideas(
                    node.label, latest.passport if latest else None
                )
        except StudioError as e:
            st.error(e.user_message)

    for idea in st.session_state.get("ideas") or []:
        with st.container(border=True):
            st.markdown(f"**{idea.title}** · _{idea.format}_")
            st.write(f"Hook: {idea.hook}")
            st.caption(idea.why_it_works)


RENDERERS = {
    "upload": render_upload,
    "dashboard": render_dashboard,
    "generate": render_generate,
    "history": render_history,
    "roadmap": render_roadmap,
}

RENDERERS[state.view](state)
