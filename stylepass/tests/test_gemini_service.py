import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from stylepass.config import GeminiConfig
from stylepass.encoder import EncodedPayload
from stylepass.errors import AnalysisError, EmptyMediaError, PassportSchemaError
from stylepass.gemini_service import GeminiService, build_media_prompt
from stylepass.prompts.passport import COMPARE_FALLBACK_TEXT, MEDIA_ANALYSIS_PROMPT
from stylepass.types import EngagementMetrics, HistoryItem, StylePassport


CONFIG = GeminiConfig(
    api_key="test-key",
    model_name="gemini-test",
    analysis_thinking_budget=100,
    script_thinking_budget=50,
    compare_thinking_budget=100,
    output_language="English",
)

PAYLOAD = EncodedPayload(data="YWJj", mime_type="video/webm", byte_size=3)


def _service(text=None, candidates=None, side_effect=None):
    client = MagicMock()
    if side_effect is not None:
        client.models.generate_content.side_effect = side_effect
    else:
        client.models.generate_content.return_value = SimpleNamespace(
            text=text, candidates=candidates or []
        )
    return GeminiService(client=client, config=CONFIG), client


def _prompt_text(client):
    contents = client.models.generate_content.call_args.kwargs["contents"]
    return contents[0].parts[1].text


# ---------------------------------------------------------------------------
# Prompt construction
# ---------------------------------------------------------------------------

def test_prompt_without_metrics_is_the_base_prompt():
    assert build_media_prompt(None) == MEDIA_ANALYSIS_PROMPT


def test_zero_metrics_ask_for_on_screen_extraction():
    prompt = build_media_prompt(EngagementMetrics())
    assert "The user did NOT provide metrics" in prompt
    assert "EXTRACT THEM visually (OCR)" in prompt


def test_user_metrics_are_ground_truth():
    prompt = build_media_prompt(EngagementMetrics(views=1000, likes=50, comments=2))
    assert "1000" in prompt
    assert "ground truth" in prompt
    assert "OCR" not in prompt


# ---------------------------------------------------------------------------
# Video analysis
# ---------------------------------------------------------------------------

def test_analyze_video_returns_validated_passport(passport_json):
    service, client = _service(text=passport_json)
    passport = service.analyze_video(PAYLOAD, EngagementMetrics())

    assert isinstance(passport, StylePassport)
    assert passport.style_metrics.words_per_minute == 182
    kwargs = client.models.generate_content.call_args.kwargs
    assert kwargs["model"] == "gemini-test"
    assert kwargs["config"].response_mime_type == "application/json"
    media_part = kwargs["contents"][0].parts[0]
    assert media_part.inline_data.mime_type == "video/webm"
    assert media_part.inline_data.data == b"abc"
    assert "OCR" in _prompt_text(client)


def test_markdown_fenced_json_is_accepted(passport_json):
    service, _ = _service(text=f"```json\n{passport_json}\n```")
    assert service.analyze_video(PAYLOAD).creator_profile_summary.startswith("Fast-talking")


def test_empty_payload_is_rejected_before_calling_the_backend():
    service, client = _service(text="{}")
    with pytest.raises(EmptyMediaError):
        service.analyze_video(EncodedPayload(data="", mime_type="video/webm", byte_size=0))
    client.models.generate_content.assert_not_called()


@pytest.mark.parametrize("text", ["not json", "", None, json.dumps({"creator_profile_summary": "x"})])
def test_invalid_result_raises_schema_error(text):
    service, _ = _service(text=text)
    with pytest.raises(PassportSchemaError) as excinfo:
        service.analyze_video(PAYLOAD)
    assert excinfo.value.user_message == "Analysis failed: the model returned an invalid result."


def test_out_of_range_scores_are_rejected(passport_json):
    data = json.loads(passport_json)
    data["style_metrics"]["emotional_spectrum"][0]["score"] = 140
    service, _ = _service(text=json.dumps(data))
    with pytest.raises(PassportSchemaError):
        service.analyze_video(PAYLOAD)


def test_backend_failure_is_wrapped():
    service, _ = _service(side_effect=ConnectionError("network down"))
    with pytest.raises(AnalysisError) as excinfo:
        service.analyze_video(PAYLOAD)
    assert isinstance(excinfo.value.cause, ConnectionError)
    assert "network down" in excinfo.value.user_message


def test_safety_block_is_an_analysis_error(passport_json):
    blocked = SimpleNamespace(finish_reason="FinishReason.SAFETY")
    service, _ = _service(text=passport_json, candidates=[blocked])
    with pytest.raises(AnalysisError, match="blocked"):
        service.analyze_video(PAYLOAD)


def test_missing_api_key_surfaces_as_analysis_error():
    config = GeminiConfig(
        api_key=None,
        model_name="gemini-test",
        analysis_thinking_budget=1,
        script_thinking_budget=1,
        compare_thinking_budget=1,
        output_language="English",
    )
    service = GeminiService(config=config)
    with pytest.raises(AnalysisError, match="GOOGLE_API_KEY"):
        service.analyze_video(PAYLOAD)


def test_search_analysis_uses_the_search_tool(passport_json):
    service, client = _service(text=passport_json)
    service.analyze_via_search("https://youtu.be/dQw4w9WgXcQ", "youtube")
    kwargs = client.models.generate_content.call_args.kwargs
    assert "https://youtu.be/dQw4w9WgXcQ" in kwargs["contents"]
    assert kwargs["config"].tools[0].google_search is not None


# ---------------------------------------------------------------------------
# Downstream tools
# ---------------------------------------------------------------------------

def test_generate_script(passport):
    lines = [{"time_range": "00:00-00:03", "visual": "Close-up", "audio": "Wait for it"}]
    service, client = _service(text=json.dumps(lines))
    script = service.generate_script("coffee", passport)
    assert script[0].audio == "Wait for it"
    assert "coffee" in client.models.generate_content.call_args.kwargs["contents"]


def test_compare_falls_back_on_empty_text(passport):
    items = [
        HistoryItem(id=str(n), timestamp=n, passport=passport, platform="youtube")
        for n in range(2)
    ]
    service, client = _service(text="")
    assert service.compare_videos(items) == COMPARE_FALLBACK_TEXT
    assert "Excitement" in client.models.generate_content.call_args.kwargs["contents"]


def test_compare_returns_report_text(passport):
    items = [HistoryItem(id="a", timestamp=1, passport=passport, platform="tiktok")] * 2
    service, _ = _service(text="Video 1 wins on hooks.")
    assert service.compare_videos(items) == "Video 1 wins on hooks."


def test_interest_map_accepts_from_to_edges():
    roadmap = {
        "nodes": [
            {"id": "a", "label": "Sports", "description": "", "type": "core", "x": 20, "y": 50},
            {"id": "b", "label": "IT", "description": "", "type": "core", "x": 80, "y": 50},
        ],
        "edges": [{"from": "a", "to": "b"}],
    }
    service, _ = _service(text=json.dumps(roadmap))
    data = service.generate_interest_map("Sports", "IT")
    assert data.edges[0].source == "a"
    assert data.edges[0].target == "b"


def test_content_ideas_with_and_without_context(passport):
    ideas = [{"title": "T", "hook": "H", "format": "Short", "why_it_works": "W"}]
    service, client = _service(text=json.dumps(ideas))
    assert service.generate_content_ideas("travel")[0].title == "T"
    generic_prompt = client.models.generate_content.call_args.kwargs["contents"]
    service.generate_content_ideas("travel", passport)
    styled_prompt = client.models.generate_content.call_args.kwargs["contents"]
    assert "182" in styled_prompt
    assert "182" not in generic_prompt
