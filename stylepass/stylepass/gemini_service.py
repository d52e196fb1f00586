"""
Gemini-backed inference for style passports and the downstream tools.

Every call sends a prompt plus a response schema and validates the answer
against the pydantic contract. Anything that does not conform fails the whole
request; nothing is partially accepted and nothing is retried.
"""

from __future__ import annotations

import json
import logging
from typing import Any, List, Optional, Sequence

from google import genai
from google.genai import types
from pydantic import TypeAdapter, ValidationError

from .config import GeminiConfig, get_gemini_config, require_api_key
from .encoder import EncodedPayload
from .errors import AnalysisError, EmptyMediaError, PassportSchemaError
from .prompts.passport import (
    COMPARE_FALLBACK_TEXT,
    COMPARE_TEMPLATE,
    GROUND_TRUTH_METRICS_INSTRUCTION,
    IDEAS_SCHEMA,
    IDEAS_TEMPLATE,
    IDEAS_WITH_CONTEXT_TEMPLATE,
    IDEAS_WITHOUT_CONTEXT,
    INTEREST_MAP_TEMPLATE,
    MEDIA_ANALYSIS_PROMPT,
    ROADMAP_SCHEMA,
    SCREEN_METRICS_INSTRUCTION,
    SCRIPT_SCHEMA,
    SCRIPT_SYSTEM_SUFFIX,
    SCRIPT_TEMPLATE,
    SEARCH_ANALYSIS_TEMPLATE,
    STYLE_PASSPORT_SCHEMA,
    SYSTEM_INSTRUCTION,
    USER_METRICS_TEMPLATE,
)
from .types import (
    ContentIdea,
    EngagementMetrics,
    HistoryItem,
    RoadmapData,
    ScriptLine,
    StylePassport,
)

logger = logging.getLogger(__name__)


_SCRIPT_ADAPTER = TypeAdapter(List[ScriptLine])
_IDEAS_ADAPTER = TypeAdapter(List[ContentIdea])


def build_media_prompt(metrics: Optional[EngagementMetrics] = None) -> str:
    """
    Prompt for media-mode analysis.

    With no non-zero user metrics the backend is told to read the counts off
    any visible player interface; otherwise the user's counts are ground truth.
    """
    prompt = MEDIA_ANALYSIS_PROMPT
    if metrics is None:
        return prompt
    prompt += USER_METRICS_TEMPLATE.format(
        views=metrics.views, likes=metrics.likes, comments=metrics.comments
    )
    if metrics.has_values:
        prompt += GROUND_TRUTH_METRICS_INSTRUCTION
    else:
        prompt += SCREEN_METRICS_INSTRUCTION
    return prompt


def _strip_markdown_fences(text: str) -> str:
    """Remove markdown code fences if present."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        first_newline = cleaned.find("\n")
        if first_newline != -1:
            cleaned = cleaned[first_newline + 1:]
        if cleaned.rstrip().endswith("```"):
            cleaned = cleaned.rstrip()[:-3].rstrip()
    return cleaned


def _validate(raw_text: Optional[str], model: Any, what: str) -> Any:
    """Validate a JSON response with a pydantic model or TypeAdapter."""
    if not raw_text or not raw_text.strip():
        raise PassportSchemaError(f"Empty {what} response from the model.", raw_text or "")
    cleaned = _strip_markdown_fences(raw_text)
    try:
        if isinstance(model, TypeAdapter):
            return model.validate_json(cleaned)
        return model.model_validate_json(cleaned)
    except ValidationError as exc:
        logger.warning("Rejected %s response: %d schema errors", what, exc.error_count())
        raise PassportSchemaError(f"Invalid {what} response: {exc}", raw_text, exc) from exc


def _check_blocked(response: Any) -> None:
    candidates = getattr(response, "candidates", None)
    if not candidates:
        return
    finish_reason = str(getattr(candidates[0], "finish_reason", "") or "").upper()
    if "SAFETY" in finish_reason or "BLOCKED" in finish_reason:
        logger.warning("Gemini response blocked by safety filter: %s", finish_reason)
        raise AnalysisError(f"Content blocked by safety filter ({finish_reason}).")


class GeminiService:
    """Thin wrapper around ``genai.Client`` speaking the studio's contracts."""

    def __init__(self, client: Optional[Any] = None, config: Optional[GeminiConfig] = None):
        self._client = client
        self._config = config

    @property
    def config(self) -> GeminiConfig:
        if self._config is None:
            self._config = get_gemini_config()
        return self._config

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = genai.Client(api_key=require_api_key(self.config))
        return self._client

    def _generate(self, contents: Any, config: types.GenerateContentConfig, purpose: str) -> Optional[str]:
        model_name = self.config.model_name
        logger.info("Calling %s for %s", model_name, purpose)
        try:
            response = self.client.models.generate_content(
                model=model_name,
                contents=contents,
                config=config,
            )
        except Exception as exc:
            logger.error("Gemini %s call failed: %s", purpose, exc)
            raise AnalysisError(str(exc) or f"{purpose} failed", cause=exc) from exc
        _check_blocked(response)
        return response.text

    def _thinking(self, budget: int) -> types.ThinkingConfig:
        return types.ThinkingConfig(thinking_budget=budget)

    # -- style passport ------------------------------------------------------

    def analyze_video(
        self,
        payload: EncodedPayload,
        metrics: Optional[EngagementMetrics] = None,
    ) -> StylePassport:
        """Media-mode analysis of an encoded video."""
        if payload.byte_size == 0 or not payload.data:
            raise EmptyMediaError()
        media_part = types.Part.from_bytes(data=payload.decode(), mime_type=payload.mime_type)
        contents = [
            types.Content(
                role="user",
                parts=[media_part, types.Part.from_text(text=build_media_prompt(metrics))],
            )
        ]
        config = types.GenerateContentConfig(
            system_instruction=SYSTEM_INSTRUCTION,
            thinking_config=self._thinking(self.config.analysis_thinking_budget),
            response_mime_type="application/json",
            response_schema=STYLE_PASSPORT_SCHEMA,
        )
        text = self._generate(contents, config, "video analysis")
        return _validate(text, StylePassport, "style passport")

    def analyze_via_search(self, url: str, platform: str) -> StylePassport:
        """Reference-mode analysis: the backend retrieves the video itself."""
        prompt = SEARCH_ANALYSIS_TEMPLATE.format(url=url, platform=platform)
        config = types.GenerateContentConfig(
            system_instruction=SYSTEM_INSTRUCTION,
            tools=[types.Tool(google_search=types.GoogleSearch())],
            response_mime_type="application/json",
            response_schema=STYLE_PASSPORT_SCHEMA,
        )
        text = self._generate(prompt, config, "search analysis")
        return _validate(text, StylePassport, "style passport")

    # -- downstream tools ----------------------------------------------------

    def generate_script(self, topic: str, passport: StylePassport) -> List[ScriptLine]:
        language = self.config.output_language
        prompt = SCRIPT_TEMPLATE.format(
            passport_json=passport.model_dump_json(),
            topic=topic,
            language=language,
        )
        config = types.GenerateContentConfig(
            system_instruction=SYSTEM_INSTRUCTION + SCRIPT_SYSTEM_SUFFIX.format(language=language),
            thinking_config=self._thinking(self.config.script_thinking_budget),
            response_mime_type="application/json",
            response_schema=SCRIPT_SCHEMA,
        )
        text = self._generate(prompt, config, "script generation")
        return _validate(text, _SCRIPT_ADAPTER, "script")

    def compare_videos(self, items: Sequence[HistoryItem]) -> str:
        """Plain-text comparative report over several past analyses."""
        data = [
            {
                "id": index + 1,
                "platform": item.platform,
                "metrics": (
                    item.passport.engagement_metrics.model_dump()
                    if item.passport.engagement_metrics
                    else None
                ),
                "summary": item.passport.creator_profile_summary,
                "emotions": item.passport.style_metrics.dominant_emotion,
                "wpm": item.passport.style_metrics.words_per_minute,
                "structure": [segment.model_dump() for segment in item.passport.video_structure],
            }
            for index, item in enumerate(items)
        ]
        prompt = COMPARE_TEMPLATE.format(
            count=len(items),
            items_json=json.dumps(data, indent=2, ensure_ascii=False),
            language=self.config.output_language,
        )
        config = types.GenerateContentConfig(
            thinking_config=self._thinking(self.config.compare_thinking_budget),
        )
        text = self._generate(prompt, config, "comparison")
        return text or COMPARE_FALLBACK_TEXT

    def generate_interest_map(self, interest_a: str, interest_b: str) -> RoadmapData:
        prompt = INTEREST_MAP_TEMPLATE.format(
            interest_a=interest_a,
            interest_b=interest_b,
            language=self.config.output_language,
        )
        config = types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=ROADMAP_SCHEMA,
        )
        text = self._generate(prompt, config, "interest map")
        return _validate(text, RoadmapData, "interest map")

    def generate_content_ideas(
        self, topic: str, passport: Optional[StylePassport] = None
    ) -> List[ContentIdea]:
        if passport is not None:
            context = IDEAS_WITH_CONTEXT_TEMPLATE.format(
                wpm=passport.style_metrics.words_per_minute,
                emotion=passport.style_metrics.dominant_emotion,
                insights=", ".join(passport.retention_formula_insights[:2]),
            )
        else:
            context = IDEAS_WITHOUT_CONTEXT
        prompt = IDEAS_TEMPLATE.format(
            topic=topic, context=context, language=self.config.output_language
        )
        config = types.GenerateContentConfig(
            response_mime_type="application/json",
            response_schema=IDEAS_SCHEMA,
        )
        text = self._generate(prompt, config, "content ideas")
        return _validate(text, _IDEAS_ADAPTER, "content ideas")


__all__ = ["GeminiService", "build_media_prompt"]
