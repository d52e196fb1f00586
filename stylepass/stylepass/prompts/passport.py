"""
Style Passport prompts and response schemas.

The schemas are the structured-output contract handed to Gemini; responses are
validated again on our side against the pydantic models in ``stylepass.types``.
"""

SYSTEM_INSTRUCTION = """You are a senior short-form video analyst. You reverse-engineer the style of creators on YouTube Shorts, TikTok and Instagram Reels into a "Style Passport": a precise, evidence-based description of pacing, emotional tone, narrative structure and audience engagement.

## RULES

1. Measure, do not guess: words_per_minute is computed from the speech you hear over the video's duration.
2. emotional_spectrum lists 4-6 emotional axes, each scored 0-100.
3. video_structure covers the whole video in order. time_range uses MM:SS-MM:SS. segment_type is exactly one of: Hook, Body, Climax, CTA, Bridge.
4. signature_phrases are verbatim recurring phrases or verbal tics of the creator.
5. retention_formula_insights explain concretely why viewers keep watching.
6. Never invent audience numbers. If a count is unknown, use 0.
7. Return ONLY JSON matching the schema.
"""

MEDIA_ANALYSIS_PROMPT = (
    "Perform a deep technical analysis of this video. Compute the style metrics and "
    "identify the retention structure. Return the result STRICTLY as JSON following "
    "the system instructions."
)

USER_METRICS_TEMPLATE = """

INPUT METRICS (FROM THE USER):
- Views: {views}
- Likes: {likes}
- Comments: {comments}"""

SCREEN_METRICS_INSTRUCTION = """

IMPORTANT: The user did NOT provide metrics (all values are 0).
YOUR TASK: Look carefully at the video frames. If a player interface (YouTube, TikTok, Instagram) with numbers (likes, views) is visible on screen, EXTRACT THEM visually (OCR).
- Look for text next to heart, eye and speech-bubble icons.
- Read 'K' as thousands (x1000) and 'M' as millions (x1000000).
- If no interface is visible, estimate the Virality Score from content quality, but set views/likes to 0."""

GROUND_TRUTH_METRICS_INSTRUCTION = """

TASK: Use the numbers supplied by the user as ground truth to compute the Engagement Rate and Virality Score."""

SEARCH_ANALYSIS_TEMPLATE = """Goal: deep analysis of the video at this link: {url} (Platform: {platform}).

STAGE 1: FIND EXACT METRICS (CRITICAL)
Use Google Search to find the current video page or third-party analytics services.
You must extract EXACT numbers:
- Views
- Likes
- Comments

WARNING: If you did not find exact numbers, use 0. Inventing, averaging or generating random numbers is FORBIDDEN. The user verifies accuracy.

STAGE 2: CONTENT ANALYSIS
- Find the description, transcript, user comments or a retelling of the video.
- Determine the creator's style, speech pace (WPM), emotional tone and retention structure.

Build a complete Style Passport from the data you found.
Return the result STRICTLY as JSON.
"""

SCRIPT_TEMPLATE = (
    "Based on this verified Style Passport: {passport_json}, write a script for the topic: "
    '"{topic}". The script must MATHEMATICALLY match the pace (WPM) and the visual density '
    "of the original. Output language: {language}."
)

SCRIPT_SYSTEM_SUFFIX = " IMPORTANT: All generated content (visual, audio) must be in {language}."

COMPARE_TEMPLATE = """I have {count} videos to analyse. Here is their data as JSON:
{items_json}

YOUR TASK: Run a comparative analysis and return the result as CLEAN BUSINESS TEXT.

FORMATTING RULES:
1. DO NOT use Markdown tables (| and - characters).
2. DO NOT use bold via asterisks (**text**).
3. DO NOT use hash headings (###).
4. Use CAPITAL LETTERS for section headings.
5. Use plain hyphens (-) or numbers for lists.
6. Leave a blank line between blocks for readability.

RESPONSE STRUCTURE:

1. SUMMARY TABLE (text form)
For each video write one line: Video N - Platform - Metrics - Core idea - Verdict.

2. DEEP COMPARATIVE ANALYSIS
Compare the videos on: Hook, Format, Structure, Visuals, Audio, Emotions, CTA.
Write it as: "Hook: Video 1 does this, while Video 2 does that..."

3. WHY IT TOOK OFF (success factors of the best video)

4. WHERE IT WENT WRONG (problems of the weakest video)

5. STRATEGIC RECOMMENDATIONS (5-7 points)

6. HYPOTHESIS FOR THE NEXT VIDEO (recipe)

Language: {language}. Style: professional, concise, no visual noise.
"""

COMPARE_FALLBACK_TEXT = "Could not generate the comparison."

INTEREST_MAP_TEMPLATE = """Task: build an "Interest Map" from the SYNTHESIS of two topics.

INPUT:
- Interest 1: "{interest_a}"
- Interest 2: "{interest_b}"

YOUR GOAL:
1. Find the INTERSECTION (fusion). What do you get when you combine these two topics? (For example: Football + Swimming = Water polo; Coding + Design = Creative Coding).
2. Build a graph around that intersection, suggesting adjacent hobbies, professions and niches.

LAYOUT REQUIREMENTS (X/Y coordinates):
- The centre of the map (X=50, Y=50) is the Intersection itself.
- Place 6-10 related nodes around it.
- Use the space (0-100%) so nodes do not overlap.

NODE TYPES:
- 'intersection': the central result of the fusion.
- 'related': adjacent fields, niches, professions.
- 'core': the original interests (Interest 1 and Interest 2).

Write labels and descriptions in {language}.
"""

IDEAS_WITH_CONTEXT_TEMPLATE = """
CREATOR CONTEXT (Style DNA):
- Speech pace: {wpm} words/min.
- Dominant emotion: {emotion}.
- Retention formula: {insights}.

TASK: Adapt the ideas to this style. If the creator is aggressive, the ideas should be bold. If calm, the ideas should be deep.
"""

IDEAS_WITHOUT_CONTEXT = "The creator has no history. Suggest universal viral formats."

IDEAS_TEMPLATE = """Topic: "{topic}".
{context}

Generate 3 concrete video ideas (Shorts/Reels) on this topic, in {language}.
For each idea give: title, hook (the first 3 seconds, visual + text), format (ASMR, Talking Head, Skit, Tutorial) and why_it_works (the psychological reason it goes viral).
"""


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

ENGAGEMENT_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "views": {"type": "NUMBER"},
        "likes": {"type": "NUMBER"},
        "comments": {"type": "NUMBER"},
        "engagement_rate": {"type": "STRING"},
        "virality_score": {"type": "NUMBER"},
    },
    "required": ["views", "likes", "comments", "engagement_rate", "virality_score"],
}

STYLE_PASSPORT_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "creator_profile_summary": {"type": "STRING"},
        "retention_formula_insights": {"type": "ARRAY", "items": {"type": "STRING"}},
        "engagement_metrics": ENGAGEMENT_SCHEMA,
        "style_metrics": {
            "type": "OBJECT",
            "properties": {
                "words_per_minute": {"type": "NUMBER"},
                "dominant_emotion": {"type": "STRING"},
                "emotional_spectrum": {
                    "type": "ARRAY",
                    "items": {
                        "type": "OBJECT",
                        "properties": {
                            "label": {"type": "STRING"},
                            "score": {"type": "NUMBER"},
                        },
                        "required": ["label", "score"],
                    },
                },
                "signature_phrases": {"type": "ARRAY", "items": {"type": "STRING"}},
            },
            "required": [
                "words_per_minute",
                "dominant_emotion",
                "emotional_spectrum",
                "signature_phrases",
            ],
        },
        "video_structure": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "time_range": {"type": "STRING"},
                    "segment_type": {
                        "type": "STRING",
                        "enum": ["Hook", "Body", "Climax", "CTA", "Bridge"],
                    },
                    "description": {"type": "STRING"},
                },
                "required": ["time_range", "segment_type", "description"],
            },
        },
    },
    "required": [
        "creator_profile_summary",
        "retention_formula_insights",
        "style_metrics",
        "video_structure",
    ],
}

SCRIPT_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "time_range": {"type": "STRING"},
            "visual": {"type": "STRING"},
            "audio": {"type": "STRING"},
        },
        "required": ["time_range", "visual", "audio"],
    },
}

ROADMAP_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "nodes": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "id": {"type": "STRING"},
                    "label": {"type": "STRING"},
                    "description": {"type": "STRING"},
                    "type": {"type": "STRING", "enum": ["core", "intersection", "related"]},
                    "x": {"type": "NUMBER"},
                    "y": {"type": "NUMBER"},
                },
                "required": ["id", "label", "description", "type", "x", "y"],
            },
        },
        "edges": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "from": {"type": "STRING"},
                    "to": {"type": "STRING"},
                },
                "required": ["from", "to"],
            },
        },
    },
    "required": ["nodes", "edges"],
}

IDEAS_SCHEMA = {
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "title": {"type": "STRING"},
            "hook": {"type": "STRING"},
            "format": {"type": "STRING"},
            "why_it_works": {"type": "STRING"},
        },
        "required": ["title", "hook", "format", "why_it_works"],
    },
}
