import json

import pytest

from stylepass import config
from stylepass.types import StylePassport


PASSPORT_DATA = {
    "creator_profile_summary": "Fast-talking tech explainer with punchy jump cuts.",
    "retention_formula_insights": [
        "Opens on the payoff before explaining it",
        "Pattern interrupt every 4 seconds",
        "Ends on an open loop",
    ],
    "style_metrics": {
        "words_per_minute": 182,
        "dominant_emotion": "Excitement",
        "emotional_spectrum": [
            {"label": "Excitement", "score": 85},
            {"label": "Curiosity", "score": 70},
            {"label": "Humour", "score": 40},
            {"label": "Calm", "score": 10},
        ],
        "signature_phrases": ["Wait for it", "Here's the trick"],
    },
    "video_structure": [
        {"time_range": "00:00-00:03", "segment_type": "Hook", "description": "Result shown first"},
        {"time_range": "00:03-00:40", "segment_type": "Body", "description": "Step by step"},
        {"time_range": "00:40-00:45", "segment_type": "CTA", "description": "Follow for part 2"},
    ],
    "engagement_metrics": {
        "views": 120000,
        "likes": 9000,
        "comments": 300,
        "engagement_rate": "7.75%",
        "virality_score": 81,
    },
}


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path):
    """Keep tests away from the real ~/.stylepass and any local .env values."""
    monkeypatch.setenv("STYLEPASS_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("HISTORY_CAPACITY", raising=False)
    config.clear_config_caches()
    yield
    config.clear_config_caches()


@pytest.fixture
def passport_json():
    return json.dumps(PASSPORT_DATA)


@pytest.fixture
def passport():
    return StylePassport.model_validate(PASSPORT_DATA)
