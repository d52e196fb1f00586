"""
Prompt templates and response schemas for the style passport studio.
"""

from .passport import (
    IDEAS_SCHEMA,
    ROADMAP_SCHEMA,
    SCRIPT_SCHEMA,
    STYLE_PASSPORT_SCHEMA,
    SYSTEM_INSTRUCTION,
)

__all__ = [
    "SYSTEM_INSTRUCTION",
    "STYLE_PASSPORT_SCHEMA",
    "SCRIPT_SCHEMA",
    "ROADMAP_SCHEMA",
    "IDEAS_SCHEMA",
]
