"""
Agents Module
"""
from .story_agent import (
    StoryAnalyst,
    build_character_sheet_prompt,
    build_cover_prompt,
    parse_style_guide,
)

__all__ = [
    "StoryAnalyst",
    "build_character_sheet_prompt",
    "build_cover_prompt",
    "parse_style_guide",
]
