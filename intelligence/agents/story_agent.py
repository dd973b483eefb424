"""
Story Agent
Style analysis, per-page visual prompts and continuity summaries
"""
from typing import Any, Dict, Optional
import json
import logging
import re

from core import StyleGuide
from intelligence.llm import BaseLLM, get_llm
from utils.exceptions import MalformedOutputError


logger = logging.getLogger(__name__)


STYLE_SYSTEM_PROMPT = """You are a professional Hollywood concept artist acting as a strict JSON-only API.

Analyze the story segment and extract a style guide for illustrating the whole book.
Focus on sensory detail (lighting, texture, camera angles, materials), not simple lists.

Return ONLY one JSON object, no markdown, no text before or after it:
{
  "art_style": "visual style, e.g. cinematic lighting, 35mm film grain, watercolor texture",
  "characters": "appearance, clothing materials, facial features and vibe of the main characters",
  "setting": "environment, weather, architecture and color palette",
  "title": "book title if stated, else empty",
  "author": "author if stated, else empty"
}"""

PAGE_PROMPT_TEMPLATE = """You are a cinematographer. Write a single, highly detailed image generation prompt.

GLOBAL VISUAL RULES:
- Art Style: {art_style}
- Character Designs: {characters}
- Setting/Vibe: {setting}

STORY CONTEXT:
- Previous Action: {previous_summary}
- Current Scene Text: "{content}"

TASK:
Write a 50-word visual prompt for an AI image generator.
- Focus on the visual action (e.g. "A tall man with a scar holding a lantern").
- Describe lighting and camera angle.
- Do NOT use proper names, use visual descriptions ("the boy with glasses").
- Output JUST the prompt text. No markdown, no preamble."""

SUMMARY_TEMPLATE = (
    'Summarize the key visual and plot events of this page in 1 short sentence for an illustrator: "{content}"'
)

COVER_PROMPT_TEMPLATE = """Role: Professional High-End Book Cover Illustrator.
Source Text: "{snippet}"

TASK: Generate a visually stunning, cinematic landscape or abstract scenery that represents the world of this book.

STRICTURES:
1. NO HUMANS: Do not include any people, faces, or characters.
2. COLOR PALETTE: Bold and vibrant, inspired by the mood of the text.
3. COMPOSITION: Landscapes, architecture, or symbolic abstract elements mentioned in the text.
4. STYLE: High-fidelity cinematic digital art. Portrait orientation. No text."""

CHARACTER_SHEET_TEMPLATE = (
    "Professional character design sheet, 3 views (front, side, back), neutral background. "
    "Character: {characters}. Style: {art_style}"
)

_FENCE_START = re.compile(r"^\s*`{3}(?:json)?\s*", re.IGNORECASE)
_FENCE_END = re.compile(r"\s*`{3}\s*$")


def build_cover_prompt(snippet: str, max_chars: int = 1000) -> str:
    """Cover prompt: scenery only, no characters."""
    text = re.sub(r"\s+", " ", str(snippet or "")).strip()
    return COVER_PROMPT_TEMPLATE.format(snippet=text[: max(0, int(max_chars))])


def build_character_sheet_prompt(style: StyleGuide) -> str:
    return CHARACTER_SHEET_TEMPLATE.format(characters=style.characters, art_style=style.art_style)


def parse_style_guide(text: str) -> StyleGuide:
    """
    Parse a model answer into a StyleGuide.

    Markdown code fences around the JSON are stripped; camelCase keys
    (artStyle) are accepted.

    Raises:
        MalformedOutputError: not a JSON object or required fields missing
    """
    cleaned = _FENCE_END.sub("", _FENCE_START.sub("", str(text or ""))).strip()
    if not cleaned:
        raise MalformedOutputError("Empty style guide response", service="llm")
    try:
        data = json.loads(cleaned)
    except ValueError:
        match = re.search(r"\{[\s\S]*\}", cleaned)
        if not match:
            raise MalformedOutputError("Style guide response is not JSON", service="llm", raw=cleaned[:200])
        try:
            data = json.loads(match.group())
        except ValueError as exc:
            raise MalformedOutputError(f"Style guide JSON is invalid: {exc}", service="llm") from exc

    if not isinstance(data, dict):
        raise MalformedOutputError("Style guide JSON must be an object", service="llm")

    payload: Dict[str, Any] = {
        "art_style": data.get("art_style") or data.get("artStyle"),
        "characters": data.get("characters"),
        "setting": data.get("setting"),
        "title": data.get("title"),
        "author": data.get("author"),
    }
    for key in ("art_style", "characters", "setting"):
        value = payload[key]
        if isinstance(value, (list, dict)):
            payload[key] = json.dumps(value, ensure_ascii=False)

    try:
        return StyleGuide.model_validate(payload)
    except ValueError as exc:
        raise MalformedOutputError(f"Style guide is incomplete: {exc}", service="llm") from exc


class StoryAnalyst:
    """
    Text-understanding collaborator for the pipeline.

    Methods make exactly one model call each; SDK errors are left to the
    caller's retry policy.
    """

    def __init__(self, llm: Optional[BaseLLM] = None):
        self.llm = llm or get_llm()

    async def analyze_style(self, text: str) -> StyleGuide:
        reply = await self.llm.achat(
            f"STORY SEGMENT:\n{text}",
            system_prompt=STYLE_SYSTEM_PROMPT,
            json_mode=True,
        )
        style = parse_style_guide(reply)
        logger.info("style_guide art_style=%s", style.art_style[:80])
        return style

    async def page_prompt(self, style: StyleGuide, content: str, previous_summary: str) -> str:
        reply = await self.llm.achat(
            PAGE_PROMPT_TEMPLATE.format(
                art_style=style.art_style,
                characters=style.characters,
                setting=style.setting,
                previous_summary=previous_summary,
                content=content,
            )
        )
        prompt = _clean_line(reply)
        if not prompt:
            raise MalformedOutputError("Empty page prompt", service="llm")
        return prompt

    async def summarize(self, content: str) -> str:
        reply = await self.llm.achat(SUMMARY_TEMPLATE.format(content=content))
        summary = _clean_line(reply)
        if not summary:
            raise MalformedOutputError("Empty continuity summary", service="llm")
        return summary

    async def aclose(self) -> None:
        await self.llm.aclose()


def _clean_line(text: str) -> str:
    cleaned = _FENCE_END.sub("", _FENCE_START.sub("", str(text or ""))).strip()
    return cleaned.strip('"').strip()
