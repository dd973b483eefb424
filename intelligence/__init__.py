"""
Intelligence Module
Text models and the story agent
"""
from .llm import (
    BaseLLM,
    OpenAILLM,
    GeminiLLM,
    get_llm,
)
from .agents import StoryAnalyst

__all__ = [
    # LLM
    "BaseLLM",
    "OpenAILLM",
    "GeminiLLM",
    "get_llm",
    # Agents
    "StoryAnalyst",
]
