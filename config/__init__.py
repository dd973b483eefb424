"""
Configuration Management Module
"""
from .settings import (
    ImageSettings,
    LLMSettings,
    PipelineSettings,
    Settings,
    StorageSettings,
    get_image_settings,
    get_llm_settings,
    get_pipeline_settings,
    get_settings,
    get_storage_settings,
)

__all__ = [
    "ImageSettings",
    "LLMSettings",
    "PipelineSettings",
    "Settings",
    "StorageSettings",
    "get_image_settings",
    "get_llm_settings",
    "get_pipeline_settings",
    "get_settings",
    "get_storage_settings",
]
