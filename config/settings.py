"""
Settings Configuration
Pydantic-validated configuration loaded from the environment / .env
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class PipelineSettings(BaseSettings):
    """Stage limits, pacing and retry budget."""
    leading_units: int = Field(default=10, description="Pages fed to style analysis and cover art")
    processing_cap: int = Field(default=10, description="Highest page ordinal that gets prompts/images")
    prompt_interval_s: float = Field(default=2.0, description="Min spacing between text-model calls (s)")
    image_interval_s: float = Field(default=7.0, description="Min spacing between image-model calls (s)")
    retry_attempts: int = Field(default=5, description="Attempts per external call on transient errors")
    retry_base_delay_s: float = Field(default=1.0, description="First backoff delay (s)")
    retry_max_delay_s: float = Field(default=30.0, description="Backoff ceiling (s)")
    min_prompt_chars: int = Field(default=20, description="A stored prompt longer than this is kept")
    words_per_unit: int = Field(default=450, description="Words per extracted page")
    cover_snippet_chars: int = Field(default=1000, description="Source text cap inside the cover prompt")
    stale_after_s: int = Field(default=1800, description="Active job without updates for this long is resumable")

    class Config:
        env_prefix = "PIPELINE_"


class LLMSettings(BaseSettings):
    """Text model configuration"""
    provider: str = Field(default="gemini", description="LLM provider: gemini, openai")
    model_name: Optional[str] = Field(default=None, description="Model name (provider default when empty)")
    temperature: float = Field(default=0.7, description="Sampling temperature")
    max_tokens: int = Field(default=2048, description="Max output tokens")
    timeout: float = Field(default=60.0, description="Request timeout (s)")

    gemini_api_key: Optional[str] = Field(default=None, description="Google Gemini API Key")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API Key")

    class Config:
        env_prefix = "LLM_"


class ImageSettings(BaseSettings):
    """Image model configuration"""
    provider: str = Field(default="gemini", description="Image provider: gemini, openai")
    model_name: Optional[str] = Field(default=None, description="Model name (provider default when empty)")
    aspect_ratio: str = Field(default="3:4", description="Requested aspect ratio")
    webp_quality: int = Field(default=80, description="WebP re-encode quality")
    timeout: float = Field(default=120.0, description="Request timeout (s)")

    gemini_api_key: Optional[str] = Field(default=None, description="Google Gemini API Key")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API Key")

    class Config:
        env_prefix = "IMAGE_"


class StorageSettings(BaseSettings):
    """Job state and artifact locations"""
    job_store_path: str = Field(default="./data/jobs.json", description="Persisted job/page snapshot")
    artifact_dir: str = Field(default="./data/artifacts", description="Generated image directory")
    upload_dir: str = Field(default="./data/uploads", description="Uploaded documents")
    public_base_url: Optional[str] = Field(default=None, description="Public URL prefix for artifact_dir")

    class Config:
        env_prefix = "STORAGE_"


class Settings(BaseSettings):
    """Aggregated configuration"""

    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    image: ImageSettings = Field(default_factory=ImageSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def load_from_env_file(cls, env_path: Optional[Path] = None) -> "Settings":
        """Load config/.env (if present) into the process env, then build settings."""
        if env_path is None:
            env_path = Path(__file__).parent / ".env"

        if env_path.exists():
            from dotenv import load_dotenv
            load_dotenv(env_path)

        return cls(
            pipeline=PipelineSettings(),
            llm=LLMSettings(),
            image=ImageSettings(),
            storage=StorageSettings(),
        )


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings singleton"""
    return Settings.load_from_env_file()


def get_pipeline_settings() -> PipelineSettings:
    return get_settings().pipeline


def get_llm_settings() -> LLMSettings:
    return get_settings().llm


def get_image_settings() -> ImageSettings:
    return get_settings().image


def get_storage_settings() -> StorageSettings:
    return get_settings().storage
