"""Canonical data contracts for the illustration pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Literal, Optional, Tuple

from pydantic import BaseModel, Field, field_validator


DEFAULT_COVER_ARTIFACT = "https://images.unsplash.com/photo-1532012197267-da84d127e765?q=80&w=800"


class Stage(str, Enum):
    """Pipeline stage persisted on every job."""

    UPLOADED = "Uploaded"
    SHREDDING = "Shredding"
    ANALYZING = "Analyzing"
    GENERATING_COVER = "Generating_Cover"
    GENERATING_PROMPTS = "Generating_Prompts"
    GENERATING_IMAGES = "Generating_Images"
    COMPLETED = "Completed"
    ERROR = "Error"
    RESUMING = "Resuming"


class UnitStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


FORWARD_ORDER: Tuple[Stage, ...] = (
    Stage.UPLOADED,
    Stage.SHREDDING,
    Stage.ANALYZING,
    Stage.GENERATING_COVER,
    Stage.GENERATING_PROMPTS,
    Stage.GENERATING_IMAGES,
    Stage.COMPLETED,
)

ACTIVE_STAGES: FrozenSet[Stage] = frozenset(
    {
        Stage.SHREDDING,
        Stage.ANALYZING,
        Stage.GENERATING_COVER,
        Stage.GENERATING_PROMPTS,
        Stage.GENERATING_IMAGES,
    }
)

TERMINAL_STAGES: FrozenSet[Stage] = frozenset({Stage.COMPLETED, Stage.ERROR})


@dataclass(frozen=True)
class StageWindow:
    """Progress span owned by one runnable stage."""

    stage: Stage
    entry: int
    exit: int

    def at(self, done: int, total: int) -> int:
        """Interpolated progress after `done` of `total` items inside the window."""
        if total <= 0:
            return self.exit
        ratio = max(0, min(done, total)) / float(total)
        return self.entry + int((self.exit - self.entry) * ratio)


STAGE_WINDOWS: Tuple[StageWindow, ...] = (
    StageWindow(Stage.SHREDDING, entry=10, exit=20),
    StageWindow(Stage.ANALYZING, entry=25, exit=45),
    StageWindow(Stage.GENERATING_COVER, entry=55, exit=75),
    StageWindow(Stage.GENERATING_PROMPTS, entry=78, exit=88),
    StageWindow(Stage.GENERATING_IMAGES, entry=90, exit=99),
)

COMPLETED_PROGRESS = 100


def is_valid_transition(current: Stage, target: Stage) -> bool:
    """Single source of truth for allowed stage changes."""
    if current == target:
        return True
    if current == Stage.COMPLETED:
        return False
    if target in (Stage.ERROR, Stage.RESUMING):
        return True
    if current == Stage.ERROR:
        return False
    if current == Stage.RESUMING:
        return target in FORWARD_ORDER and target != Stage.UPLOADED
    return FORWARD_ORDER.index(target) > FORWARD_ORDER.index(current)


class StatusTimestamps(BaseModel):
    """Lifecycle timestamps for a job."""

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class StyleGuide(BaseModel):
    """Global visual context steering every per-page generation call."""

    art_style: str
    characters: str
    setting: str
    title: Optional[str] = None
    author: Optional[str] = None

    @field_validator("art_style", "characters", "setting", mode="before")
    @classmethod
    def _non_empty_text(cls, value) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("value is required")
        return text

    @field_validator("title", "author", mode="before")
    @classmethod
    def _optional_text(cls, value) -> Optional[str]:
        text = str(value or "").strip()
        return text or None


class Job(BaseModel):
    """Persisted pipeline job (one uploaded book)."""

    id: str
    owner_id: str
    title: str
    source_path: Optional[str] = None
    stage: Stage = Stage.UPLOADED
    progress: int = 0
    total_units: int = 0
    style_guide: Optional[StyleGuide] = None
    author: Optional[str] = None
    cover_artifact: str = DEFAULT_COVER_ARTIFACT
    reference_artifact: Optional[str] = None
    error: Optional[str] = None
    timestamps: StatusTimestamps = Field(default_factory=StatusTimestamps)

    @field_validator("owner_id", "title", mode="before")
    @classmethod
    def _non_empty_text(cls, value) -> str:
        text = str(value or "").strip()
        if not text:
            raise ValueError("value is required")
        return text

    @property
    def has_generated_cover(self) -> bool:
        return bool(self.cover_artifact) and self.cover_artifact != DEFAULT_COVER_ARTIFACT

    @property
    def is_finished(self) -> bool:
        return self.stage == Stage.COMPLETED or self.progress >= COMPLETED_PROGRESS


class Unit(BaseModel):
    """One page of a job, carried through prompt and image generation."""

    job_id: str
    ordinal: int = Field(ge=1)
    content: str
    prompt: Optional[str] = None
    artifact: Optional[str] = None
    status: UnitStatus = UnitStatus.PENDING

    def has_prompt(self, min_chars: int) -> bool:
        return len((self.prompt or "").strip()) > min_chars


EventKind = Literal["pipeline_update", "pipeline_error", "log_update"]


class ProgressEvent(BaseModel):
    """Ephemeral progress notification; never persisted."""

    job_id: str
    stage: Stage
    progress: int
    kind: EventKind = "pipeline_update"
    message: Optional[str] = None
    ts: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_payload(self) -> Dict[str, object]:
        return self.model_dump(mode="json")
