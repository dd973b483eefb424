"""Core contracts and shared types for the illustration pipeline."""

from .contracts import (
    ACTIVE_STAGES,
    COMPLETED_PROGRESS,
    DEFAULT_COVER_ARTIFACT,
    FORWARD_ORDER,
    STAGE_WINDOWS,
    TERMINAL_STAGES,
    Job,
    ProgressEvent,
    Stage,
    StageWindow,
    StatusTimestamps,
    StyleGuide,
    Unit,
    UnitStatus,
    is_valid_transition,
)

__all__ = [
    "ACTIVE_STAGES",
    "COMPLETED_PROGRESS",
    "DEFAULT_COVER_ARTIFACT",
    "FORWARD_ORDER",
    "STAGE_WINDOWS",
    "TERMINAL_STAGES",
    "Job",
    "ProgressEvent",
    "Stage",
    "StageWindow",
    "StatusTimestamps",
    "StyleGuide",
    "Unit",
    "UnitStatus",
    "is_valid_transition",
]
