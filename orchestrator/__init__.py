"""Resumable pipeline orchestration: intake, stages, pacing, progress."""

from .intake import IntakeAction, IntakeDecision, JobIntakeGuard
from .progress import ProgressBroadcaster, ProgressSink
from .service import PipelineOrchestrator
from .stages import (
    CONTINUITY_SEED,
    AnalyzeStage,
    CoverStage,
    ImageStage,
    PromptStage,
    ShredStage,
    StageContext,
    StageRunner,
    build_stage_runners,
)
from .store import InMemoryJobStore, JsonFileJobStore
from .throttle import RateLimiter, RetryingCaller, is_transient_error

__all__ = [
    "CONTINUITY_SEED",
    "AnalyzeStage",
    "CoverStage",
    "ImageStage",
    "InMemoryJobStore",
    "IntakeAction",
    "IntakeDecision",
    "JobIntakeGuard",
    "JsonFileJobStore",
    "PipelineOrchestrator",
    "ProgressBroadcaster",
    "ProgressSink",
    "PromptStage",
    "RateLimiter",
    "RetryingCaller",
    "ShredStage",
    "StageContext",
    "StageRunner",
    "build_stage_runners",
    "is_transient_error",
]
