"""
Storage Module
Generated artifact storage
"""
from .artifact_store import BaseArtifactStore, LocalArtifactStore

__all__ = [
    "BaseArtifactStore",
    "LocalArtifactStore",
]
