"""Batch dispatch of work units across providers."""

from switchyard.dispatch.artifacts import ArtifactStore, FileArtifactStore, generate_alt_text
from switchyard.dispatch.models import DispatchResult, WorkUnit
from switchyard.dispatch.pipeline import BatchDispatchPipeline, PipelineConfig

__all__ = [
    "ArtifactStore",
    "BatchDispatchPipeline",
    "DispatchResult",
    "FileArtifactStore",
    "PipelineConfig",
    "WorkUnit",
    "generate_alt_text",
]
