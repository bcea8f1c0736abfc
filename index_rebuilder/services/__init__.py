"""Rebuild services."""

from .index_catalog import IndexCatalog, build_default_catalog
from .orchestrator import RebuildOrchestrator
from .queue_inspector import QueueDepthInspector, build_queue_inspector
from .queue_waiter import QueueCompletionWaiter
from .rebuild_pipeline import PipelineOptions, RebuildPipeline

__all__ = [
    "IndexCatalog",
    "PipelineOptions",
    "QueueCompletionWaiter",
    "QueueDepthInspector",
    "RebuildOrchestrator",
    "RebuildPipeline",
    "build_default_catalog",
    "build_queue_inspector",
]
