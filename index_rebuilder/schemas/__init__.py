"""Value objects for the index rebuild."""

from .rebuild import (
    DryRunEntry,
    ImportMode,
    ImportPlan,
    IndexDescriptor,
    PipelineState,
    QueueSnapshot,
    RebuildOutcome,
    RunReport,
    TERMINAL_STATES,
    WaitResult,
    WaitState,
)

__all__ = [
    "DryRunEntry",
    "ImportMode",
    "ImportPlan",
    "IndexDescriptor",
    "PipelineState",
    "QueueSnapshot",
    "RebuildOutcome",
    "RunReport",
    "TERMINAL_STATES",
    "WaitResult",
    "WaitState",
]
