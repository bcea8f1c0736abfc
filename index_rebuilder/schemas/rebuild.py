"""Value objects shared by the rebuild pipeline and orchestrator."""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class IndexDescriptor:
    """
    One searchable entity type and the index that holds its documents.

    Attributes:
        entity_type: Display name of the entity (e.g. "RecurringInvoice")
        index_name: Meilisearch index uid (e.g. "recurring_invoices_v2")
        table_name: Source table the records are read from
        primary_key: Column used as the document id and for chunk ordering
        filterable_attributes: Attributes configured as filterable on creation
        sortable_attributes: Attributes configured as sortable on creation
    """

    entity_type: str
    index_name: str
    table_name: str
    primary_key: str = "id"
    filterable_attributes: tuple[str, ...] = ()
    sortable_attributes: tuple[str, ...] = ()

    @property
    def short_name(self) -> str:
        """Name used to select this entity on the command line."""
        return self.entity_type


class ImportMode(str, Enum):
    SYNCHRONOUS = "synchronous"
    QUEUED = "queued"


@dataclass(frozen=True)
class ImportPlan:
    """Sizing of one import run."""

    total_records: int
    chunk_size: int
    mode: ImportMode

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.total_records < 0:
            raise ValueError(f"total_records must not be negative, got {self.total_records}")

    @property
    def expected_job_count(self) -> int:
        return math.ceil(self.total_records / self.chunk_size)


@dataclass(frozen=True)
class QueueSnapshot:
    pending_count: int
    observed_at: float


@dataclass
class WaitState:
    """Mutable bookkeeping for a single queue wait."""

    baseline: int
    started_at: float
    deadline: float
    last_delta: Optional[int] = None
    stable_observations: int = 0


class WaitResult(str, Enum):
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"


class PipelineState(str, Enum):
    IDLE = "idle"
    DROPPING = "dropping"
    MIGRATING = "migrating"
    IMPORTING = "importing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATES = frozenset({PipelineState.SUCCEEDED, PipelineState.FAILED})


@dataclass(frozen=True)
class RebuildOutcome:
    """Terminal result of one entity's pipeline."""

    entity_type: str
    succeeded: bool
    records_processed: int
    duration: float
    failure_reason: Optional[str] = None
    wait_result: Optional[WaitResult] = None

    @property
    def unconfirmed(self) -> bool:
        """True when a requested queue wait ended without confirming the drain."""
        return self.wait_result in (WaitResult.ABORTED, WaitResult.TIMED_OUT)


@dataclass(frozen=True)
class DryRunEntry:
    entity_type: str
    index_name: str
    record_count: int


@dataclass
class RunReport:
    """Aggregate result of an orchestrator invocation."""

    succeeded: bool
    outcomes: list[RebuildOutcome] = field(default_factory=list)
    duration: float = 0.0
    total_records: Optional[int] = None
    planned: list[DryRunEntry] = field(default_factory=list)
    cancelled: bool = False
    error: Optional[str] = None
