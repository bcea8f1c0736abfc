"""Error kinds raised by the rebuild collaborators.

Adapters (search backend, migrator, record source, importer, queue
inspectors, lock) raise these. The pipeline and orchestrator turn them into
outcomes; only MIGRATION and IMPORT are fatal to an entity.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Failure categories reported by a rebuild."""

    CONNECTIVITY = "connectivity"
    UNKNOWN_ENTITY = "unknown_entity"
    DROP = "drop"
    MIGRATION = "migration"
    COUNT = "count"
    IMPORT = "import"
    QUEUE_INSPECTION = "queue_inspection"
    LOCK = "lock"


class RebuildError(Exception):
    """Base class for every rebuild failure."""

    kind: ErrorKind

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ConnectivityError(RebuildError):
    kind = ErrorKind.CONNECTIVITY


class UnknownEntityError(RebuildError):
    """Entity name does not resolve in the catalog."""

    kind = ErrorKind.UNKNOWN_ENTITY

    def __init__(self, name: str, valid_names: list[str]) -> None:
        super().__init__(
            f"Model '{name}' not found. Available models: {', '.join(valid_names)}"
        )
        self.name = name
        self.valid_names = valid_names


class DropError(RebuildError):
    kind = ErrorKind.DROP


class MigrationError(RebuildError):
    kind = ErrorKind.MIGRATION


class CountError(RebuildError):
    kind = ErrorKind.COUNT


class IndexImportError(RebuildError):
    kind = ErrorKind.IMPORT


class QueueInspectionError(RebuildError):
    kind = ErrorKind.QUEUE_INSPECTION


class LockError(RebuildError):
    kind = ErrorKind.LOCK
