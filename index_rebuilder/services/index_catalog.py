"""Registry of searchable entity types and their indexes.

The catalog is built once at startup and injected wherever it is needed.
Declared order is the order a full rebuild walks the indexes.
"""

import re
from typing import Iterable, Iterator

from ..errors import UnknownEntityError
from ..schemas.rebuild import IndexDescriptor

# Searchable entity types, in full-rebuild order
SEARCHABLE_ENTITY_TYPES = (
    "Client",
    "ClientContact",
    "Credit",
    "Expense",
    "Invoice",
    "Project",
    "PurchaseOrder",
    "Quote",
    "RecurringInvoice",
    "Task",
    "Vendor",
    "VendorContact",
)

# Every index is scoped per tenant and hides soft-deleted rows via filters
DEFAULT_FILTERABLE_ATTRIBUTES = ("company_id", "is_deleted")
DEFAULT_SORTABLE_ATTRIBUTES = ("updated_at",)

_CAMEL_BOUNDARY_RE = re.compile(r"(?<!^)(?=[A-Z])")


def table_name_for(entity_type: str) -> str:
    """"PurchaseOrder" -> "purchase_orders"."""
    return _CAMEL_BOUNDARY_RE.sub("_", entity_type).lower() + "s"


class IndexCatalog:
    """Immutable, ordered mapping of entity type -> index descriptor."""

    def __init__(self, descriptors: Iterable[IndexDescriptor]) -> None:
        self._descriptors = tuple(descriptors)
        self._by_entity: dict[str, IndexDescriptor] = {}
        index_names: set[str] = set()

        for descriptor in self._descriptors:
            if descriptor.entity_type in self._by_entity:
                raise ValueError(f"Duplicate entity type: {descriptor.entity_type}")
            if descriptor.index_name in index_names:
                raise ValueError(f"Duplicate index name: {descriptor.index_name}")
            self._by_entity[descriptor.entity_type] = descriptor
            index_names.add(descriptor.index_name)

    def __iter__(self) -> Iterator[IndexDescriptor]:
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)

    def descriptors(self) -> tuple[IndexDescriptor, ...]:
        return self._descriptors

    def short_names(self) -> list[str]:
        return [d.short_name for d in self._descriptors]

    def get(self, entity_type: str) -> IndexDescriptor:
        """Look up a descriptor by entity type."""
        try:
            return self._by_entity[entity_type]
        except KeyError:
            raise UnknownEntityError(entity_type, self.short_names()) from None

    def find_by_short_name(self, name: str) -> IndexDescriptor:
        """Case-sensitive exact match against each descriptor's short name."""
        for descriptor in self._descriptors:
            if descriptor.short_name == name:
                return descriptor
        raise UnknownEntityError(name, self.short_names())


def build_default_catalog(suffix: str = "_v2") -> IndexCatalog:
    """Build the catalog of the application's searchable entity types."""
    return IndexCatalog(
        IndexDescriptor(
            entity_type=entity_type,
            index_name=f"{table_name_for(entity_type)}{suffix}",
            table_name=table_name_for(entity_type),
            filterable_attributes=DEFAULT_FILTERABLE_ATTRIBUTES,
            sortable_attributes=DEFAULT_SORTABLE_ATTRIBUTES,
        )
        for entity_type in SEARCHABLE_ENTITY_TYPES
    )


DEFAULT_CATALOG = build_default_catalog()
