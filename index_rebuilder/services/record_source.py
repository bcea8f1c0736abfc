"""Read searchable records straight from their tables.

Business models live in the application; here every entity is addressed
through a lightweight SQLAlchemy Core ``table()`` keyed by its primary key,
and rows are walked in primary-key order (keyset pagination) so chunks stay
stable while the table is written to.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Mapping

from sqlalchemy import column, func, literal_column, select, table
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..errors import CountError, IndexImportError
from ..schemas.rebuild import IndexDescriptor


def _source_table(descriptor: IndexDescriptor):
    return table(descriptor.table_name, column(descriptor.primary_key))


def _serialize_value(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return None
    return value


def serialize_record(row: Mapping[str, Any]) -> dict:
    """Turn a table row into a JSON-safe Meilisearch document."""
    return {key: _serialize_value(value) for key, value in row.items()}


class RecordSource:
    """Counts and streams the records of one entity's table."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self.session_maker = session_maker

    async def count(self, descriptor: IndexDescriptor) -> int:
        source = _source_table(descriptor)
        try:
            async with self.session_maker() as db:
                result = await db.execute(select(func.count()).select_from(source))
                return result.scalar() or 0
        except SQLAlchemyError as exc:
            raise CountError(
                f"Could not count {descriptor.entity_type} records: {exc}"
            ) from exc

    async def iter_chunks(
        self, descriptor: IndexDescriptor, chunk_size: int
    ) -> AsyncIterator[list[dict]]:
        """Yield serialized documents in primary-key order, chunk_size at a time."""
        source = _source_table(descriptor)
        pk = source.c[descriptor.primary_key]
        last_id = None

        while True:
            query = select(literal_column("*")).select_from(source).order_by(pk).limit(chunk_size)
            if last_id is not None:
                query = query.where(pk > last_id)

            try:
                async with self.session_maker() as db:
                    result = await db.execute(query)
                    rows = [dict(row._mapping) for row in result.all()]
            except SQLAlchemyError as exc:
                raise IndexImportError(
                    f"Could not read {descriptor.entity_type} records: {exc}"
                ) from exc

            if not rows:
                return

            last_id = rows[-1][descriptor.primary_key]
            yield [serialize_record(row) for row in rows]

            if len(rows) < chunk_size:
                return

    async def iter_id_ranges(
        self, descriptor: IndexDescriptor, chunk_size: int
    ) -> AsyncIterator[tuple[Any, Any]]:
        """Yield inclusive (first_id, last_id) bounds of consecutive chunks."""
        source = _source_table(descriptor)
        pk = source.c[descriptor.primary_key]
        last_id = None

        while True:
            query = select(pk).order_by(pk).limit(chunk_size)
            if last_id is not None:
                query = query.where(pk > last_id)

            try:
                async with self.session_maker() as db:
                    result = await db.execute(query)
                    ids = list(result.scalars().all())
            except SQLAlchemyError as exc:
                raise IndexImportError(
                    f"Could not read {descriptor.entity_type} ids: {exc}"
                ) from exc

            if not ids:
                return

            last_id = ids[-1]
            yield ids[0], ids[-1]

            if len(ids) < chunk_size:
                return

    async def fetch_range(
        self, descriptor: IndexDescriptor, first_id: Any, last_id: Any
    ) -> list[dict]:
        """Serialized documents with first_id <= primary key <= last_id."""
        source = _source_table(descriptor)
        pk = source.c[descriptor.primary_key]
        query = (
            select(literal_column("*"))
            .select_from(source)
            .where(pk >= first_id, pk <= last_id)
            .order_by(pk)
        )

        try:
            async with self.session_maker() as db:
                result = await db.execute(query)
                return [serialize_record(dict(row._mapping)) for row in result.all()]
        except SQLAlchemyError as exc:
            raise IndexImportError(
                f"Could not read {descriptor.entity_type} records {first_id}..{last_id}: {exc}"
            ) from exc
