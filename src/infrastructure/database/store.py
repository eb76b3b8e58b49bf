# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Collection store used by the analytics loader.

The analytics layer talks to the backend through a deliberately narrow
contract:

- ``fetch(query)``: read-only filtered query returning a list of
  field-keyed rows, raising DatabaseError on failure.
- ``update_by_id(table, id, values)``: single-row update returning
  whether a row was changed.

SqlAlchemyAnalyticsStore implements the contract over the async engine
from ``connection.py``; tests substitute an in-memory store.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Protocol

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.infrastructure.database.connection import DatabaseError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CollectionQuery:
    """Read-only query against one backend table.

    Attributes:
        table: Table name.
        columns: Columns to select.
        equals: Equality filters (column -> value).
        range_column: Column filtered to ``[range_start, range_end]``.
        range_start: Inclusive lower bound.
        range_end: Inclusive upper bound.
        order_by: Optional ordering column (descending).
    """

    table: str
    columns: tuple[str, ...]
    equals: dict[str, Any] = field(default_factory=dict)
    range_column: str | None = None
    range_start: date | datetime | None = None
    range_end: date | datetime | None = None
    order_by: str | None = None


class AnalyticsStore(Protocol):
    """Backend contract consumed by the analytics engine."""

    async def fetch(self, query: CollectionQuery) -> list[dict[str, Any]]:
        ...

    async def update_by_id(self, table: str, record_id: str, values: dict[str, Any]) -> bool:
        ...


def _normalize(value: Any) -> Any:
    """Convert driver-specific values to plain JSON-like values."""
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]
    if isinstance(value, dict):
        return {key: _normalize(item) for key, item in value.items()}
    return value


class SqlAlchemyAnalyticsStore:
    """AnalyticsStore over a SQLAlchemy async sessionmaker.

    Tables are addressed with lightweight ``sa.table`` constructs, so no
    ORM mapping of the backend schema is required.
    """

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession] | Callable[[], Any],
        schema: str | None = None,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._schema = schema

    def _table(self, name: str, columns: tuple[str, ...]) -> sa.TableClause:
        return sa.table(name, *(sa.column(c) for c in columns), schema=self._schema)

    def build_select(self, query: CollectionQuery) -> sa.Select:
        """Build the SELECT statement for a collection query."""
        filter_columns = set(query.equals)
        if query.range_column:
            filter_columns.add(query.range_column)
        if query.order_by:
            filter_columns.add(query.order_by)
        all_columns = query.columns + tuple(sorted(filter_columns - set(query.columns)))

        table = self._table(query.table, all_columns)
        stmt = sa.select(*(table.c[name] for name in query.columns))

        for column, value in query.equals.items():
            stmt = stmt.where(table.c[column] == value)
        if query.range_column and query.range_start is not None:
            stmt = stmt.where(table.c[query.range_column] >= query.range_start)
        if query.range_column and query.range_end is not None:
            stmt = stmt.where(table.c[query.range_column] <= query.range_end)
        if query.order_by:
            stmt = stmt.order_by(table.c[query.order_by].desc())
        return stmt

    async def fetch(self, query: CollectionQuery) -> list[dict[str, Any]]:
        stmt = self.build_select(query)
        try:
            async with self._sessionmaker() as session:
                result = await session.execute(stmt)
                rows = result.mappings().all()
        except SQLAlchemyError as e:
            raise DatabaseError(f"Query on '{query.table}' failed", e) from e

        logger.debug("Fetched %d rows from %s", len(rows), query.table)
        return [{key: _normalize(value) for key, value in row.items()} for row in rows]

    async def update_by_id(self, table: str, record_id: str, values: dict[str, Any]) -> bool:
        target = self._table(table, ("id", *values))
        stmt = sa.update(target).where(target.c.id == record_id).values(**values)
        try:
            async with self._sessionmaker() as session:
                result = await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as e:
            raise DatabaseError(f"Update of '{table}' row {record_id} failed", e) from e

        return result.rowcount > 0
