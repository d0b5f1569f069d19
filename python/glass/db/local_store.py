"""Local embedded store adapter.

Row-store primitives over the SQLite tables in glass.db.models:
- get / put / delete by primary key
- scan with filters, ordering and limit
- bulk update_where / delete_where, count and sum aggregates

Filters use the same small document-filter language as the remote store so
repositories can build one filter for either backend:
    {"user_id": "u1"}                          equality (None means IS NULL)
    {"start_at": {"$gte": a, "$lte": b}}       comparison operators
    {"provider": {"$in": ["openai", "gemini"]}}

All calls are synchronous and run in their own short transaction.
SQLAlchemy failures surface as StorageError(table, operation).
"""

import operator
from collections.abc import Callable, Mapping, Sequence
from contextlib import AbstractContextManager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import Select, delete, func, select, update
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.orm import Session, sessionmaker

from glass.db.models import TABLES, Base
from glass.db.session import unit_of_work

_OPERATORS: dict[str, Callable[[Any, Any], Any]] = {
    "$gt": operator.gt,
    "$gte": operator.ge,
    "$lt": operator.lt,
    "$lte": operator.le,
    "$ne": lambda column, value: column.is_not(None) if value is None else column != value,
    "$in": lambda column, value: column.in_(list(value)),
}


def _to_utc(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
    return value


def _from_db(value: Any) -> Any:
    # SQLite drops tzinfo; everything is stored as UTC
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _row_to_dict(row: Base) -> dict[str, Any]:
    return {attr.key: _from_db(getattr(row, attr.key)) for attr in sa_inspect(row).mapper.column_attrs}


class LocalStore:
    """Synchronous row store over the local SQLite database."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _model(table: str) -> type[Base]:
        try:
            return TABLES[table]
        except KeyError:
            raise ValueError(f"Unknown local table: {table}") from None

    @staticmethod
    def _columns(model: type[Base]) -> set[str]:
        return {attr.key for attr in sa_inspect(model).column_attrs}

    @staticmethod
    def _primary_key(model: type[Base]) -> str:
        return sa_inspect(model).primary_key[0].key

    def _clean(self, model: type[Base], values: Mapping[str, Any]) -> dict[str, Any]:
        columns = self._columns(model)
        return {k: _to_utc(v) for k, v in values.items() if k in columns}

    def _apply_where(self, model: type[Base], stmt: Any, where: Mapping[str, Any] | None) -> Any:
        columns = self._columns(model)
        for field, condition in (where or {}).items():
            if field not in columns:
                raise ValueError(f"Unknown column {field!r} for table {model.__tablename__}")
            column = getattr(model, field)
            if isinstance(condition, Mapping):
                for op, operand in condition.items():
                    if op not in _OPERATORS:
                        raise ValueError(f"Unsupported filter operator: {op}")
                    stmt = stmt.where(_OPERATORS[op](column, _to_utc(operand)))
            elif condition is None:
                stmt = stmt.where(column.is_(None))
            else:
                stmt = stmt.where(column == _to_utc(condition))
        return stmt

    def _unit(self, table: str, operation: str) -> AbstractContextManager[Session]:
        return unit_of_work(self._session_factory, table, operation)

    # ------------------------------------------------------------------
    # Key/row primitives
    # ------------------------------------------------------------------

    def get(self, table: str, key: str) -> dict[str, Any] | None:
        """Fetch one row by primary key."""
        model = self._model(table)
        with self._unit(table, "get") as db:
            row = db.get(model, key)
            return _row_to_dict(row) if row is not None else None

    def put(self, table: str, key: str, value: Mapping[str, Any]) -> dict[str, Any]:
        """Insert or update the row with the given primary key.

        Only the supplied columns are written on update.
        """
        model = self._model(table)
        values = self._clean(model, value)
        values[self._primary_key(model)] = key
        with self._unit(table, "put") as db:
            row = db.get(model, key)
            if row is None:
                row = model(**values)
                db.add(row)
            else:
                for field, field_value in values.items():
                    setattr(row, field, field_value)
            db.flush()
            return _row_to_dict(row)

    def insert_many(self, table: str, values: Sequence[Mapping[str, Any]]) -> list[dict[str, Any]]:
        """Insert several rows in one transaction (all or nothing)."""
        model = self._model(table)
        with self._unit(table, "insert_many") as db:
            rows = [model(**self._clean(model, value)) for value in values]
            db.add_all(rows)
            db.flush()
            return [_row_to_dict(row) for row in rows]

    def delete(self, table: str, key: str) -> bool:
        """Delete one row by primary key. Returns True if a row was removed."""
        model = self._model(table)
        with self._unit(table, "delete") as db:
            row = db.get(model, key)
            if row is None:
                return False
            db.delete(row)
            return True

    def scan(
        self,
        table: str,
        where: Mapping[str, Any] | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return rows matching the filter, optionally ordered and limited."""
        model = self._model(table)
        stmt: Select = self._apply_where(model, select(model), where)
        if order_by is not None:
            column = getattr(model, order_by)
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._unit(table, "scan") as db:
            return [_row_to_dict(row) for row in db.scalars(stmt).all()]

    # ------------------------------------------------------------------
    # Bulk helpers
    # ------------------------------------------------------------------

    def update_where(self, table: str, where: Mapping[str, Any], values: Mapping[str, Any]) -> int:
        """Update every matching row. Returns the number of rows changed."""
        model = self._model(table)
        stmt = self._apply_where(model, update(model), where).values(**self._clean(model, values))
        with self._unit(table, "update_where") as db:
            return db.execute(stmt).rowcount

    def delete_where(self, table: str, where: Mapping[str, Any]) -> int:
        """Delete every matching row. Returns the number of rows removed."""
        model = self._model(table)
        stmt = self._apply_where(model, delete(model), where)
        with self._unit(table, "delete_where") as db:
            return db.execute(stmt).rowcount

    def set_exclusive_flag(
        self,
        table: str,
        where: Mapping[str, Any],
        key: str,
        field: str,
        extra: Mapping[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Clear a boolean flag on every matching row, then set it on one row.

        Both steps run in one transaction, so readers never observe two
        flagged rows. Returns the flagged row, or None if key does not match.
        """
        model = self._model(table)
        extra_values = self._clean(model, extra or {})
        with self._unit(table, "set_exclusive_flag") as db:
            row = db.scalars(
                self._apply_where(model, select(model), where).where(
                    getattr(model, self._primary_key(model)) == key
                )
            ).first()
            if row is None:
                return None
            clear = self._apply_where(model, update(model), where).where(getattr(model, field).is_(True))
            db.execute(clear.values(**{field: False}, **extra_values))
            db.refresh(row)
            setattr(row, field, True)
            for name, value in extra_values.items():
                setattr(row, name, value)
            db.flush()
            return _row_to_dict(row)

    def count(self, table: str, where: Mapping[str, Any] | None = None) -> int:
        """Count matching rows."""
        model = self._model(table)
        stmt = self._apply_where(model, select(func.count()).select_from(model), where)
        with self._unit(table, "count") as db:
            return int(db.scalar(stmt) or 0)

    def aggregate_sum(self, table: str, column: str, where: Mapping[str, Any] | None = None) -> int:
        """Sum a numeric column over matching rows (0 when nothing matches)."""
        model = self._model(table)
        stmt = self._apply_where(
            model, select(func.coalesce(func.sum(getattr(model, column)), 0)), where
        )
        with self._unit(table, "aggregate_sum") as db:
            return int(db.scalar(stmt) or 0)
