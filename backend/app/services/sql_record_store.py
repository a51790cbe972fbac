from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy import Table, delete, insert, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from app.database import Base
from app.services.record_store import (
    CONNECTION_FAILURE,
    UNDEFINED_RELATION,
    ChangeBus,
    ChangeCallback,
    ChangeEvent,
    Filters,
    StoreError,
    Unsubscribe,
)

logger = logging.getLogger("marketplace.store.sql")

UNDEFINED_COLUMN = "42703"
GENERIC_FAILURE = "XX000"


def _store_error(exc: SQLAlchemyError, table: str) -> StoreError:
    """Map a SQLAlchemy failure onto record-store error codes."""

    orig = getattr(exc, "orig", None)
    pgcode = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    text = str(orig or exc).lower()
    if pgcode == UNDEFINED_RELATION or "no such table" in text or ("relation" in text and "does not exist" in text):
        return StoreError(UNDEFINED_RELATION, f'relation "{table}" does not exist')
    if pgcode:
        return StoreError(str(pgcode), str(orig))
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return StoreError(CONNECTION_FAILURE, "connection invalidated")
    if exc.__class__.__name__ == "OperationalError":
        return StoreError(CONNECTION_FAILURE, str(orig or exc))
    return StoreError(GENERIC_FAILURE, str(orig or exc))


class SqlRecordStore:
    """Record store over the ORM tables.

    Every call runs in its own transaction in the threadpool. Committed
    changes are published on the ``ChangeBus`` from the caller's thread,
    after the await returns.
    """

    def __init__(self, engine: Engine, *, bus: Optional[ChangeBus] = None, metadata=None) -> None:
        self.engine = engine
        self.bus = bus or ChangeBus()
        self.metadata = metadata if metadata is not None else Base.metadata

    def _table(self, name: str) -> Table:
        table = self.metadata.tables.get(name)
        if table is None:
            raise StoreError(UNDEFINED_RELATION, f'relation "{name}" does not exist')
        return table

    def _columns(self, table: Table, keys) -> None:
        unknown = [k for k in keys if k not in table.c]
        if unknown:
            raise StoreError(UNDEFINED_COLUMN, f"unknown column(s) on {table.name}: {', '.join(sorted(unknown))}")

    def _where(self, table: Table, filters: Filters | None) -> list:
        filters = filters or {}
        self._columns(table, filters)
        clauses = []
        for column, expected in filters.items():
            col = table.c[column]
            if isinstance(expected, (list, tuple, set, frozenset)):
                clauses.append(col.in_(list(expected)))
            elif expected is None:
                clauses.append(col.is_(None))
            else:
                clauses.append(col == expected)
        return clauses

    async def _run(self, table: str, fn: Callable[[Connection], Any]) -> Any:
        def work() -> Any:
            try:
                with self.engine.begin() as conn:
                    return fn(conn)
            except SQLAlchemyError as exc:
                err = _store_error(exc, table)
                logger.warning("sql_store_failed", extra={"table": table, "store_code": err.code})
                raise err from exc

        return await run_in_threadpool(work)

    async def select(
        self,
        table: str,
        filters: Filters | None = None,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        t = self._table(table)
        stmt = select(t).where(*self._where(t, filters))
        if order_by:
            self._columns(t, [order_by])
            col = t.c[order_by]
            stmt = stmt.order_by(col.desc() if descending else col.asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        def fn(conn: Connection) -> list[dict[str, Any]]:
            return [dict(r._mapping) for r in conn.execute(stmt)]

        return await self._run(table, fn)

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        t = self._table(table)
        self._columns(t, row)
        now = datetime.utcnow()
        values = dict(row)
        values.setdefault("id", str(uuid.uuid4()))
        if "created_at" in t.c:
            values.setdefault("created_at", now)
        if "updated_at" in t.c:
            values.setdefault("updated_at", now)

        def fn(conn: Connection) -> dict[str, Any]:
            conn.execute(insert(t).values(**values))
            return dict(conn.execute(select(t).where(t.c.id == values["id"])).one()._mapping)

        created = await self._run(table, fn)
        self.bus.publish(ChangeEvent("INSERT", table, new=created))
        return created

    async def update(self, table: str, filters: Filters, patch: dict[str, Any]) -> list[dict[str, Any]]:
        t = self._table(table)
        self._columns(t, patch)
        where = self._where(t, filters)

        def fn(conn: Connection) -> list[tuple[dict[str, Any], dict[str, Any]]]:
            before = [dict(r._mapping) for r in conn.execute(select(t).where(*where).with_for_update())]
            if not before:
                return []
            ids = [r["id"] for r in before]
            stmt = update(t).where(t.c.id.in_(ids), *where).values(**patch)
            if conn.dialect.update_returning:
                updated = [dict(m._mapping) for m in conn.execute(stmt.returning(*t.c))]
            else:
                if conn.execute(stmt).rowcount == 0:
                    return []
                updated = [dict(m._mapping) for m in conn.execute(select(t).where(t.c.id.in_(ids)))]
            after = {r["id"]: r for r in updated}
            return [(old, after[old["id"]]) for old in before if old["id"] in after]

        pairs = await self._run(table, fn)
        for old, new in pairs:
            self.bus.publish(ChangeEvent("UPDATE", table, new=new, old=old))
        return [new for _, new in pairs]

    async def delete(self, table: str, filters: Filters) -> int:
        t = self._table(table)
        where = self._where(t, filters)

        def fn(conn: Connection) -> list[dict[str, Any]]:
            removed = [dict(r._mapping) for r in conn.execute(select(t).where(*where).with_for_update())]
            if removed:
                conn.execute(delete(t).where(t.c.id.in_([r["id"] for r in removed])))
            return removed

        removed = await self._run(table, fn)
        for old in removed:
            self.bus.publish(ChangeEvent("DELETE", table, old=old))
        return len(removed)

    def subscribe(self, table: str, filters: Filters, on_change: ChangeCallback) -> Unsubscribe:
        self._table(table)
        return self.bus.subscribe(table, filters, on_change)
