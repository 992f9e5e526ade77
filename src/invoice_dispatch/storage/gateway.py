"""Data access gateway — parameterized statements over an async SQLAlchemy engine.

Works with any async SQLAlchemy dialect; the desktop application uses
SQLite through aiosqlite, which needs ``StaticPool`` so an in-memory
database is shared by every checkout.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from invoice_dispatch.core.exceptions import QueryError
from invoice_dispatch.storage.schema import Base

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)


class MutationResult(BaseModel):
    """Metadata returned for statements that do not produce rows."""

    model_config = ConfigDict(frozen=True)

    last_insert_id: int | None = None
    changes: int = 0


def _is_sqlite(database_url: str) -> bool:
    return database_url.lower().startswith("sqlite")


class QueryGateway:
    """Execute parameterized SQL against the local store.

    Each :meth:`execute` call runs in its own transaction and returns either
    the fetched rows as plain dicts or a :class:`MutationResult`.

    Example
    -------
    .. code-block:: python

        gateway = QueryGateway("sqlite+aiosqlite:///./invoicing-app.db")
        await gateway.initialize()

        rows = await gateway.execute(
            "SELECT * FROM invoices WHERE id = :id", {"id": 42}
        )
        result = await gateway.execute(
            "UPDATE invoices SET notes = :notes WHERE id = :id",
            {"id": 42, "notes": "Thanks!"},
        )
        print(result.changes)
    """

    def __init__(self, database_url: str, echo: bool = False) -> None:
        kw: dict[str, Any] = {"echo": echo}
        if _is_sqlite(database_url):
            kw["poolclass"] = StaticPool
            kw["connect_args"] = {"check_same_thread": False}
        else:
            kw["pool_pre_ping"] = True
            kw["pool_recycle"] = 3600

        self.database_url = database_url
        self.engine: AsyncEngine = create_async_engine(database_url, **kw)
        logger.info("QueryGateway created sqlite=%s", _is_sqlite(database_url))

    async def initialize(self) -> None:
        """Create the invoicing tables if they do not exist (idempotent)."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as exc:
            raise QueryError(str(exc)) from exc
        logger.info("Invoicing tables ready")

    async def execute(
        self,
        sql: str,
        params: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]] | MutationResult:
        """Run one parameterized statement.

        Args:
            sql: Statement text using ``:name`` bind parameters
            params: Bind values

        Returns:
            Rows as dicts for queries, :class:`MutationResult` otherwise

        Raises:
            QueryError: If the driver rejects the statement
        """
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(text(sql), dict(params or {}))
                if result.returns_rows:
                    return [dict(row._mapping) for row in result]
                return MutationResult(
                    last_insert_id=result.lastrowid,
                    changes=max(result.rowcount, 0),
                )
        except SQLAlchemyError as exc:
            logger.error("Query failed: %s", exc)
            raise QueryError(str(exc.orig if getattr(exc, "orig", None) else exc)) from exc

    async def fetch_one(
        self,
        sql: str,
        params: Mapping[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        """Run a query and return its first row, or ``None``."""
        rows = await self.execute(sql, params)
        if isinstance(rows, MutationResult):
            raise QueryError("statement did not return rows")
        return rows[0] if rows else None

    async def fetch_all(
        self,
        sql: str,
        params: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Run a query and return every row."""
        rows = await self.execute(sql, params)
        if isinstance(rows, MutationResult):
            raise QueryError("statement did not return rows")
        return rows

    async def mutate(
        self,
        sql: str,
        params: Mapping[str, Any] | None = None,
    ) -> MutationResult:
        """Run an INSERT/UPDATE/DELETE and return its metadata."""
        result = await self.execute(sql, params)
        if not isinstance(result, MutationResult):
            raise QueryError("statement unexpectedly returned rows")
        return result

    async def close(self) -> None:
        await self.engine.dispose()
        logger.info("QueryGateway closed")


__all__ = ["MutationResult", "QueryGateway"]
