"""
Destination store: where validated, mapped rows are committed.

The store is shared by every job. The SQL implementation reflects the
destination table on first use and writes each batch in its own
transaction, so a rejected batch never affects the batches around it.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol

from sqlalchemy import Column, DateTime, Integer, MetaData, Table, Text, func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError

from import_hub.db.models import SYSTEM_TABLES
from import_hub.db.session import get_engine, run_db
from import_hub.domain.imports.errors import BatchWriteError, DestinationNotFoundError, ReservedTableError

logger = logging.getLogger(__name__)


def ensure_safe_table_name(requested_name: str) -> str:
    """Trim a target table name and reject blanks and system tables."""
    normalized = (requested_name or "").strip()
    if not normalized:
        raise ValueError("target table is required")
    if normalized.lower() in SYSTEM_TABLES:
        raise ReservedTableError(normalized)
    return normalized


class DestinationStore(Protocol):
    async def ensure_table(self, table_name: str) -> None:
        """Raise DestinationNotFoundError when the table does not exist."""
        ...

    async def insert_rows(self, table_name: str, rows: List[Dict[str, Any]]) -> int:
        """Write one batch; raise BatchWriteError if the store rejects it."""
        ...


class SqlDestinationStore:
    """DestinationStore backed by a SQLAlchemy engine."""

    def __init__(self, engine: Optional[Engine] = None):
        self._engine = engine
        self._tables: Dict[str, Table] = {}

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = get_engine()
        return self._engine

    def _reflect(self, table_name: str) -> Table:
        table = self._tables.get(table_name)
        if table is not None:
            return table
        try:
            table = Table(table_name, MetaData(), autoload_with=self.engine)
        except NoSuchTableError as e:
            raise DestinationNotFoundError(table_name) from e
        self._tables[table_name] = table
        return table

    def _insert(self, table_name: str, rows: List[Dict[str, Any]]) -> int:
        table = self._reflect(table_name)
        try:
            with self.engine.begin() as conn:
                conn.execute(table.insert(), rows)
        except SQLAlchemyError as e:
            cause = getattr(e, "orig", None) or e
            raise BatchWriteError(table_name, len(rows), str(cause)) from e
        return len(rows)

    async def ensure_table(self, table_name: str) -> None:
        await run_db(self._reflect, table_name)

    async def insert_rows(self, table_name: str, rows: List[Dict[str, Any]]) -> int:
        if not rows:
            return 0
        return await run_db(self._insert, table_name, rows)


def create_destination_table(table_name: str, fields: Iterable[str], engine: Optional[Engine] = None) -> Table:
    """
    Create a destination table with one text column per field (if missing).

    Real destination tables belong to their consumers; this is used to
    bootstrap the known target tables and in tests.
    """
    engine = engine or get_engine()
    metadata = MetaData()
    table = Table(
        ensure_safe_table_name(table_name),
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        *[Column(name, Text, nullable=True) for name in fields],
        Column("imported_at", DateTime(timezone=True), server_default=func.now()),
    )
    metadata.create_all(engine, tables=[table])
    logger.info("Destination table '%s' ready", table_name)
    return table
