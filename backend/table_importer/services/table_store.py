"""Tenant-scoped row replacement against reflected game tables."""

from __future__ import annotations

import logging
import re
import threading
from typing import Any, Callable, Protocol, Sequence

from sqlalchemy import MetaData, Table, delete, insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError

from table_importer.core.errors import (
    DeletePhaseError,
    InputValidationError,
    InsertPhaseError,
)

logger = logging.getLogger(__name__)

TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")
SCOPE_COLUMN = "table_id"
# Columns never handed to the export converter
INTERNAL_COLUMNS = ("id", SCOPE_COLUMN, "created_at", "updated_at")


class TableStore(Protocol):
    def describe(self, table_name: str) -> list[str]:
        """Return the table's column names; reject unknown tables."""
        ...

    def replace_rows(
        self,
        table_name: str,
        table_id: str,
        records: list[dict[str, Any]],
        on_deleted: Callable[[], None] | None = None,
    ) -> int:
        ...

    def fetch_rows(
        self, table_name: str, table_id: str, columns: Sequence[str]
    ) -> list[dict[str, Any]]:
        ...


def validate_table_name(table_name: str) -> str:
    if not table_name or not TABLE_NAME_PATTERN.match(table_name):
        raise InputValidationError(f"Invalid table name: {table_name!r}")
    return table_name


class SqlAlchemyTableStore:
    """Delete-then-insert replacement using SQLAlchemy Core.

    With ``atomic`` both phases share one transaction, so an insert failure
    rolls the delete back. Without it each phase commits on its own and a
    failed insert leaves the tenant's rows empty.
    """

    def __init__(self, engine: Engine, *, atomic: bool = True) -> None:
        self.engine = engine
        self.atomic = atomic
        self._metadata = MetaData()
        self._tables: dict[str, Table] = {}
        self._reflect_lock = threading.Lock()

    def _table(self, table_name: str) -> Table:
        validate_table_name(table_name)
        with self._reflect_lock:
            table = self._tables.get(table_name)
            if table is None:
                try:
                    table = Table(table_name, self._metadata, autoload_with=self.engine)
                except NoSuchTableError as e:
                    raise InputValidationError(f"Unknown table: {table_name}") from e
                if SCOPE_COLUMN not in table.c:
                    raise InputValidationError(
                        f"Table {table_name} has no {SCOPE_COLUMN} column"
                    )
                self._tables[table_name] = table
        return table

    def describe(self, table_name: str) -> list[str]:
        return [column.name for column in self._table(table_name).columns]

    def replace_rows(
        self,
        table_name: str,
        table_id: str,
        records: list[dict[str, Any]],
        on_deleted: Callable[[], None] | None = None,
    ) -> int:
        table = self._table(table_name)
        if self.atomic:
            try:
                with self.engine.begin() as conn:
                    self._delete(conn, table, table_id)
                    if on_deleted:
                        on_deleted()
                    return self._insert(conn, table, records, rolled_back=True)
            except (DeletePhaseError, InsertPhaseError):
                raise
            except SQLAlchemyError as e:
                # Commit itself failed; nothing was applied
                raise InsertPhaseError(
                    f"Failed to commit replacement: {e}", rolled_back=True
                ) from e

        try:
            with self.engine.begin() as conn:
                self._delete(conn, table, table_id)
        except DeletePhaseError:
            raise
        except SQLAlchemyError as e:
            raise DeletePhaseError(f"Failed to clear existing data: {e}") from e
        if on_deleted:
            on_deleted()
        try:
            with self.engine.begin() as conn:
                return self._insert(conn, table, records, rolled_back=False)
        except InsertPhaseError:
            raise
        except SQLAlchemyError as e:
            raise InsertPhaseError(f"Failed to insert new data: {e}") from e

    def _delete(self, conn, table: Table, table_id: str) -> None:
        try:
            result = conn.execute(delete(table).where(table.c[SCOPE_COLUMN] == table_id))
        except SQLAlchemyError as e:
            raise DeletePhaseError(f"Failed to clear existing data: {e}") from e
        logger.info(f"Deleted {result.rowcount} row(s) from {table.name} for {table_id}")

    def _insert(
        self, conn, table: Table, records: list[dict[str, Any]], *, rolled_back: bool
    ) -> int:
        if not records:
            return 0
        try:
            conn.execute(insert(table), records)
        except SQLAlchemyError as e:
            raise InsertPhaseError(
                f"Failed to insert new data: {e}", rolled_back=rolled_back
            ) from e
        logger.info(f"Inserted {len(records)} row(s) into {table.name}")
        return len(records)

    def fetch_rows(
        self, table_name: str, table_id: str, columns: Sequence[str]
    ) -> list[dict[str, Any]]:
        table = self._table(table_name)
        unknown = [c for c in columns if c not in table.c]
        if unknown:
            raise InputValidationError(
                f"Unknown column(s) for {table_name}: {', '.join(unknown)}"
            )
        query = select(*(table.c[c] for c in columns)).where(
            table.c[SCOPE_COLUMN] == table_id
        )
        if "id" in table.c:
            query = query.order_by(table.c.id)
        with self.engine.connect() as conn:
            return [dict(row) for row in conn.execute(query).mappings()]
