"""Dialect strategies for the two supported stores.

Services never branch on the backend type; they ask the backend resolved from
their session's bind for the dialect-specific pieces (date filters, month
keys, insert-or-ignore) and run statements through it so that insert ids and
affected-row counts come back in one shape.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Union

from sqlalchemy import Table, func, insert, select
from sqlalchemy.engine import Connection, Engine, Row
from sqlalchemy.orm import Session
from sqlalchemy.sql import ColumnElement, Executable
from sqlalchemy.sql.dml import Insert


@dataclass(frozen=True)
class StatementResult:
    last_insert_id: Optional[int]
    rows_affected: int


class Backend(ABC):
    name = "generic"

    def run_query(self, session: Session, stmt: Executable) -> list[Row]:
        return list(session.execute(stmt).all())

    def run_scalar(self, session: Session, stmt: Executable) -> Any:
        return session.execute(stmt).scalar()

    def run_statement(self, session: Session, stmt: Executable) -> StatementResult:
        result = session.execute(stmt)
        last_insert_id: Optional[int] = None
        if result.is_insert:
            pk = result.inserted_primary_key
            if pk and pk[0] is not None:
                last_insert_id = int(pk[0])
            elif result.lastrowid:
                last_insert_id = int(result.lastrowid)
        return StatementResult(
            last_insert_id=last_insert_id, rows_affected=max(result.rowcount, 0)
        )

    def ping(self, session: Session) -> bool:
        return self.run_scalar(session, select(1)) == 1

    @abstractmethod
    def date_filter(
        self, column: Any, month: Optional[int], year: Optional[int]
    ) -> list[ColumnElement[bool]]:
        raise NotImplementedError

    @abstractmethod
    def month_key(self, column: Any) -> ColumnElement[str]:
        raise NotImplementedError

    @abstractmethod
    def insert_ignore(self, table: Table) -> Insert:
        raise NotImplementedError


class SQLiteBackend(Backend):
    name = "sqlite"

    def date_filter(
        self, column: Any, month: Optional[int], year: Optional[int]
    ) -> list[ColumnElement[bool]]:
        # A month on its own has no calendar meaning here and is ignored.
        if year is None:
            return []
        conditions = [func.strftime("%Y", column) == f"{int(year):04d}"]
        if month is not None:
            conditions.insert(0, func.strftime("%m", column) == f"{int(month):02d}")
        return conditions

    def month_key(self, column: Any) -> ColumnElement[str]:
        return func.strftime("%Y-%m", column)

    def insert_ignore(self, table: Table) -> Insert:
        return insert(table).prefix_with("OR IGNORE")


class MySQLBackend(Backend):
    name = "mysql"

    def date_filter(
        self, column: Any, month: Optional[int], year: Optional[int]
    ) -> list[ColumnElement[bool]]:
        if year is None:
            return []
        conditions = [func.year(column) == int(year)]
        if month is not None:
            conditions.insert(0, func.month(column) == int(month))
        return conditions

    def month_key(self, column: Any) -> ColumnElement[str]:
        return func.date_format(column, "%Y-%m")

    def insert_ignore(self, table: Table) -> Insert:
        return insert(table).prefix_with("IGNORE")


_BACKENDS: dict[str, type[Backend]] = {
    SQLiteBackend.name: SQLiteBackend,
    MySQLBackend.name: MySQLBackend,
}


def backend_for_dialect(dialect_name: str) -> Backend:
    try:
        return _BACKENDS[dialect_name]()
    except KeyError as exc:
        raise ValueError(f"Unsupported database dialect '{dialect_name}'") from exc


def backend_for(bind: Union[Engine, Connection, Session]) -> Backend:
    if isinstance(bind, Session):
        bind = bind.get_bind()
    return backend_for_dialect(bind.dialect.name)
