"""Read-only introspection and query access to the relational store."""

from __future__ import annotations

from typing import Any

import sqlglot
import structlog
from sqlalchemy import Engine, inspect, text
from sqlalchemy.exc import NoSuchTableError, SQLAlchemyError
from sqlglot import exp
from sqlglot.errors import SqlglotError

from telemetry_agent.errors import StoreError, UnauthorizedQuery

logger = structlog.get_logger()

READ_ONLY_MESSAGE = "Only SELECT queries are allowed for security reasons."

FORBIDDEN_STATEMENTS: tuple[type[exp.Expression], ...] = (
    exp.Delete,
    exp.Drop,
    exp.TruncateTable,
    exp.Update,
    exp.Insert,
    exp.Create,
    exp.Alter,
    exp.Grant,
    exp.Command,
)

_SQLGLOT_DIALECTS = {"postgresql": "postgres", "sqlite": "sqlite", "mysql": "mysql"}


class StructuredStore:
    """Thin client over a SQLAlchemy engine.

    Every method converts driver failures into `StoreError`; `query` refuses
    anything that is not a SELECT before a connection is opened.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def list_tables(self) -> list[str]:
        try:
            return sorted(inspect(self.engine).get_table_names())
        except SQLAlchemyError as exc:
            raise StoreError(f"Error listing tables: {exc}") from exc

    def describe_table(self, name: str) -> dict[str, dict[str, Any]]:
        """Return `{column: {"type": str, "nullable": bool}}` for `name`."""
        try:
            columns = inspect(self.engine).get_columns(name)
        except NoSuchTableError as exc:
            raise StoreError(f"Table '{name}' does not exist") from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"Error describing table '{name}': {exc}") from exc
        return {
            column["name"]: {
                "type": str(column["type"]),
                "nullable": bool(column.get("nullable", True)),
            }
            for column in columns
        }

    def query(self, sql: str) -> list[dict[str, Any]]:
        statement = ensure_select(sql, dialect=_SQLGLOT_DIALECTS.get(self.engine.dialect.name))
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(text(statement)).mappings().all()
        except SQLAlchemyError as exc:
            logger.warning("Read-only query failed", error=str(exc))
            raise StoreError(f"SQL Error: {exc}") from exc
        return [dict(row) for row in rows]


def ensure_select(sql: str, dialect: str | None = None) -> str:
    """Return the trimmed statement, or raise if it is not a single SELECT.

    The statement is parsed with sqlglot; prefix checks alone let stacked
    statements such as `SELECT 1; DROP TABLE x` through.
    """
    statement = (sql or "").strip()
    if not statement:
        raise UnauthorizedQuery(READ_ONLY_MESSAGE)

    try:
        parsed = [node for node in sqlglot.parse(statement, read=dialect) if node is not None]
    except SqlglotError as exc:
        raise UnauthorizedQuery(READ_ONLY_MESSAGE) from exc

    if len(parsed) != 1 or not isinstance(parsed[0], exp.Select):
        raise UnauthorizedQuery(READ_ONLY_MESSAGE)
    forbidden = parsed[0].find(*FORBIDDEN_STATEMENTS)
    if forbidden is not None:
        logger.warning("Forbidden statement inside SELECT", node=type(forbidden).__name__)
        raise UnauthorizedQuery(READ_ONLY_MESSAGE)
    return statement
