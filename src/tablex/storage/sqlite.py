"""
SQLite Storage Port

Adapts the stdlib ``sqlite3`` driver to the storage port. Statements run in
autocommit mode; ``batch`` wraps its statements in one immediate transaction and
rolls everything back on the first failure.
"""

import logging
import sqlite3
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from tablex.domain.errors import DuplicateName, StorageFailure

from .port import QueryResult, Row, RunResult

logger = logging.getLogger(__name__)


def _translate(error: sqlite3.Error, sql: str) -> Exception:
    """Map a driver error onto the domain taxonomy."""
    message = str(error)
    if "already exists" in message:
        return DuplicateName(message=message)
    return StorageFailure(message=f"{message} (while executing: {sql.strip()[:200]})")


class SQLiteStatement:
    """Prepared statement bound to a ``SQLiteStoragePort``"""

    def __init__(self, port: "SQLiteStoragePort", sql: str, params: tuple[Any, ...] = ()) -> None:
        self._port = port
        self.sql = sql
        self.params = params

    def bind(self, *params: Any) -> "SQLiteStatement":
        return SQLiteStatement(self._port, self.sql, tuple(params))

    def run(self) -> RunResult:
        cursor = self._port._execute(self.sql, self.params)
        return RunResult(changes=max(cursor.rowcount, 0))

    def all(self) -> QueryResult:
        cursor = self._port._execute(self.sql, self.params)
        return QueryResult(rows=[dict(row) for row in cursor.fetchall()])

    def first(self) -> Row | None:
        cursor = self._port._execute(self.sql, self.params)
        row = cursor.fetchone()
        return dict(row) if row is not None else None

    def __repr__(self) -> str:
        return f"SQLiteStatement({self.sql!r}, params={self.params!r})"


class SQLiteStoragePort:
    """Storage port over a SQLite database file (or ``:memory:``)

    Attributes:
        path: Database location
        enforce_foreign_keys: Turn on ``PRAGMA foreign_keys`` for the connection
    """

    def __init__(self, path: str | Path = ":memory:", enforce_foreign_keys: bool = True) -> None:
        self.path = str(path)
        self.enforce_foreign_keys = enforce_foreign_keys
        self._connection = sqlite3.connect(self.path, isolation_level=None)
        self._connection.row_factory = sqlite3.Row
        if enforce_foreign_keys:
            self._connection.execute("PRAGMA foreign_keys = ON")

    def prepare(self, sql: str) -> SQLiteStatement:
        return SQLiteStatement(self, sql)

    def batch(self, statements: Sequence[SQLiteStatement]) -> list[RunResult]:
        """Execute statements atomically

        Raises:
            StorageFailure: If any statement fails; nothing is applied
        """
        results: list[RunResult] = []
        self._execute("BEGIN IMMEDIATE", ())
        try:
            for statement in statements:
                cursor = self._execute(statement.sql, statement.params)
                results.append(RunResult(changes=max(cursor.rowcount, 0)))
        except Exception:
            self._connection.execute("ROLLBACK")
            logger.debug("Batch of %d statements rolled back", len(statements))
            raise
        self._execute("COMMIT", ())
        return results

    def close(self) -> None:
        self._connection.close()

    def __enter__(self) -> "SQLiteStoragePort":
        return self

    def __exit__(self, exc_type: Any, exc: Any, traceback_obj: Any) -> None:
        del exc_type, exc, traceback_obj
        self.close()

    def _execute(self, sql: str, params: tuple[Any, ...]) -> sqlite3.Cursor:
        logger.debug("SQL: %s params=%r", sql, params)
        try:
            return self._connection.execute(sql, params)
        except sqlite3.Error as error:
            raise _translate(error, sql) from error
