"""
Parameterized CRUD statements over a SQLite database

Only ``Identifier`` objects are ever placed in identifier positions of a
statement (table and column names). Values are always bound as ``?``
parameters. Condition strings are written by this package, never taken from
a client.
"""

import asyncio
import re
import sqlite3
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from .constants import IDENTIFIER_PATTERN
from .errors import DuplicateError, InvalidPropertyError, StorageError
from .logger import get_logger, log_database_event

logger = get_logger()

Row = Dict[str, Any]

_IDENTIFIER_RE = re.compile(IDENTIFIER_PATTERN)


class Identifier(str):
    """A table or column name that is safe to place in SQL text"""

    def __new__(cls, name: Union[str, Enum]):
        if isinstance(name, Identifier):
            return name
        if isinstance(name, Enum):
            name = name.value
        if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
            raise InvalidPropertyError(f"Not a valid SQL identifier: {name!r}")
        return super().__new__(cls, name)

    def quoted(self) -> str:
        return f'"{self}"'


class RowStore:
    """
    Executes one statement per call against a single SQLite connection

    Statements run on a worker thread so the event loop keeps serving other
    connections; a lock serializes access to the shared connection.
    """

    def __init__(self, path: str):
        self.path = path
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = asyncio.Lock()

    def open(self):
        """Open the database file (autocommit mode)"""
        if self._connection is not None:
            return
        self._connection = sqlite3.connect(
            self.path, check_same_thread=False, isolation_level=None
        )
        self._connection.row_factory = sqlite3.Row
        logger.info(f"Database opened: {self.path}")

    async def close(self):
        async with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
                logger.info(f"Database closed: {self.path}")

    async def execute_script(self, sql: str):
        """Run trusted DDL, e.g. the schema"""
        async with self._lock:
            connection = self._require_connection()
            try:
                await asyncio.to_thread(connection.executescript, sql)
            except sqlite3.Error as e:
                raise StorageError(f"Script failed: {e}") from e

    async def select(
        self,
        table: Union[str, Identifier],
        condition: str = "true",
        placeholders: Sequence[Any] = (),
        all: bool = True,
        order_by: Optional[Union[str, Enum, Identifier]] = None,
    ) -> Union[Optional[Row], List[Row]]:
        """
        Read rows from a table

        Args:
            table: Table to read
            condition: SQL condition, using ``?`` for every value
            placeholders: Values bound to the condition, in order
            all: Return every matching row, or only the first one
            order_by: Column to sort by (ascending)

        Returns:
            List of rows, or a single row / None when ``all`` is false
        """
        table = Identifier(table)
        sql = f"SELECT * FROM {table.quoted()} WHERE {condition}"
        if order_by is not None:
            sql += f" ORDER BY {Identifier(order_by).quoted()}"
        return await self._run("select", table, sql, placeholders, "all" if all else "one")

    async def insert(self, table: Union[str, Identifier], data: Mapping[Any, Any]) -> Optional[int]:
        """
        Insert one row

        An empty mapping is a successful no-op.

        Returns:
            rowid of the new row, or None if nothing was inserted
        """
        table = Identifier(table)
        if not data:
            return None
        columns = [Identifier(key) for key in data]
        column_list = ", ".join(column.quoted() for column in columns)
        value_list = ", ".join("?" for _ in columns)
        sql = f"INSERT INTO {table.quoted()} ({column_list}) VALUES ({value_list})"
        return await self._run("insert", table, sql, list(data.values()), "lastrowid")

    async def remove(
        self,
        table: Union[str, Identifier],
        condition: str = "true",
        placeholders: Sequence[Any] = (),
    ) -> int:
        """
        Delete the rows matching a condition

        The default condition deletes every row of the table.

        Returns:
            Number of deleted rows
        """
        table = Identifier(table)
        sql = f"DELETE FROM {table.quoted()} WHERE {condition}"
        return await self._run("delete", table, sql, placeholders, "rowcount")

    async def update(
        self,
        table: Union[str, Identifier],
        data: Mapping[Any, Any],
        condition: str = "true",
        placeholders: Sequence[Any] = (),
    ) -> int:
        """
        Set columns on the rows matching a condition

        Values of ``data`` are bound before ``placeholders``. An empty mapping
        is a successful no-op.

        Returns:
            Number of updated rows
        """
        table = Identifier(table)
        if not data:
            return 0
        assignments = ", ".join(f"{Identifier(key).quoted()} = ?" for key in data)
        sql = f"UPDATE {table.quoted()} SET {assignments} WHERE {condition}"
        parameters = list(data.values()) + list(placeholders)
        return await self._run("update", table, sql, parameters, "rowcount")

    def _require_connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise StorageError("Database is not open")
        return self._connection

    async def _run(self, operation: str, table: str, sql: str, parameters: Sequence[Any], result: str):
        log_database_event(operation, table, sql)
        async with self._lock:
            connection = self._require_connection()
            try:
                return await asyncio.to_thread(self._execute, connection, sql, list(parameters), result)
            except sqlite3.IntegrityError as e:
                if "UNIQUE constraint failed" in str(e):
                    raise DuplicateError(str(e)) from e
                raise StorageError(str(e)) from e
            except sqlite3.Error as e:
                logger.error(f"Statement failed on {table}: {e}")
                raise StorageError(str(e)) from e

    @staticmethod
    def _execute(connection: sqlite3.Connection, sql: str, parameters: List[Any], result: str):
        cursor = connection.execute(sql, parameters)
        try:
            if result == "all":
                return [dict(row) for row in cursor.fetchall()]
            if result == "one":
                row = cursor.fetchone()
                return dict(row) if row is not None else None
            if result == "lastrowid":
                return cursor.lastrowid
            return cursor.rowcount
        finally:
            cursor.close()
