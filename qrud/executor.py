from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class StatementExecutor(Protocol):
    """Runs prepared statements against a live connection.

    Placeholders are positional ``?`` markers bound in list order.
    """

    def fetch_all(self, query: str, params: list[Any]) -> list[dict[str, Any]]: ...

    def execute(self, query: str, params: list[Any]) -> int: ...

    def last_insert_id(self) -> Any: ...

    def begin(self) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


class DbApiExecutor:
    """StatementExecutor over a PEP 249 connection using the qmark paramstyle.

    Outside of ``begin()``/``commit()`` every mutating statement is committed
    right away.
    """

    def __init__(self, connection: Any):
        self.connection = connection
        self._last_insert_id: Any = None
        self._in_transaction = False

    def fetch_all(self, query: str, params: list[Any]) -> list[dict[str, Any]]:
        """Execute query and fetch all rows as dictionaries"""
        cursor = self.connection.cursor()
        try:
            cursor.execute(query, list(params))
            columns = [column[0] for column in cursor.description or []]
            return [dict(zip(columns, row)) for row in cursor.fetchall()]
        finally:
            cursor.close()

    def execute(self, query: str, params: list[Any]) -> int:
        """Execute query and return the affected row count"""
        cursor = self.connection.cursor()
        try:
            cursor.execute(query, list(params))
            self._last_insert_id = getattr(cursor, "lastrowid", None)
            affected = cursor.rowcount
        finally:
            cursor.close()

        if not self._in_transaction:
            self.connection.commit()
        return max(affected, 0)

    def last_insert_id(self) -> Any:
        return self._last_insert_id

    def begin(self) -> None:
        """Open a transaction and stop committing after each statement.

        ``BEGIN`` is issued explicitly so autocommit connections (sqlite3 with
        ``isolation_level=None``, drivers with ``autocommit = True``) group the
        following statements too. Connections that report an open transaction
        through ``in_transaction`` keep using it.
        """
        if not getattr(self.connection, "in_transaction", False):
            cursor = self.connection.cursor()
            try:
                cursor.execute("BEGIN")
            finally:
                cursor.close()
        self._in_transaction = True

    def commit(self) -> None:
        self._in_transaction = False
        self.connection.commit()

    def rollback(self) -> None:
        self._in_transaction = False
        self.connection.rollback()
