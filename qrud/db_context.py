import logging
import os
import threading
import traceback
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager, nullcontext
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import UTC, datetime
from functools import wraps
from typing import TYPE_CHECKING, Any

from qrud.exceptions import ConnectionUnavailable, QrudError, QueryExecutionFailed
from qrud.executor import DbApiExecutor, StatementExecutor
from qrud.query_builder import QueryBuilder

if TYPE_CHECKING:
    from qrud.crud import Crud, CrudConfig

logger = logging.getLogger(__name__)


_PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))


@dataclass(frozen=True)
class QueryLog:
    """One statement sent to the executor while tracking was on"""

    query: str
    params: list[Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    stack_trace: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "params": list(self.params),
            "timestamp": self.timestamp.isoformat(),
            "stack_trace": self.stack_trace,
        }


@dataclass(frozen=True)
class PendingStatement:
    """A mutating statement recorded while a deferred transaction is open"""

    query: str
    params: tuple[Any, ...]


class QueryTracker:
    """Collects the statements a Database runs while tracking is switched on.

    Statements recorded while the tracker is off are ignored, so one tracker
    can be installed for a whole context and switched on for parts of it.
    """

    def __init__(self, enabled: bool = False):
        self.enabled = enabled
        self._logs: list[QueryLog] = []

    def enable(self):
        self.enabled = True

    def disable(self):
        self.enabled = False

    def is_enabled(self) -> bool:
        return self.enabled

    def record(self, query: str, params: list[Any], stack_trace: str | None = None):
        if self.enabled:
            self._logs.append(QueryLog(query, list(params), stack_trace=stack_trace))

    def get_queries(self) -> list[QueryLog]:
        return list(self._logs)

    def count(self) -> int:
        return len(self._logs)

    def clear(self):
        self._logs.clear()

    def to_dict(self) -> list[dict[str, Any]]:
        return [log.to_dict() for log in self._logs]


_query_tracker: ContextVar[QueryTracker | None] = ContextVar(
    "qrud_query_tracker", default=None
)


def _caller_stack() -> str:
    """Format the current call stack without the frames inside this package"""
    frames = [
        frame
        for frame in traceback.extract_stack()
        if not os.path.abspath(frame.filename).startswith(_PACKAGE_DIR)
    ]
    return "".join(traceback.format_list(frames))


@contextmanager
def _tracking() -> Iterator[QueryTracker]:
    """Switch on the context's tracker for the block, installing one if needed.

    A tracker installed here is removed again on exit; an existing one is only
    switched back off if it was off before.
    """
    tracker = _query_tracker.get()
    token = None
    if tracker is None:
        tracker = QueryTracker()
        token = _query_tracker.set(tracker)

    was_enabled = tracker.is_enabled()
    tracker.enable()
    try:
        yield tracker
    finally:
        if not was_enabled:
            tracker.disable()
        if token is not None:
            _query_tracker.reset(token)


def _as_executor(handle: Any) -> StatementExecutor:
    if isinstance(handle, StatementExecutor):
        return handle
    if hasattr(handle, "cursor"):
        return DbApiExecutor(handle)
    raise TypeError(
        "Expected a StatementExecutor or a DB-API connection, "
        f"got {type(handle).__name__}"
    )


def _is_handle(candidate: Any) -> bool:
    return isinstance(candidate, StatementExecutor) or hasattr(candidate, "cursor")


class Database:
    """Entry point owning the statement executor and deferred transactions.

    Usage:
        db = Database()
        db.register_connection(lambda: sqlite3.connect("app.db"))

        users = db.table("users")
        user_id = users.create({"name": "Ada"})
        adults = db.query("users").where("age", ">=", 18).get()

    The executor is resolved lazily: a registered factory is called once, on
    the first statement, and its result is kept.
    """

    def __init__(self, connection: Any = None):
        self._executor: StatementExecutor | None = None
        self._factory: Callable[[], Any] | None = None
        self._lock = threading.Lock()
        self._pending: list[PendingStatement] = []
        self._deferred = False
        if connection is not None:
            self.register_connection(connection)

    def register_connection(self, handle_or_factory: Any) -> None:
        """Register an executor, a DB-API connection, or a factory returning one"""
        with self._lock:
            if _is_handle(handle_or_factory):
                self._executor = _as_executor(handle_or_factory)
                self._factory = None
            elif callable(handle_or_factory):
                self._executor = None
                self._factory = handle_or_factory
            else:
                raise TypeError(
                    "register_connection() expects a connection, "
                    "an executor or a factory"
                )

    def get_executor(self) -> StatementExecutor:
        """Return the executor, calling the registered factory on first use"""
        if self._executor is not None:
            return self._executor

        with self._lock:
            if self._executor is None:
                if self._factory is None:
                    raise ConnectionUnavailable()
                try:
                    handle = self._factory()
                except Exception as e:
                    raise ConnectionUnavailable(f"Connection error: {e}") from e
                self._executor = _as_executor(handle)
                self._factory = None
                logger.debug("Resolved database executor %r", self._executor)
        return self._executor

    # Query tracking

    @staticmethod
    def get_query_tracker() -> QueryTracker | None:
        """Get the current query tracker from context"""
        return _query_tracker.get()

    @staticmethod
    def log_query(query: str, params: list[Any]):
        """Log a statement at DEBUG and hand it to an active tracker"""
        logger.debug("Executing query: %s | params=%r", query, params)
        tracker = _query_tracker.get()
        if tracker is not None and tracker.is_enabled():
            tracker.record(query, params, _caller_stack())

    @staticmethod
    def track_queries() -> AbstractContextManager[QueryTracker]:
        """Record every statement run inside the block.

        with db.track_queries() as tracker:
            db.table("users").read(1)
        tracker.get_queries()
        """
        return _tracking()

    # Statement execution

    def _run(self, method: str, query: str, params: list[Any]) -> Any:
        executor = self.get_executor()
        self.log_query(query, params)
        try:
            return getattr(executor, method)(query, list(params))
        except QrudError:
            raise
        except Exception as e:
            raise QueryExecutionFailed(
                f"Query execution failed: {e}", sql=query, params=list(params)
            ) from e

    def fetch_all(self, query: str, params: list[Any]) -> list[dict[str, Any]]:
        """Execute query and fetch all rows"""
        return self._run("fetch_all", query, params)

    def fetch_one(self, query: str, params: list[Any]) -> dict[str, Any]:
        """Execute a query and fetch the first row, or an empty dict"""
        rows = self.fetch_all(query, params)
        return rows[0] if rows else {}

    def execute(self, query: str, params: list[Any]) -> int:
        """Execute a mutating query and return the affected row count.

        Inside a deferred transaction the statement is recorded and 0 returned.
        """
        if self._deferred:
            logger.debug("Deferring query: %s | params=%r", query, params)
            self._pending.append(PendingStatement(query, tuple(params)))
            return 0
        return self._run("execute", query, params)

    def last_insert_id(self) -> Any:
        return self.get_executor().last_insert_id()

    # Deferred transactions

    def in_transaction(self) -> bool:
        return self._deferred

    def pending_statements(self) -> list[PendingStatement]:
        return self._pending.copy()

    def begin_transaction(self) -> None:
        """Start recording mutating statements instead of running them"""
        self._deferred = True
        self._pending = []

    def commit(self) -> bool:
        """Run the recorded statements inside one real transaction.

        On any failure the executor is rolled back and QueryExecutionFailed raised.
        Raises ConnectionUnavailable, still in deferred mode with the queue kept,
        when no executor can be resolved.
        """
        # Keep the queue intact if no connection can be resolved
        executor = self.get_executor()
        self._deferred = False
        pending, self._pending = self._pending, []

        try:
            executor.begin()
            for statement in pending:
                self.log_query(statement.query, list(statement.params))
                executor.execute(statement.query, list(statement.params))
            executor.commit()
        except Exception as e:
            logger.warning("Transaction failed, rolling back: %s", e)
            executor.rollback()
            raise QueryExecutionFailed(f"Transaction failed: {e}") from e

        logger.info("Committed transaction with %d statement(s)", len(pending))
        return True

    def rollback(self) -> None:
        """Discard the recorded statements without touching the executor"""
        logger.info("Discarding %d deferred statement(s)", len(self._pending))
        self._deferred = False
        self._pending = []

    @contextmanager
    def transaction(self, track_queries: bool = False) -> Iterator["Database"]:
        """Context manager for deferred transactions.

        Behavior:
        - Inside an open transaction it simply joins it.
        - Otherwise it begins one, commits on normal exit and discards the
          recorded statements if the block raises.

        Args:
            track_queries: Whether to enable query tracking for this transaction
        """
        if self._deferred:
            yield self
            return

        with _tracking() if track_queries else nullcontext():
            self.begin_transaction()
            try:
                yield self
            except BaseException:
                self.rollback()
                raise
            self.commit()

    # Factories

    def query(self, table: str | tuple[str, str], fields: str = "*") -> QueryBuilder:
        """Start a SELECT on ``table``, given as ``"name alias"`` or a pair"""
        return QueryBuilder(table, fields, db=self)

    def table(
        self,
        name: str,
        primary_key: str | None = None,
        config: "CrudConfig | None" = None,
    ) -> "Crud":
        """CRUD façade for one table keyed on ``primary_key`` (``id`` by default)"""
        from qrud.crud import Crud

        return Crud(name, self, primary_key=primary_key, config=config)


def transactional(db: Database, query_logs: bool = False):
    """Decorator to run a function within a deferred transaction.

    Args:
        db: Database whose transaction wraps the call
        query_logs: Whether to enable query tracking for this transaction

    Example:
        @transactional(db, query_logs=True)
        def register(data):
            user_id = db.table("users").create(data)
            tracker = Database.get_query_tracker()
            return user_id
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            with db.transaction(track_queries=query_logs):
                return func(*args, **kwargs)

        return wrapper

    return decorator
