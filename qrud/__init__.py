"""qrud - fluent SQL query builder and CRUD façade"""

from qrud.conditions import (
    Between,
    Equals,
    In,
    IsNotNull,
    IsNull,
    Not,
    NotBetween,
    NotIn,
    RawOp,
    RawOpNot,
)
from qrud.crud import Crud, CrudConfig
from qrud.db_context import Database, QueryTracker, transactional
from qrud.entities import Field, Page, PageInfo, SchemaBase, SortOrder
from qrud.exceptions import (
    ConnectionUnavailable,
    InvalidConditionShape,
    InvalidIdentifier,
    QrudError,
    QueryExecutionFailed,
)
from qrud.executor import DbApiExecutor, StatementExecutor
from qrud.query_builder import QueryBuilder

__all__ = [
    "QueryBuilder",
    "Database",
    "Crud",
    "CrudConfig",
    "QueryTracker",
    "transactional",
    "StatementExecutor",
    "DbApiExecutor",
    "Field",
    "SchemaBase",
    "SortOrder",
    "Page",
    "PageInfo",
    "Equals",
    "Not",
    "In",
    "NotIn",
    "Between",
    "NotBetween",
    "IsNull",
    "IsNotNull",
    "RawOp",
    "RawOpNot",
    "QrudError",
    "InvalidIdentifier",
    "InvalidConditionShape",
    "ConnectionUnavailable",
    "QueryExecutionFailed",
]
