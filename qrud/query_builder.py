"""
Fluent QueryBuilder for SELECT statements.

Every builder method mutates the builder and returns it, so calls chain.
Building is side-effect free: ``build()`` walks the clause containers in a
fixed order and collects the bind values of each fragment as it renders it,
so the parameter list always follows the textual order of the placeholders.
"""

import math
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

from qrud.conditions import (
    MISSING,
    SUBQUERY_OPERATORS,
    Between,
    Condition,
    NotIn,
    encode,
    encode_operator_string,
    normalize_operator,
    operator_condition,
    split_negation,
)
from qrud.entities import Page, PageInfo, SortOrder
from qrud.exceptions import ConnectionUnavailable, InvalidConditionShape
from qrud.identifiers import (
    validate_column,
    validate_expression,
    validate_fields,
    validate_table,
)

if TYPE_CHECKING:
    from qrud.db_context import Database


@dataclass(frozen=True)
class _Clause:
    """An already rendered fragment and the values for its placeholders."""

    sql: str
    params: tuple[Any, ...] = ()


@dataclass(frozen=True)
class _Subquery:
    """``column operator (nested query)``, rendered when the parent is built."""

    column: str
    operator: str
    builder: "QueryBuilder"


@dataclass(frozen=True)
class _Group:
    """A parenthesized group of conditions collected on a nested builder."""

    builder: "QueryBuilder"


@dataclass(frozen=True)
class _Having:
    sql: str
    params: tuple[Any, ...]
    is_or: bool = False


Fragment = Union[_Clause, _Subquery, _Group]
NestedQuery = Union["QueryBuilder", Callable[["QueryBuilder"], Any]]
Values = list[Any] | tuple[Any, ...]

JOIN_TYPES = ("INNER", "LEFT", "RIGHT", "FULL", "CROSS")


class QueryBuilder:
    """
    Query builder for SELECT statements.

    Usage:
        builder = QueryBuilder("users", "id, name", db)
        users = builder.where("age", ">", 18).order_by("name").get()

        query, params = QueryBuilder("users").where("role", ["a", "b"]).build()
        # SELECT * FROM users WHERE role IN (?, ?)   ['a', 'b']
    """

    def __init__(
        self,
        table_name: str | tuple[str, str],
        fields: str = "*",
        db: "Database | None" = None,
    ):
        self.table_name = validate_table(table_name)
        self.select_fields = validate_fields(fields)
        self.db = db
        self.joins: list[str] = []
        self.where_conditions: list[Fragment] = []
        self.or_where_conditions: list[Fragment] = []
        self.having_conditions: list[_Having] = []
        self.group_by_parts: list[str] = []
        self.order_by_clause: str | None = None
        self.limit_count: int | None = None
        self.offset_count: int = 0
        self.unions: list[tuple[QueryBuilder, bool]] = []

    def _clone(self) -> "QueryBuilder":
        """Create a copy of the current QueryBuilder instance"""
        new_builder = QueryBuilder(self.table_name, db=self.db)
        new_builder.select_fields = self.select_fields
        new_builder.joins = self.joins.copy()
        new_builder.where_conditions = self.where_conditions.copy()
        new_builder.or_where_conditions = self.or_where_conditions.copy()
        new_builder.having_conditions = self.having_conditions.copy()
        new_builder.group_by_parts = self.group_by_parts.copy()
        new_builder.order_by_clause = self.order_by_clause
        new_builder.limit_count = self.limit_count
        new_builder.offset_count = self.offset_count
        new_builder.unions = self.unions.copy()
        return new_builder

    def _new_builder(
        self, table: str | None = None, fields: str = "*"
    ) -> "QueryBuilder":
        return QueryBuilder(table or self.table_name, fields, db=self.db)

    def _resolve_nested(
        self, query: NestedQuery, table: str | None = None, fields: str = "*"
    ) -> "QueryBuilder":
        """Return a ready builder from either a builder or a configuring callback"""
        if isinstance(query, QueryBuilder):
            nested = query
        elif callable(query):
            nested = self._new_builder(table, fields)
            result = query(nested)
            if isinstance(result, QueryBuilder):
                nested = result
        else:
            raise TypeError("Expected a QueryBuilder or a callable receiving one")

        if nested._references(self):
            raise ValueError("A query can't be nested inside itself")
        return nested

    def _references(self, other: "QueryBuilder") -> bool:
        """Whether ``other`` is this builder or is nested anywhere inside it"""
        if other is self:
            return True
        nested = [
            fragment.builder
            for fragment in self.where_conditions + self.or_where_conditions
            if isinstance(fragment, (_Subquery, _Group))
        ]
        nested.extend(branch for branch, _ in self.unions)
        return any(builder._references(other) for builder in nested)

    def _append(self, fragment: Fragment, is_or: bool) -> "QueryBuilder":
        if is_or:
            self.or_where_conditions.append(fragment)
        else:
            self.where_conditions.append(fragment)
        return self

    def _add_condition(
        self, field: Any, evaluator: Any, value: Any, is_or: bool = False
    ) -> "QueryBuilder":
        """Add a condition to either WHERE or OR WHERE clauses"""
        sql, params = encode(field, evaluator, value)
        return self._append(_Clause(sql, tuple(params)), is_or)

    def _add_operator_condition(
        self, column_with_operator: str, value: Any, is_or: bool = False
    ) -> "QueryBuilder":
        sql, params = encode_operator_string(column_with_operator, value)
        return self._append(_Clause(sql, tuple(params)), is_or)

    def _add_group_condition(
        self, group_function: Callable[["QueryBuilder"], Any], is_or: bool = False
    ) -> "QueryBuilder":
        """Add a grouped condition to either WHERE or OR WHERE clauses"""
        group_builder = self._resolve_nested(group_function)
        if not group_builder.where_conditions and not group_builder.or_where_conditions:
            return self
        return self._append(_Group(group_builder), is_or)

    def _add_subquery(
        self,
        column: Any,
        operator: str,
        query: NestedQuery,
        table: str | None,
        is_or: bool,
    ) -> "QueryBuilder":
        column = validate_column(column)
        operator = normalize_operator(operator, SUBQUERY_OPERATORS)
        nested = self._resolve_nested(query, validate_table(table) if table else None)
        return self._append(_Subquery(column, operator, nested), is_or)

    # SELECT / JOIN

    def select(self, *fields: str) -> "QueryBuilder":
        """Set the SELECT fields. Accepts one string or multiple field strings."""
        self.select_fields = validate_fields(", ".join(str(f) for f in fields))
        return self

    def join(
        self, table: str | tuple[str, str], on: str, join_type: str = "INNER"
    ) -> "QueryBuilder":
        """Add ``<TYPE> JOIN table ON condition``. Table may be ``(name, alias)``."""
        join_type = join_type.strip().upper()
        if join_type not in JOIN_TYPES:
            raise ValueError(f"Unsupported join type: {join_type}")

        if isinstance(table, tuple):
            name = validate_table(table[0])
            alias = validate_column(table[1])
            table_ref = f"{name} AS {alias}"
        else:
            table_ref = validate_table(table)

        self.joins.append(f"{join_type} JOIN {table_ref} ON {on}")
        return self

    def join_left(self, table: str | tuple[str, str], on: str) -> "QueryBuilder":
        return self.join(table, on, "LEFT")

    def join_right(self, table: str | tuple[str, str], on: str) -> "QueryBuilder":
        return self.join(table, on, "RIGHT")

    def join_inner(self, table: str | tuple[str, str], on: str) -> "QueryBuilder":
        return self.join(table, on, "INNER")

    # WHERE

    def where(
        self, field_or_function: Any, evaluator: Any = MISSING, value: Any = MISSING
    ) -> "QueryBuilder":
        """Add a WHERE condition or grouped WHERE clause.

        The shape of the condition follows from the arguments:
        - where("status", "active")          -> status = ?
        - where("status", None)              -> status IS NULL
        - where("role", ["a", "b"])          -> role IN (?, ?)
        - where("day", [start, "><", end])   -> day BETWEEN ? AND ?
        - where("age", ">", 18)              -> age > ?
        - where("!role", ["a", "b"])         -> role NOT IN (?, ?)
        - where("age", Between(18, 30))      -> age BETWEEN ? AND ?

        Grouped conditions via function: where(lambda qb: qb.where(...).or_where(...))
        """
        if callable(field_or_function):
            return self._add_group_condition(field_or_function, is_or=False)
        if evaluator is MISSING:
            raise InvalidConditionShape(
                "where() expects (field, evaluator) or (field, operator, value)"
            )
        return self._add_condition(field_or_function, evaluator, value, is_or=False)

    def or_where(
        self, field_or_function: Any, evaluator: Any = MISSING, value: Any = MISSING
    ) -> "QueryBuilder":
        """Add an OR WHERE condition or grouped OR WHERE clause.

        Accepts the same argument shapes as ``where``.
        """
        if callable(field_or_function):
            return self._add_group_condition(field_or_function, is_or=True)
        if evaluator is MISSING:
            raise InvalidConditionShape(
                "or_where() expects (field, evaluator) or (field, operator, value)"
            )
        return self._add_condition(field_or_function, evaluator, value, is_or=True)

    def where_not(
        self, field: Any, evaluator: Any = None, value: Any = MISSING
    ) -> "QueryBuilder":
        """Negated ``where``. Without an evaluator this is ``IS NOT NULL``."""
        column, _ = split_negation(str(field))
        return self._add_condition(f"!{column}", evaluator, value, is_or=False)

    def or_where_not(
        self, field: Any, evaluator: Any = None, value: Any = MISSING
    ) -> "QueryBuilder":
        column, _ = split_negation(str(field))
        return self._add_condition(f"!{column}", evaluator, value, is_or=True)

    def where_between(self, field: Any, start: Any, end: Any) -> "QueryBuilder":
        return self._add_condition(field, Between(start, end), MISSING, is_or=False)

    def where_not_between(self, field: Any, start: Any, end: Any) -> "QueryBuilder":
        return self._add_condition(f"!{field}", Between(start, end), MISSING, is_or=False)

    def or_where_between(self, field: Any, start: Any, end: Any) -> "QueryBuilder":
        return self._add_condition(field, Between(start, end), MISSING, is_or=True)

    def or_where_not_between(self, field: Any, start: Any, end: Any) -> "QueryBuilder":
        return self._add_condition(f"!{field}", Between(start, end), MISSING, is_or=True)

    def where_sub(
        self,
        column: Any,
        operator: str,
        query: NestedQuery,
        table: str | None = None,
    ) -> "QueryBuilder":
        """Add ``column operator (subquery)``.

        ``query`` is a built QueryBuilder or a callable that configures a fresh
        builder for ``table`` (defaults to this builder's table).
        """
        return self._add_subquery(column, operator, query, table, is_or=False)

    def or_where_sub(
        self,
        column: Any,
        operator: str,
        query: NestedQuery,
        table: str | None = None,
    ) -> "QueryBuilder":
        return self._add_subquery(column, operator, query, table, is_or=True)

    def where_op(self, column_with_operator: Any, value: Any) -> "QueryBuilder":
        """Add a condition written as ``"column OPERATOR"``: ``where_op("age >=", 18)``"""
        return self._add_operator_condition(column_with_operator, value, is_or=False)

    def or_where_op(self, column_with_operator: Any, value: Any) -> "QueryBuilder":
        return self._add_operator_condition(column_with_operator, value, is_or=True)

    def where_like(self, column: Any, value: str) -> "QueryBuilder":
        return self.where_op(f"{column} LIKE", value)

    def or_where_like(self, column: Any, value: str) -> "QueryBuilder":
        return self.or_where_op(f"{column} LIKE", value)

    def where_in(self, column: Any, values: Values) -> "QueryBuilder":
        """Add a WHERE IN condition"""
        return self.where_op(f"{column} IN", values)

    def or_where_in(self, column: Any, values: Values) -> "QueryBuilder":
        """Add an OR WHERE IN condition"""
        return self.or_where_op(f"{column} IN", values)

    def where_not_in(self, column: Any, values: Values) -> "QueryBuilder":
        """Add a WHERE NOT IN condition"""
        return self._add_condition(column, NotIn(values), MISSING, is_or=False)

    def or_where_not_in(self, column: Any, values: Values) -> "QueryBuilder":
        """Add an OR WHERE NOT IN condition"""
        return self._add_condition(column, NotIn(values), MISSING, is_or=True)

    def where_null(self, column: Any) -> "QueryBuilder":
        return self.where_op(f"{column} IS", None)

    def or_where_null(self, column: Any) -> "QueryBuilder":
        return self.or_where_op(f"{column} IS", None)

    def where_not_null(self, column: Any) -> "QueryBuilder":
        return self.where_op(f"{column} IS NOT", None)

    def or_where_not_null(self, column: Any) -> "QueryBuilder":
        return self.or_where_op(f"{column} IS NOT", None)

    # GROUP BY / HAVING / ORDER BY / LIMIT / UNION

    def group_by(self, *fields: Any) -> "QueryBuilder":
        """Set the GROUP BY fields, replacing any previous ones."""
        self.group_by_parts = [validate_column(field) for field in fields if field]
        return self

    def _add_having(
        self, field: Any, args: tuple[Any, ...], is_or: bool
    ) -> "QueryBuilder":
        if len(args) == 2:
            operator, value = args
        elif len(args) == 1:
            operator, value = "=", args[0]
        else:
            raise InvalidConditionShape(
                "having() expects (field, value) or (field, operator, value)"
            )

        expression = validate_expression(field)
        sql, params = operator_condition(operator, value).render(expression)
        self.having_conditions.append(_Having(sql, tuple(params), is_or))
        return self

    def having(self, field: Any, *args: Any) -> "QueryBuilder":
        """Add a HAVING condition.

        Supports both of the following call styles:
        - having(field, value) -> operator defaults to '='
        - having(field, operator, value) -> explicit operator in the second place
        """
        return self._add_having(field, args, is_or=False)

    def or_having(self, field: Any, *args: Any) -> "QueryBuilder":
        """Add a HAVING condition joined with OR. Same call styles as ``having``."""
        return self._add_having(field, args, is_or=True)

    def order_by(self, field: Any, direction: str | SortOrder = "ASC") -> "QueryBuilder":
        """Set ORDER BY. Only the first word of ``direction`` is kept."""
        if isinstance(direction, SortOrder):
            direction = direction.value
        tokens = str(direction).split()
        sort = tokens[0].upper() if tokens else "ASC"
        self.order_by_clause = f"ORDER BY {validate_expression(field)} {sort}"
        return self

    def order_by_asc(self, field: Any) -> "QueryBuilder":
        return self.order_by(field, SortOrder.ASC)

    def order_by_desc(self, field: Any) -> "QueryBuilder":
        return self.order_by(field, SortOrder.DESC)

    def limit(self, count: int, offset: int = 0) -> "QueryBuilder":
        """Set the LIMIT clause, rendered as ``LIMIT offset, count``"""
        if count < 0 or offset < 0:
            raise ValueError("Limit and offset must be 0 or greater")
        self.limit_count = int(count)
        self.offset_count = int(offset)
        return self

    def union(self, query: NestedQuery, union_all: bool = False) -> "QueryBuilder":
        """Append a UNION branch.

        A callable receives a builder on the same table with the same fields.
        """
        branch = self._resolve_nested(query, self.table_name, self.select_fields)
        self.unions.append((branch, union_all))
        return self

    def union_all(self, query: NestedQuery) -> "QueryBuilder":
        return self.union(query, union_all=True)

    # Assembly

    @staticmethod
    def _render_fragment(fragment: Fragment) -> tuple[str, list[Any]]:
        if isinstance(fragment, _Subquery):
            sql, params = fragment.builder.build()
            return f"{fragment.column} {fragment.operator} ({sql})", params
        if isinstance(fragment, _Group):
            sql, params = fragment.builder._build_where()
            return f"({sql})", params
        return fragment.sql, list(fragment.params)

    def _render_all(self, fragments: list[Fragment]) -> tuple[list[str], list[Any]]:
        parts: list[str] = []
        params: list[Any] = []
        for fragment in fragments:
            sql, fragment_params = self._render_fragment(fragment)
            parts.append(sql)
            params.extend(fragment_params)
        return parts, params

    def _build_where(self) -> tuple[str, list[Any]]:
        """Build the WHERE condition text (without the keyword) and its params"""
        and_parts, params = self._render_all(self.where_conditions)
        or_parts, or_params = self._render_all(self.or_where_conditions)
        params.extend(or_params)

        if and_parts and or_parts:
            return f"{' AND '.join(and_parts)} AND ({' OR '.join(or_parts)})", params
        if or_parts:
            return " OR ".join(or_parts), params
        return " AND ".join(and_parts), params

    def _build_having(self) -> tuple[str, list[Any]]:
        parts: list[str] = []
        params: list[Any] = []
        for index, having in enumerate(self.having_conditions):
            if index == 0:
                parts.append(having.sql)
            else:
                parts.append(f"{'OR' if having.is_or else 'AND'} {having.sql}")
            params.extend(having.params)
        return " ".join(parts), params

    def build(self) -> tuple[str, list[Any]]:
        """Build the final SQL query and parameters"""
        query_parts = [f"SELECT {self.select_fields} FROM {self.table_name}"]
        params: list[Any] = []

        query_parts.extend(self.joins)

        where_sql, where_params = self._build_where()
        if where_sql:
            query_parts.append(f"WHERE {where_sql}")
            params.extend(where_params)

        if self.group_by_parts:
            query_parts.append(f"GROUP BY {', '.join(self.group_by_parts)}")

        if self.having_conditions:
            having_sql, having_params = self._build_having()
            query_parts.append(f"HAVING {having_sql}")
            params.extend(having_params)

        if self.order_by_clause:
            query_parts.append(self.order_by_clause)

        if self.limit_count is not None:
            query_parts.append(f"LIMIT {self.offset_count}, {self.limit_count}")

        for branch, union_all in self.unions:
            branch_sql, branch_params = branch.build()
            query_parts.append(f"UNION {'ALL ' if union_all else ''}({branch_sql})")
            params.extend(branch_params)

        return " ".join(query_parts), params

    def to_sql(self) -> str:
        """Return only the SQL query string without parameters"""
        query, _ = self.build()
        return query

    def mount_sql(self) -> str:
        return self.to_sql()

    def get_bindings(self) -> list[Any]:
        """Return the bind values in placeholder order"""
        _, params = self.build()
        return params

    def __str__(self) -> str:
        """String representation showing the built query"""
        query, params = self.build()
        return f"Query: {query}\nParams: {params}"

    # Execution

    def _require_db(self) -> "Database":
        if self.db is None:
            raise ConnectionUnavailable("No database connection available for query")
        return self.db

    def _unordered(self) -> "QueryBuilder":
        """Snapshot without ORDER BY and LIMIT, for aggregates"""
        snapshot = self._clone()
        snapshot.order_by_clause = None
        snapshot.limit_count = None
        snapshot.offset_count = 0
        return snapshot

    def _is_compound(self) -> bool:
        """Grouped or unioned queries return derived rows, not table rows"""
        return bool(self.group_by_parts or self.unions)

    def _aggregate(self, expression: str) -> dict[str, Any]:
        snapshot = self._unordered()
        snapshot.select_fields = expression
        return snapshot.first()

    def _aggregate_derived(
        self, expression: str, source: "QueryBuilder"
    ) -> dict[str, Any]:
        """Evaluate ``expression`` over the rows of ``source`` as a derived table"""
        inner_sql, params = source.build()
        query = (
            f"SELECT {expression} FROM ({inner_sql}) AS aggregate_source LIMIT 0, 1"
        )
        rows = self._require_db().fetch_all(query, params)
        return rows[0] if rows else {}

    def _column_totals(self, field: Any) -> tuple[float, int]:
        """SUM and non-NULL COUNT of ``field`` over every row the query matches.

        For a grouped query each surviving group is totalled first (so HAVING
        still filters), then the group totals are added up.
        """
        column = validate_column(field)
        totals = f"SUM({column}) AS total_sum, COUNT({column}) AS total_count"

        if self.unions:
            result = self._aggregate_derived(totals, self._unordered())
        elif self.group_by_parts:
            per_group = self._unordered()
            per_group.select_fields = (
                f"SUM({column}) AS group_sum, COUNT({column}) AS group_count"
            )
            result = self._aggregate_derived(
                "SUM(group_sum) AS total_sum, SUM(group_count) AS total_count",
                per_group,
            )
        else:
            result = self._aggregate(totals)

        total = float(result.get("total_sum") or 0)
        return total, int(result.get("total_count") or 0)

    def get(self) -> list[dict[str, Any]]:
        """Execute the query and return all rows"""
        query, params = self.build()
        return self._require_db().fetch_all(query, params)

    def first(self) -> dict[str, Any]:
        """Execute the query and return the first row, or an empty dict"""
        rows = self._clone().limit(1).get()
        return rows[0] if rows else {}

    def count(self, field: Any = "*") -> int:
        """Count the rows matching the query"""
        column = "*" if str(field) == "*" else validate_column(field)

        expression = f"COUNT({column}) AS count"

        if self._is_compound():
            result = self._aggregate_derived(expression, self._unordered())
        else:
            result = self._aggregate(expression)

        return int(result.get("count") or 0)

    def sum(self, field: Any) -> float:
        total, _ = self._column_totals(field)
        return total

    def avg(self, field: Any) -> float:
        total, count = self._column_totals(field)
        return total / count if count else 0.0

    def exists(self) -> bool:
        """Check if any row matches the query"""
        if self._is_compound():
            return bool(self._aggregate_derived("1 AS exists_flag", self._unordered()))

        snapshot = self._clone()
        snapshot.select_fields = "1 AS exists_flag"
        return bool(snapshot.first())

    def paginate(self, per_page: int = 10, page: int = 1) -> Page:
        """
        Fetch one page of rows together with pagination metadata

        Args:
            per_page: Number of records per page (default: 10)
            page: Page number (1-based)

        Returns:
            Page with the rows and current_page/per_page/total/last_page
        """
        if page < 1:
            raise ValueError("Page number must be 1 or greater")
        if per_page < 1:
            raise ValueError("Per page count must be 1 or greater")

        offset = (page - 1) * per_page
        data = self._clone().limit(per_page, offset).get()
        total = self.count()

        return Page(
            data=data,
            pagination=PageInfo(
                current_page=page,
                per_page=per_page,
                total=total,
                last_page=math.ceil(total / per_page),
            ),
        )
