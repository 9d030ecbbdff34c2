"""
Condition shapes for WHERE clauses.

A condition is one of a fixed set of predicate shapes (equality, IN, BETWEEN,
NULL test, raw comparison operator). Each shape renders itself against a
column as a SQL fragment plus the bind values for its ``?`` placeholders.

Loosely-typed inputs are mapped onto a shape by ``to_condition``:

    where("status", None)                      -> IsNull()
    where("role", ["a", "b"])                  -> In(["a", "b"])
    where("created_at", [start, "><", end])    -> Between(start, end)
    where("age", ">", 18)                      -> RawOp(">", 18)
    where("!role", ["a", "b"])                 -> NotIn(["a", "b"])
"""

from dataclasses import dataclass
from typing import Any

from qrud.exceptions import InvalidConditionShape
from qrud.identifiers import validate_column

NEGATION_MARKER = "!"
BETWEEN_MARKER = "><"

# Scanned in this order, so longer operators win over their substrings.
OPERATORS: tuple[str, ...] = (
    "NOT ILIKE",
    "NOT LIKE",
    "BETWEEN",
    "IS NOT",
    "ILIKE",
    "LIKE",
    ">=",
    "<=",
    "<>",
    "!=",
    "IS",
    "IN",
    ">",
    "<",
    "=",
)

SUBQUERY_OPERATORS = frozenset(OPERATORS) | {"NOT IN"}

_NEGATED_OPERATORS = {
    "=": "<>",
    "<>": "=",
    "!=": "=",
    ">": "<=",
    "<": ">=",
    ">=": "<",
    "<=": ">",
    "LIKE": "NOT LIKE",
    "NOT LIKE": "LIKE",
    "ILIKE": "NOT ILIKE",
    "NOT ILIKE": "ILIKE",
    "IS": "IS NOT",
    "IS NOT": "IS",
}

_SET_OPERATORS = {"IN", "NOT IN", "BETWEEN", "NOT BETWEEN"}


class _Missing:
    """Marks an argument that was not supplied (distinct from None)."""

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def normalize_operator(operator: str, allowed: frozenset[str] | None = None) -> str:
    """Upper-case an operator token and check it against the operator table."""
    normalized = " ".join(str(operator).split()).upper()
    valid = allowed if allowed is not None else frozenset(OPERATORS) | _SET_OPERATORS
    if normalized not in valid:
        raise InvalidConditionShape(f"Unsupported operator: {operator!r}")
    return normalized


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


@dataclass(frozen=True)
class ColumnOperator:
    """A column and the operator parsed out of a ``"column OPERATOR"`` string."""

    column: str
    operator: str


def parse_column_operator(text: str) -> ColumnOperator:
    """Split ``"age >"`` into ``ColumnOperator("age", ">")``.

    Operators must be surrounded by single spaces; the text is padded with a
    trailing space so the operator may end the string. No operator means ``=``.
    """
    padded = f"{str(text).strip()} "
    upper = padded.upper()
    for operator in OPERATORS:
        index = upper.find(f" {operator} ")
        if index > 0:
            return ColumnOperator(padded[:index].strip(), operator)
    return ColumnOperator(str(text).strip(), "=")


class Condition:
    """Base class for condition shapes."""

    def render(self, column: str) -> tuple[str, list[Any]]:
        raise NotImplementedError

    def negate(self) -> "Condition":
        raise NotImplementedError


@dataclass(frozen=True)
class Equals(Condition):
    value: Any

    def render(self, column: str) -> tuple[str, list[Any]]:
        return f"{column} = ?", [self.value]

    def negate(self) -> Condition:
        return Not(self.value)


@dataclass(frozen=True)
class Not(Condition):
    value: Any

    def render(self, column: str) -> tuple[str, list[Any]]:
        return f"{column} <> ?", [self.value]

    def negate(self) -> Condition:
        return Equals(self.value)


@dataclass(frozen=True)
class In(Condition):
    values: tuple[Any, ...]

    def __post_init__(self):
        if not _is_sequence(self.values):
            raise InvalidConditionShape("IN requires a list of values")
        if not self.values:
            raise InvalidConditionShape("IN requires at least one value")
        object.__setattr__(self, "values", tuple(self.values))

    def _placeholders(self) -> str:
        return ", ".join("?" for _ in self.values)

    def render(self, column: str) -> tuple[str, list[Any]]:
        return f"{column} IN ({self._placeholders()})", list(self.values)

    def negate(self) -> Condition:
        return NotIn(self.values)


@dataclass(frozen=True)
class NotIn(In):
    def render(self, column: str) -> tuple[str, list[Any]]:
        return f"{column} NOT IN ({self._placeholders()})", list(self.values)

    def negate(self) -> Condition:
        return In(self.values)


@dataclass(frozen=True)
class Between(Condition):
    low: Any
    high: Any

    def render(self, column: str) -> tuple[str, list[Any]]:
        return f"{column} BETWEEN ? AND ?", [self.low, self.high]

    def negate(self) -> Condition:
        return NotBetween(self.low, self.high)


@dataclass(frozen=True)
class NotBetween(Between):
    def render(self, column: str) -> tuple[str, list[Any]]:
        return f"{column} NOT BETWEEN ? AND ?", [self.low, self.high]

    def negate(self) -> Condition:
        return Between(self.low, self.high)


@dataclass(frozen=True)
class IsNull(Condition):
    def render(self, column: str) -> tuple[str, list[Any]]:
        return f"{column} IS NULL", []

    def negate(self) -> Condition:
        return IsNotNull()


@dataclass(frozen=True)
class IsNotNull(Condition):
    def render(self, column: str) -> tuple[str, list[Any]]:
        return f"{column} IS NOT NULL", []

    def negate(self) -> Condition:
        return IsNull()


@dataclass(frozen=True)
class RawOp(Condition):
    """``column <operator> ?`` for a single-value comparison operator."""

    operator: str
    value: Any

    def __post_init__(self):
        operator = normalize_operator(self.operator)
        if operator in _SET_OPERATORS:
            raise InvalidConditionShape(
                f"{operator} takes a list of values; use In or Between instead"
            )
        object.__setattr__(self, "operator", operator)

    def render(self, column: str) -> tuple[str, list[Any]]:
        return f"{column} {self.operator} ?", [self.value]

    def negate(self) -> Condition:
        return RawOpNot(self.operator, self.value)


@dataclass(frozen=True)
class RawOpNot(RawOp):
    """Negated comparison. Word operators get ``NOT``, symbols their complement."""

    def render(self, column: str) -> tuple[str, list[Any]]:
        return f"{column} {_NEGATED_OPERATORS[self.operator]} ?", [self.value]

    def negate(self) -> Condition:
        return RawOp(self.operator, self.value)


def split_negation(field: str) -> tuple[str, bool]:
    """Strip a leading ``!`` from a field name."""
    field = str(field).strip()
    if field.startswith(NEGATION_MARKER):
        return field[len(NEGATION_MARKER) :].strip(), True
    return field, False


def operator_condition(operator: str, value: Any) -> Condition:
    """Build the condition for an explicit operator and value."""
    op = normalize_operator(operator)

    if op in ("IN", "NOT IN"):
        condition: Condition = In(value)
        return condition if op == "IN" else condition.negate()

    if op in ("BETWEEN", "NOT BETWEEN"):
        if not _is_sequence(value) or len(value) != 2:
            raise InvalidConditionShape(f"{op} requires exactly two values")
        condition = Between(value[0], value[1])
        return condition if op == "BETWEEN" else condition.negate()

    if value is None:
        if op in ("=", "IS"):
            return IsNull()
        if op in ("!=", "<>", "IS NOT"):
            return IsNotNull()

    return RawOp(op, value)


def to_condition(evaluator: Any, value: Any = MISSING) -> Condition:
    """Infer the condition shape from a ``where`` evaluator and optional value."""
    if isinstance(evaluator, Condition):
        if value is not MISSING:
            raise InvalidConditionShape(
                "A condition object can't be combined with a separate value"
            )
        return evaluator

    if value is not MISSING:
        return operator_condition(evaluator, value)

    if evaluator is None:
        return IsNull()

    if _is_sequence(evaluator):
        if len(evaluator) == 3 and evaluator[1] == BETWEEN_MARKER:
            return Between(evaluator[0], evaluator[2])
        return In(evaluator)

    return Equals(evaluator)


def encode(field: Any, evaluator: Any, value: Any = MISSING) -> tuple[str, list[Any]]:
    """Render a ``where`` call as ``(fragment, params)``."""
    column, negated = split_negation(str(field))
    column = validate_column(column)
    condition = to_condition(evaluator, value)
    if negated:
        condition = condition.negate()
    return condition.render(column)


def encode_operator_string(
    column_with_operator: Any, value: Any
) -> tuple[str, list[Any]]:
    """Render a ``"column OPERATOR"`` string and its value as ``(fragment, params)``."""
    parsed = parse_column_operator(str(column_with_operator))
    column = validate_column(parsed.column)
    return operator_condition(parsed.operator, value).render(column)
