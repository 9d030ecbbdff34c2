"""Identifier validation for table names, select lists and columns."""

import logging
import re

from qrud.exceptions import InvalidIdentifier

logger = logging.getLogger(__name__)

_IDENT = r"[A-Za-z_][A-Za-z0-9_]*"

TABLE_PATTERN = re.compile(
    rf"^\s*(?P<name>{_IDENT}(?:\.{_IDENT})?)(?:\s+(?:AS\s+)?(?P<alias>{_IDENT}))?\s*$",
    re.IGNORECASE,
)
COLUMN_PATTERN = re.compile(rf"^{_IDENT}(?:\.{_IDENT})*$")
_FIELD = rf"(?:{_IDENT}(?:\.{_IDENT})*(?:\.\*)?(?:\s+(?:AS\s+)?{_IDENT})?)"
FIELDS_PATTERN = re.compile(
    rf"^\s*(?:\*|{_FIELD}(?:\s*,\s*{_FIELD})*)\s*$", re.IGNORECASE
)
_COLUMN = rf"{_IDENT}(?:\.{_IDENT})*"
EXPRESSION_PATTERN = re.compile(
    rf"^(?:{_COLUMN}|{_IDENT}\(\s*(?:\*|(?:DISTINCT\s+)?{_COLUMN})\s*\))$",
    re.IGNORECASE,
)
CRUD_COLUMN_PATTERN = re.compile(r"^\w+(\s+as\s+\w+|\s+\w+)?$", re.IGNORECASE)


def validate_table(table: str | tuple[str, str]) -> str:
    """Validate a table reference and return it as ``name`` or ``name alias``.

    Accepts ``"users"``, ``"users u"``, ``"users AS u"``, ``"app.users"`` or a
    ``(name, alias)`` pair.
    """
    if isinstance(table, tuple):
        if len(table) != 2:
            raise InvalidIdentifier(f"Invalid table name: {table!r}")
        table = f"{table[0]} {table[1]}"

    match = TABLE_PATTERN.match(str(table).replace("`", ""))
    if not match:
        raise InvalidIdentifier(f"Invalid table name: `{table}`")

    name, alias = match.group("name"), match.group("alias")
    return f"{name} {alias}" if alias else name


def validate_fields(fields: str) -> str:
    """Validate a select list; an empty list means ``*``."""
    if not fields or not fields.strip():
        return "*"
    if not FIELDS_PATTERN.match(fields):
        raise InvalidIdentifier(f"Invalid fields in SELECT: {fields}")
    return fields.strip()


def validate_column(column: object) -> str:
    """Validate a (possibly qualified) column name."""
    name = str(column).strip()
    if not COLUMN_PATTERN.match(name):
        raise InvalidIdentifier(f"Invalid column name: `{name}`")
    return name


def validate_expression(expression: object) -> str:
    """Validate a column or a single aggregate call such as ``COUNT(*)``."""
    text = str(expression).strip()
    if not EXPRESSION_PATTERN.match(text):
        raise InvalidIdentifier(f"Invalid expression: `{text}`")
    return text


def filter_columns(select: str | None) -> str:
    """Keep the valid tokens of a comma separated column list.

    Invalid tokens are dropped; ``*`` is returned when nothing survives.
    """
    if not select:
        return "*"

    valid = []
    for token in (part.strip() for part in select.split(",")):
        if token == "*" or CRUD_COLUMN_PATTERN.match(token):
            valid.append(token)
        elif token:
            logger.warning("Dropping invalid column %r from select list", token)

    return ", ".join(valid) if valid else "*"
