"""CRUD façade"""

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from qrud.identifiers import filter_columns, validate_column
from qrud.query_builder import QueryBuilder

if TYPE_CHECKING:
    from qrud.db_context import Database


class CrudConfig(BaseModel):
    """Configuration options for Crud"""

    db_schema: str | None = Field(default=None, description="Database schema name")
    primary_key: str = Field(default="id", description="Primary key column")


class Crud:
    """Create/read/update/delete for one table, keyed on a primary column.

    Statements are written directly (primary-key lookups don't go through the
    WHERE inference) and run through the Database, so they take part in its
    deferred transactions.
    """

    def __init__(
        self,
        table_name: str,
        db: "Database",
        primary_key: str | None = None,
        config: CrudConfig | None = None,
    ):
        if db is None:
            raise ValueError("db is required")

        self.config = config or CrudConfig()
        self.table_name = validate_column(table_name)
        self.primary_key = validate_column(primary_key or self.config.primary_key)
        self.db = db
        self._qualified_table_name = (
            f"{validate_column(self.config.db_schema)}.{self.table_name}"
            if self.config.db_schema
            else self.table_name
        )

    def _resolve_id(self, entity_id: Any) -> Any:
        """Accept a bare id or a row mapping holding the primary key"""
        if isinstance(entity_id, Mapping):
            if self.primary_key not in entity_id:
                raise ValueError(f"Missing primary key '{self.primary_key}'")
            return entity_id[self.primary_key]
        return entity_id

    @staticmethod
    def _columns(data: Mapping[str, Any]) -> list[str]:
        if not data:
            raise ValueError("No data given")
        return [validate_column(column) for column in data]

    def create(self, data: Mapping[str, Any]) -> Any:
        """Insert a row and return its generated id, or False if nothing was inserted"""
        columns = self._columns(data)
        placeholders = ", ".join("?" for _ in columns)

        affected = self.db.execute(
            f"INSERT INTO {self._qualified_table_name} "
            f"({', '.join(columns)}) VALUES ({placeholders})",
            list(data.values()),
        )
        return self.db.last_insert_id() if affected > 0 else False

    def read(
        self, entity_id: Any = None, select: str | None = None
    ) -> dict[str, Any] | list[dict[str, Any]]:
        """
        Read rows.

        - crud.read() -> every row of the table
        - crud.read(id) -> the row with that primary key, or {} if missing

        Invalid tokens in ``select`` are dropped; ``*`` is used if none are left.
        """
        columns = filter_columns(select)

        if entity_id is None:
            return self.db.fetch_all(
                f"SELECT {columns} FROM {self._qualified_table_name}", []
            )

        return self.db.fetch_one(
            f"SELECT {columns} FROM {self._qualified_table_name} "
            f"WHERE {self.primary_key} = ? LIMIT 1",
            [self._resolve_id(entity_id)],
        )

    def update(self, entity_id: Any, data: Mapping[str, Any]) -> int:
        """Update the row with that primary key and return the affected row count"""
        set_clause = ", ".join(f"{column} = ?" for column in self._columns(data))
        params = list(data.values())
        params.append(self._resolve_id(entity_id))

        return self.db.execute(
            f"UPDATE {self._qualified_table_name} SET {set_clause} "
            f"WHERE {self.primary_key} = ?",
            params,
        )

    def delete(self, entity_id: Any) -> int:
        """Delete the row with that primary key and return the affected row count"""
        return self.db.execute(
            f"DELETE FROM {self._qualified_table_name} WHERE {self.primary_key} = ?",
            [self._resolve_id(entity_id)],
        )

    def select(
        self,
        where: str | None = None,
        params: list[Any] | None = None,
        fields: str | None = "*",
    ) -> list[dict[str, Any]]:
        """SELECT with a raw WHERE fragment and its bind values"""
        query = f"SELECT {filter_columns(fields)} FROM {self._qualified_table_name}"
        if where:
            query += f" WHERE {where}"
        return self.db.fetch_all(query, list(params or []))

    def query(self, fields: str = "*") -> QueryBuilder:
        """Start a QueryBuilder on this table"""
        return QueryBuilder(self._qualified_table_name, fields, db=self.db)
