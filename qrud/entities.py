from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from qrud.identifiers import validate_column

T = TypeVar("T")


class Field(Generic[T]):
    """Column reference typed by the Python values stored in it.

    The column name is validated when the Field is declared, and the Field
    renders as that name wherever the builder expects a column:

        class UserSchema(SchemaBase):
            role = Field[str]("role")
            age = Field[int]("age")

        db.query("users").where(UserSchema.role, "admin").order_by(UserSchema.age)
    """

    def __init__(self, name: str):
        self.name = validate_column(name)

    @property
    def column(self) -> str:
        return self.name

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"Field({self.name})"


class SchemaBase:
    """Groups the Field declarations of one table."""

    @classmethod
    def fields(cls) -> dict[str, Field]:
        """Declared Fields by attribute name, base classes first"""
        declared: dict[str, Field] = {}
        for klass in reversed(cls.__mro__):
            for attribute, value in vars(klass).items():
                if isinstance(value, Field):
                    declared[attribute] = value
        return declared

    @classmethod
    def columns(cls) -> str:
        """The declared column names as a select list"""
        return ", ".join(field.name for field in cls.fields().values())


class SortOrder(str, Enum):
    ASC = "ASC"
    DESC = "DESC"


class PageInfo(BaseModel):
    current_page: int
    per_page: int
    total: int
    last_page: int


class Page(BaseModel):
    """One page of rows plus the numbers needed to navigate the rest."""

    data: list[dict[str, Any]]
    pagination: PageInfo
