"""
Tests for basic QueryBuilder operations like SELECT, table names, and method chaining.
"""

import pytest

from qrud.entities import Field, SchemaBase
from qrud.exceptions import InvalidIdentifier
from qrud.query_builder import QueryBuilder


class UserSchema(SchemaBase):
    name = Field[str]("name")
    age = Field[int]("age")


class TestBasicOperations:
    """Test cases for basic QueryBuilder functionality"""

    def test_basic_select_all(self):
        """Test basic SELECT * FROM table"""
        query, params = QueryBuilder("users").build()

        assert query == "SELECT * FROM users"
        assert params == []

    def test_select_specific_fields(self):
        """Test SELECT with specific fields"""
        query, _ = QueryBuilder("users").select("name, email").build()
        assert query == "SELECT name, email FROM users"

    def test_select_multiple_arguments_and_aliases(self):
        """Test select() joining several arguments, with aliases"""
        query = QueryBuilder("users u").select("u.id", "u.name AS user_name").to_sql()
        assert query == "SELECT u.id, u.name AS user_name FROM users u"

    def test_initial_fields_from_constructor(self):
        assert QueryBuilder("users", "id, name").to_sql() == "SELECT id, name FROM users"

    def test_empty_fields_default_to_star(self):
        assert QueryBuilder("users", "").to_sql() == "SELECT * FROM users"

    def test_table_alias_forms(self):
        """Test the accepted table reference forms"""
        assert QueryBuilder("users u").table_name == "users u"
        assert QueryBuilder("users AS u").table_name == "users u"
        assert QueryBuilder(("users", "u")).table_name == "users u"
        assert QueryBuilder("`users`").table_name == "users"
        assert QueryBuilder("app.users").table_name == "app.users"

    @pytest.mark.parametrize(
        "table", ["users; DROP TABLE users", "1users", "users u extra", ""]
    )
    def test_invalid_table_name(self, table):
        with pytest.raises(InvalidIdentifier, match="Invalid table name"):
            QueryBuilder(table)

    def test_invalid_fields(self):
        with pytest.raises(InvalidIdentifier, match="Invalid fields in SELECT"):
            QueryBuilder("users").select("name; DELETE FROM users")

    def test_invalid_field_is_also_a_value_error(self):
        with pytest.raises(ValueError):
            QueryBuilder("users").where("name = 1 OR 1", 1)

    def test_fluent_interface_returns_same_instance(self):
        """Each builder method mutates and returns the same QueryBuilder"""
        builder = QueryBuilder("users")
        assert builder.select("name") is builder
        assert builder.where("id", 1) is builder
        assert builder.order_by("name") is builder
        assert builder.to_sql() == "SELECT name FROM users WHERE id = ? ORDER BY name ASC"

    def test_method_chaining_order(self):
        """Test that method chaining works in any order"""
        query1, params1 = (
            QueryBuilder("users").select("name").where("id", 7).order_by_asc("age").build()
        )
        query2, params2 = (
            QueryBuilder("users").where("id", 7).select("name").order_by_asc("age").build()
        )

        expected_query = "SELECT name FROM users WHERE id = ? ORDER BY age ASC"
        assert query1 == expected_query
        assert query2 == expected_query
        assert params1 == params2 == [7]

    def test_overriding_previous_values(self):
        """Later select, order_by and limit calls replace earlier ones"""
        query = (
            QueryBuilder("users")
            .select("name")
            .select("email")
            .order_by_asc("age")
            .order_by_desc("name")
            .limit(5)
            .limit(10, 20)
            .to_sql()
        )
        assert query == "SELECT email FROM users ORDER BY name DESC LIMIT 20, 10"

    def test_string_representation(self):
        builder = QueryBuilder("users").where("id", 123).order_by_asc("name")

        str_repr = str(builder)
        assert "Query: SELECT * FROM users WHERE id = ? ORDER BY name ASC" in str_repr
        assert "Params: [123]" in str_repr

    def test_to_sql_mount_sql_and_bindings(self):
        builder = QueryBuilder("users").where("age", ">", 18).where("role", "admin")

        assert builder.to_sql() == builder.mount_sql()
        assert builder.to_sql() == "SELECT * FROM users WHERE age > ? AND role = ?"
        assert builder.get_bindings() == [18, "admin"]

    def test_building_twice_does_not_rebind(self):
        builder = QueryBuilder("users").where_sub(
            "id", "IN", lambda q: q.select("user_id").where("total", ">", 10), "orders"
        )
        first = builder.build()
        second = builder.build()
        assert first == second
        assert second[1] == [10]

    def test_type_safe_fields(self):
        """Field objects work wherever a column name does"""
        query, params = (
            QueryBuilder("users")
            .where(UserSchema.age, ">=", 18)
            .where_in(UserSchema.name, ["Ada", "Grace"])
            .order_by(UserSchema.name)
            .build()
        )
        assert query == (
            "SELECT * FROM users WHERE age >= ? AND name IN (?, ?) ORDER BY name ASC"
        )
        assert params == [18, "Ada", "Grace"]
