"""
Tests for IN / NOT IN and BETWEEN helpers in QueryBuilder.
"""

import pytest

from qrud.exceptions import InvalidConditionShape
from qrud.query_builder import QueryBuilder


class TestInConditions:
    """Test cases for IN and NOT IN functionality"""

    def test_where_in(self):
        query, params = QueryBuilder("users").where_in("role", ["admin", "editor"]).build()

        assert query == "SELECT * FROM users WHERE role IN (?, ?)"
        assert params == ["admin", "editor"]

    def test_where_in_accepts_tuple(self):
        query, params = QueryBuilder("users").where_in("id", (1, 2, 3)).build()

        assert query == "SELECT * FROM users WHERE id IN (?, ?, ?)"
        assert params == [1, 2, 3]

    def test_where_not_in(self):
        query, params = QueryBuilder("users").where_not_in("role", ["viewer"]).build()

        assert query == "SELECT * FROM users WHERE role NOT IN (?)"
        assert params == ["viewer"]

    def test_or_where_in_and_not_in(self):
        query, params = (
            QueryBuilder("users")
            .where("age", ">", 18)
            .or_where_in("role", ["admin"])
            .or_where_not_in("id", [1, 2])
            .build()
        )

        assert query == (
            "SELECT * FROM users WHERE age > ? AND (role IN (?) OR id NOT IN (?, ?))"
        )
        assert params == [18, "admin", 1, 2]

    @pytest.mark.parametrize("values", [[], ()])
    def test_empty_in_is_rejected(self, values):
        with pytest.raises(InvalidConditionShape, match="at least one value"):
            QueryBuilder("users").where_in("id", values)

    def test_empty_list_evaluator_is_rejected(self):
        with pytest.raises(InvalidConditionShape):
            QueryBuilder("users").where("id", [])

    def test_empty_not_in_is_rejected(self):
        with pytest.raises(InvalidConditionShape):
            QueryBuilder("users").where_not_in("id", [])

    def test_in_requires_list(self):
        with pytest.raises(InvalidConditionShape, match="requires a list"):
            QueryBuilder("users").where_in("id", "1,2")

    def test_rejected_condition_leaves_builder_untouched(self):
        builder = QueryBuilder("users").where("age", 1)
        with pytest.raises(InvalidConditionShape):
            builder.where_in("id", [])

        assert builder.to_sql() == "SELECT * FROM users WHERE age = ?"
        assert builder.get_bindings() == [1]


class TestBetweenConditions:
    """Test cases for the BETWEEN helpers"""

    def test_where_between(self):
        query, params = QueryBuilder("orders").where_between("total", 10, 100).build()

        assert query == "SELECT * FROM orders WHERE total BETWEEN ? AND ?"
        assert params == [10, 100]

    def test_where_not_between(self):
        query, params = QueryBuilder("orders").where_not_between("total", 10, 100).build()

        assert query == "SELECT * FROM orders WHERE total NOT BETWEEN ? AND ?"
        assert params == [10, 100]

    def test_or_between_variants(self):
        query, params = (
            QueryBuilder("orders")
            .where("status", "paid")
            .or_where_between("total", 1, 2)
            .or_where_not_between("user_id", 3, 4)
            .build()
        )

        assert query == (
            "SELECT * FROM orders WHERE status = ? AND "
            "(total BETWEEN ? AND ? OR user_id NOT BETWEEN ? AND ?)"
        )
        assert params == ["paid", 1, 2, 3, 4]

    def test_between_bounds_are_not_inferred(self):
        """Bounds are bound as-is; None does not turn into a NULL test"""
        builder = QueryBuilder("orders").where_between("total", None, 5)
        assert builder.to_sql() == "SELECT * FROM orders WHERE total BETWEEN ? AND ?"
        assert builder.get_bindings() == [None, 5]
