import pytest

from qrud.exceptions import InvalidIdentifier
from qrud.identifiers import (
    filter_columns,
    validate_column,
    validate_expression,
    validate_fields,
    validate_table,
)


class TestIdentifiers:
    def test_validate_fields(self):
        assert validate_fields("*") == "*"
        assert validate_fields(" id , name AS n, u.email e ") == "id , name AS n, u.email e"
        assert validate_fields("u.*, o.total") == "u.*, o.total"

    @pytest.mark.parametrize("fields", ["id,", "COUNT(*)", "name; --", "id name alias"])
    def test_validate_fields_rejects(self, fields):
        with pytest.raises(InvalidIdentifier):
            validate_fields(fields)

    def test_validate_column(self):
        assert validate_column(" users.id ") == "users.id"
        with pytest.raises(InvalidIdentifier):
            validate_column("id desc")

    def test_validate_expression(self):
        assert validate_expression("COUNT(*)") == "COUNT(*)"
        assert validate_expression("count(DISTINCT o.user_id)") == "count(DISTINCT o.user_id)"
        assert validate_expression("total") == "total"
        with pytest.raises(InvalidIdentifier):
            validate_expression("COUNT(*) > 1")

    def test_validate_table_pair_must_have_two_parts(self):
        with pytest.raises(InvalidIdentifier):
            validate_table(("users", "u", "x"))


class TestFilterColumns:
    def test_keeps_valid_tokens(self):
        assert filter_columns("id, name as n, email e") == "id, name as n, email e"

    def test_drops_invalid_tokens(self):
        assert filter_columns("id, password; DROP TABLE users, name") == "id, name"

    def test_falls_back_to_star(self):
        assert filter_columns("1=1; --") == "*"
        assert filter_columns(None) == "*"
        assert filter_columns("") == "*"
