import sqlite3

import pytest

from qrud.db_context import Database


@pytest.fixture
def connection():
    """In-memory SQLite connection; SQLite accepts ? placeholders and LIMIT offset, count."""
    conn = sqlite3.connect(":memory:")
    conn.executescript(
        """
        CREATE TABLE users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name VARCHAR(255) NOT NULL,
            email VARCHAR(255) UNIQUE,
            age INTEGER,
            role VARCHAR(50)
        );
        CREATE TABLE orders (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            total REAL NOT NULL,
            status VARCHAR(50)
        );
        """
    )
    yield conn
    conn.close()


@pytest.fixture
def db(connection):
    """Database with the SQLite connection registered."""
    return Database(connection)


@pytest.fixture
def seeded_db(db):
    """Database with a few users and orders."""
    users = db.table("users")
    for name, email, age, role in [
        ("Ada", "ada@example.com", 36, "admin"),
        ("Grace", "grace@example.com", 45, "editor"),
        ("Linus", "linus@example.com", 28, "editor"),
        ("Ken", None, 17, "viewer"),
        ("Barbara", "barbara@example.com", 52, None),
    ]:
        users.create({"name": name, "email": email, "age": age, "role": role})

    orders = db.table("orders")
    for user_id, total, status in [
        (1, 120.0, "paid"),
        (1, 80.0, "paid"),
        (2, 50.0, "pending"),
        (3, 200.0, "paid"),
    ]:
        orders.create({"user_id": user_id, "total": total, "status": status})

    return db
