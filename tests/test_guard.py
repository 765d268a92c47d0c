import pytest

from genbi.errors import SchemaMismatchError, UnsafeQueryError
from genbi.models import EngineKind
from genbi.translation.guard import SQLGuard


@pytest.fixture
def guard():
    return SQLGuard()


@pytest.mark.parametrize(
    "sql",
    [
        "SELECT * FROM users",
        "select name, age from users where age > 30 order by age desc",
        "WITH older AS (SELECT * FROM users WHERE age > 30) SELECT name FROM older",
        "SELECT u.name FROM users u JOIN sales s ON s.id = u.id",
        "SELECT region, SUM(amount) AS total FROM sales GROUP BY region",
        "SELECT name FROM users WHERE name = 'DROP TABLE users'",
        "SELECT COUNT(*) AS count FROM users",
    ],
)
def test_accepts_read_only_statements(guard, sql):
    assert guard.check(sql, EngineKind.SQLITE) == sql


@pytest.mark.parametrize(
    "sql",
    [
        "DROP TABLE users",
        "DELETE FROM users",
        "UPDATE users SET age = 1",
        "INSERT INTO users (name) VALUES ('x')",
        "CREATE TABLE t (id INT)",
        "ALTER TABLE users ADD COLUMN x INT",
        "TRUNCATE TABLE users",
        "GRANT SELECT ON users TO bob",
        "PRAGMA table_info(users)",
        "SELECT * INTO backup FROM users",
        "SELECT * FROM users FOR UPDATE",
        "WITH gone AS (DELETE FROM users RETURNING *) SELECT * FROM gone",
        "SELECT LOAD_FILE('/etc/passwd')",
        "",
        "   ",
        "this is not sql",
    ],
)
def test_rejects_anything_else(guard, sql):
    with pytest.raises(UnsafeQueryError):
        guard.check(sql, EngineKind.SQLITE)


def test_rejects_multiple_statements(guard):
    with pytest.raises(UnsafeQueryError):
        guard.check("SELECT * FROM users; DROP TABLE users", EngineKind.SQLITE)
    with pytest.raises(UnsafeQueryError):
        guard.check("SELECT 1; SELECT 2", EngineKind.POSTGRES)


def test_strips_single_trailing_terminator(guard):
    assert guard.check("SELECT * FROM users;  ", EngineKind.MYSQL) == "SELECT * FROM users"


def test_unknown_table(guard, users_schema):
    with pytest.raises(SchemaMismatchError) as exc:
        guard.check("SELECT * FROM customers", EngineKind.SQLITE, users_schema)
    assert exc.value.details["table"] == "customers"


def test_unknown_column(guard, users_schema):
    with pytest.raises(SchemaMismatchError):
        guard.check("SELECT salary FROM users", EngineKind.SQLITE, users_schema)
    with pytest.raises(SchemaMismatchError):
        guard.check("SELECT u.salary FROM users u", EngineKind.SQLITE, users_schema)


def test_aliases_and_ctes_are_not_schema_identifiers(guard, users_schema):
    sqls = [
        "SELECT region, SUM(amount) AS total FROM sales GROUP BY region ORDER BY total DESC",
        "SELECT u.name, u.age FROM users AS u WHERE u.age > 30",
        "WITH older AS (SELECT name, age FROM users WHERE age > 30) SELECT o.name FROM older o",
        "SELECT t.name FROM (SELECT name FROM users) AS t",
    ]
    for sql in sqls:
        assert guard.check(sql, EngineKind.SQLITE, users_schema) == sql


def test_quoted_identifiers(guard, users_schema):
    assert guard.check('SELECT "name" FROM "users"', EngineKind.POSTGRES, users_schema)
    assert guard.check("SELECT `name` FROM `users`", EngineKind.MYSQL, users_schema)
