import sqlite3

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from genbi.api.main import create_app
from genbi.config import Settings
from genbi.genbi import GenBI
from genbi.models import ColumnInfo, SchemaSnapshot, TableInfo


USERS = [
    (1, "John Doe", "john@example.com", 30, 1),
    (2, "Jane Smith", "jane@example.com", 25, 0),
    (3, "Bob Johnson", "bob@example.com", 40, 1),
    (4, "Alice Brown", "alice@example.com", 35, 1),
]

SALES = [
    (1, "North", "2024-01-01", 120.0),
    (2, "South", "2024-01-02", 80.0),
    (3, "North", "2024-01-03", 100.0),
    (4, "East", "2024-01-04", 50.0),
    (5, "South", "2024-01-05", 70.0),
]


def create_sample_database(path: str) -> str:
    conn = sqlite3.connect(path)
    conn.executescript(
        """
        CREATE TABLE users (
            id INTEGER PRIMARY KEY,
            name TEXT NOT NULL,
            email TEXT,
            age INTEGER,
            active BOOLEAN
        );
        CREATE TABLE sales (
            id INTEGER PRIMARY KEY,
            region TEXT NOT NULL,
            sale_date TEXT NOT NULL,
            amount REAL NOT NULL
        );
        """
    )
    conn.executemany("INSERT INTO users VALUES (?, ?, ?, ?, ?)", USERS)
    conn.executemany("INSERT INTO sales VALUES (?, ?, ?, ?)", SALES)
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def sample_db(tmp_path) -> str:
    return create_sample_database(str(tmp_path / "sample.db"))


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        llm_provider="rules",
        user_data_url=f"sqlite:///{tmp_path / 'user-data.db'}",
        query_timeout=10.0,
        refresh_wait_timeout=5.0,
    )


@pytest.fixture
def users_schema() -> SchemaSnapshot:
    return SchemaSnapshot(
        tables=(
            TableInfo(
                "users",
                (
                    ColumnInfo("id", "INTEGER"),
                    ColumnInfo("name", "TEXT", nullable=False),
                    ColumnInfo("email", "TEXT"),
                    ColumnInfo("age", "INTEGER"),
                    ColumnInfo("active", "BOOLEAN"),
                ),
            ),
            TableInfo(
                "sales",
                (
                    ColumnInfo("id", "INTEGER"),
                    ColumnInfo("region", "TEXT", nullable=False),
                    ColumnInfo("sale_date", "TEXT", nullable=False),
                    ColumnInfo("amount", "REAL", nullable=False),
                ),
            ),
        )
    )


@pytest.fixture
def service(test_settings):
    genbi = GenBI(config=test_settings)
    yield genbi
    genbi.close()


@pytest.fixture
def connection(service, sample_db):
    return service.register_connection("demo", "sqlite", {"path": sample_db})


@pytest_asyncio.fixture
async def client(service):
    app = create_app(service)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
