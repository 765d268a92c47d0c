import pytest


pytestmark = pytest.mark.asyncio


async def register(client, sample_db):
    response = await client.post(
        "/connections",
        json={"name": "demo", "type": "sqlite", "connection": {"path": sample_db}},
    )
    assert response.status_code == 201
    return response.json()["data"]


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_connection_lifecycle(client, sample_db):
    created = await register(client, sample_db)
    assert created["type"] == "sqlite"

    listed = (await client.get("/connections")).json()
    assert listed["success"] is True
    assert [c["id"] for c in listed["data"]] == [created["id"]]

    updated = await client.put(f"/connections/{created['id']}", json={"name": "renamed"})
    assert updated.json()["data"]["name"] == "renamed"

    schema = await client.get(f"/connections/{created['id']}/schema", params={"refresh": "true"})
    assert [t["name"] for t in schema.json()["data"]["tables"]] == ["sales", "users"]

    deleted = await client.delete(f"/connections/{created['id']}")
    assert deleted.json() == {
        "success": True,
        "data": {"id": created["id"], "deleted": True, "danglingQueries": 0},
    }


async def test_connection_test_endpoint(client, sample_db):
    response = await client.post(
        "/connections/test", json={"type": "sqlite", "connection": {"path": sample_db}}
    )
    assert response.status_code == 200
    assert response.json()["data"] == {
        "results": [{"connection_test": 1}],
        "sqlQuery": "SELECT 1 AS connection_test",
        "databaseType": "sqlite",
    }


async def test_users_older_than_30(client, sample_db):
    connection = await register(client, sample_db)
    response = await client.post(
        "/query",
        json={"userQuery": "Show me all users older than 30", "connectionId": connection["id"]},
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["sqlQuery"] == "SELECT * FROM users WHERE age > 30"
    assert data["databaseType"] == "sqlite"
    assert [row["age"] for row in data["results"]] == [40, 35]
    assert data["confidence"] == "high"
    assert data["truncated"] is False
    assert "recommendedChartTypes" in data["visualization"]


async def test_query_with_connection_string(client, sample_db):
    response = await client.post(
        "/query",
        json={"userQuery": "What is the total amount of sales by region?", "connectionString": sample_db},
    )
    data = response.json()["data"]
    assert [row["region"] for row in data["results"]] == ["East", "North", "South"]
    assert data["visualization"]["chartType"] == "bar"
    assert data["visualization"]["xAxis"] == "region"
    assert data["visualization"]["series"] == ["total"]


async def test_unsafe_question_error_envelope(client, sample_db):
    connection = await register(client, sample_db)
    response = await client.post(
        "/query",
        json={"userQuery": "What is the meaning of life?", "connectionId": connection["id"]},
    )
    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert body["error"]["kind"] == "UnsafeQueryError"
    assert body["error"]["retryable"] is False


async def test_body_validation_maps_to_validation_error(client):
    response = await client.post("/query", json={"connectionId": "x"})
    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "ValidationError"


async def test_missing_target(client):
    response = await client.post("/query", json={"userQuery": "Show me all users"})
    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "ValidationError"


async def test_not_found(client):
    response = await client.get("/queries/missing")
    assert response.status_code == 404
    assert response.json()["error"]["kind"] == "NotFoundError"


async def test_saved_query_flow(client, sample_db):
    connection = await register(client, sample_db)
    answer = (
        await client.post(
            "/query",
            json={"userQuery": "What is the total amount of sales by region?", "connectionId": connection["id"]},
        )
    ).json()["data"]

    created = await client.post(
        "/queries",
        json={
            "name": "Sales by region",
            "userQuery": "What is the total amount of sales by region?",
            "sqlQuery": answer["sqlQuery"],
            "connectionId": connection["id"],
            "results": answer["results"],
        },
    )
    assert created.status_code == 201
    saved = created.json()["data"]
    assert saved["chartType"] == "bar"
    assert isinstance(saved["results"], str)

    listed = (await client.get("/queries")).json()["data"]
    assert [q["id"] for q in listed] == [saved["id"]]

    renamed = await client.patch(f"/queries/{saved['id']}", json={"name": "Regional sales"})
    assert renamed.json()["data"]["name"] == "Regional sales"

    refreshed = (await client.post(f"/queries/{saved['id']}/refresh")).json()["data"]
    assert refreshed["query"]["lastRefreshedAt"] is not None
    assert refreshed["results"] == answer["results"]

    in_use = await client.delete(f"/connections/{connection['id']}")
    assert in_use.status_code == 409
    assert in_use.json()["error"]["kind"] == "ReferentialError"

    forced = await client.delete(f"/connections/{connection['id']}", params={"force": "true"})
    assert forced.json()["data"]["danglingQueries"] == 1
    dangling = await client.post(f"/queries/{saved['id']}/refresh")
    assert dangling.status_code == 409

    first = await client.delete(f"/queries/{saved['id']}")
    second = await client.delete(f"/queries/{saved['id']}")
    assert first.json()["data"]["deleted"] is True
    assert second.status_code == 200
    assert second.json()["data"]["deleted"] is False


async def test_saving_unsafe_sql_is_rejected(client, sample_db):
    connection = await register(client, sample_db)
    response = await client.post(
        "/queries",
        json={
            "name": "bad",
            "userQuery": "drop it",
            "sqlQuery": "DROP TABLE users",
            "connectionId": connection["id"],
        },
    )
    assert response.status_code == 422
    assert response.json()["error"]["kind"] == "UnsafeQueryError"
