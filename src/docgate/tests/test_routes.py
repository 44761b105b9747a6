"""
Tests for the HTTP API.

Exercises the routes end to end through FastAPI's TestClient.
"""

import pytest
from bson import ObjectId

API = "/api/v1"


@pytest.fixture
def orders_id(client, orders_schema) -> str:
    response = client.post(f"{API}/schemas", json=orders_schema)
    assert response.status_code == 201
    return response.json()["data"]["_id"]


# =============================================================================
# Health and envelopes
# =============================================================================


class TestEnvelope:
    """Tests for the response envelope and error rendering."""

    def test_health(self, client):
        response = client.get(f"{API}/health")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "API is running"
        assert "timestamp" in body["data"]

    def test_unknown_route_uses_envelope(self, client):
        response = client.get(f"{API}/a/b/c")

        assert response.status_code == 404
        assert response.json()["success"] is False

    def test_malformed_body_is_400(self, client):
        response = client.post(f"{API}/notes", json=["not", "an", "object"])

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["message"] == "Validation failed"


# =============================================================================
# Schemas
# =============================================================================


class TestSchemaRoutes:
    """Tests for /schemas."""

    def test_create_and_list(self, client, orders_id):
        response = client.get(f"{API}/schemas")

        assert response.status_code == 200
        data = response.json()["data"]
        assert [s["_id"] for s in data] == [orders_id]
        assert data[0]["collectionName"] == "orders"

    def test_duplicate_is_409(self, client, orders_id, orders_schema):
        response = client.post(f"{API}/schemas", json=orders_schema)
        assert response.status_code == 409

    def test_invalid_schema_is_400(self, client):
        response = client.post(f"{API}/schemas", json={"collectionName": "x"})

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "displayName"

    def test_read_and_by_collection(self, client, orders_id):
        assert client.get(f"{API}/schemas/{orders_id}").json()["data"]["_id"] == orders_id

        response = client.get(f"{API}/schemas/collection/ORDERS")
        assert response.json()["data"]["_id"] == orders_id

        assert client.get(f"{API}/schemas/collection/invoices").status_code == 404

    def test_read_invalid_id(self, client):
        response = client.get(f"{API}/schemas/not-an-id")
        assert response.status_code == 400

    def test_update(self, client, orders_id):
        response = client.put(f"{API}/schemas/{orders_id}", json={"displayName": "Sales"})

        assert response.status_code == 200
        assert response.json()["data"]["displayName"] == "Sales"

    def test_update_null_fields_is_400(self, client, orders_id):
        response = client.put(f"{API}/schemas/{orders_id}", json={"fields": None})

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "fields"
        assert client.get(f"{API}/schemas").status_code == 200

    def test_collection_info(self, client, orders_id):
        client.post(f"{API}/orders", json={"amount": 1})

        response = client.get(f"{API}/schemas/{orders_id}/collections")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["schema"]["_id"] == orders_id
        assert data["collection"]["name"] == "orders"
        assert data["collection"]["documentCount"] == 1

    def test_registry_not_writable_as_collection(self, client, orders_id, orders_schema):
        response = client.post(
            f"{API}/schemas/bulk",
            json={"operation": "insert", "data": [{**orders_schema, "isActive": True}]},
        )

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "collection"
        assert len(client.get(f"{API}/schemas").json()["data"]) == 1

    def test_delete_twice(self, client, orders_id):
        assert client.delete(f"{API}/schemas/{orders_id}").status_code == 200
        assert client.delete(f"{API}/schemas/{orders_id}").status_code == 200
        assert client.get(f"{API}/schemas").json()["data"] == []

    def test_missing_schema_is_404(self, client):
        response = client.delete(f"{API}/schemas/{ObjectId()}")
        assert response.status_code == 404

    def test_validate(self, client, orders_id):
        ok = client.post(f"{API}/schemas/{orders_id}/validate", json={"data": {"amount": 3}})
        assert ok.status_code == 200
        assert ok.json()["data"] == {"valid": True, "data": {"amount": 3}}

        bad = client.post(f"{API}/schemas/{orders_id}/validate", json={"data": {"amount": -3}})
        assert bad.status_code == 400
        assert bad.json()["errors"][0]["field"] == "amount"

        assert client.get(f"{API}/orders").json()["data"] == []

    def test_export(self, client, orders_id):
        response = client.get(f"{API}/schemas/export/{orders_id}")

        assert response.status_code == 200
        assert "orders-schema.json" in response.headers["content-disposition"]
        assert response.json()["data"]["collectionName"] == "orders"


# =============================================================================
# Documents
# =============================================================================


class TestDocumentRoutes:
    """Tests for the universal /{collection} routes."""

    def test_orders_scenario(self, client, orders_id):
        bad = client.post(f"{API}/orders", json={"amount": -5})
        assert bad.status_code == 400
        assert bad.json()["errors"][0]["field"] == "amount"

        created = client.post(f"{API}/orders", json={"amount": 20})
        assert created.status_code == 201
        doc_id = created.json()["data"]["_id"]

        fetched = client.get(f"{API}/orders/{doc_id}").json()["data"]
        assert fetched["amount"] == 20
        assert fetched["createdAt"].endswith("Z")

    def test_list_with_query_string(self, client, db_manager):
        db_manager.collection("items").insert_many(
            [{"price": p, "createdAt": None} for p in (50, 150, 250, 600)]
        )
        response = client.get(f"{API}/items?price>100&price<=500&sort=price&limit=1&page=2")

        body = response.json()
        assert response.status_code == 200
        assert [d["price"] for d in body["data"]] == [250]
        assert body["pagination"] == {"page": 2, "limit": 1, "total": 2, "pages": 2}

    def test_invalid_limit(self, client):
        response = client.get(f"{API}/items?limit=5000")

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "limit"

    def test_replace_patch_delete(self, client):
        doc_id = client.post(f"{API}/notes", json={"text": "a"}).json()["data"]["_id"]

        replaced = client.put(f"{API}/notes/{doc_id}", json={"body": "b"}).json()["data"]
        assert "text" not in replaced
        assert replaced["body"] == "b"

        patched = client.patch(f"{API}/notes/{doc_id}", json={"extra": 1}).json()["data"]
        assert patched["body"] == "b"
        assert patched["extra"] == 1

        assert client.delete(f"{API}/notes/{doc_id}").status_code == 200
        assert client.get(f"{API}/notes/{doc_id}").status_code == 404

    def test_bulk_delete(self, client):
        ids = [client.post(f"{API}/notes", json={"n": i}).json()["data"]["_id"] for i in range(2)]

        response = client.post(
            f"{API}/notes/bulk",
            json={"operation": "delete", "data": ids + [str(ObjectId())]},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["succeeded"] == 2
        assert data["requested"] == 3
        assert data["notFound"] == 1

    def test_stats(self, client):
        client.post(f"{API}/notes", json={"n": 1})
        data = client.get(f"{API}/notes/stats").json()["data"]

        assert data["collection"] == "notes"
        assert data["count"] == 1


# =============================================================================
# Collections and database
# =============================================================================


class TestAdministrationRoutes:
    """Tests for /collections and /database."""

    def test_collections_listing(self, client, orders_id):
        client.post(f"{API}/orders", json={"amount": 1})
        data = client.get(f"{API}/collections").json()["data"]

        assert [c["name"] for c in data["collections"]] == ["orders"]
        assert data["withSchema"] == 1

    def test_describe_and_analyze(self, client):
        client.post(f"{API}/notes", json={"n": 1})

        assert client.get(f"{API}/collections/notes").json()["data"]["documentCount"] == 1
        fields = client.post(f"{API}/collections/notes/analyze").json()["data"]["fields"]
        assert "n" in {f["field"] for f in fields}

        assert client.get(f"{API}/collections/ghost").status_code == 404

    def test_database_info(self, client):
        response = client.get(f"{API}/database/info")

        assert response.status_code == 200
        assert response.json()["data"]["database"] == "docgate_test"

    def test_collection_lifecycle(self, client):
        created = client.post(f"{API}/database/collections", json={"name": "fresh"})
        assert created.status_code == 201
        assert client.post(f"{API}/database/collections", json={"name": "fresh"}).status_code == 409

        index = client.post(
            f"{API}/database/collections/fresh/indexes",
            json={"keys": {"email": 1}, "options": {"unique": True}},
        )
        assert index.status_code == 201
        index_name = index.json()["data"]["name"]

        dropped = client.delete(f"{API}/database/collections/fresh/indexes/{index_name}")
        assert dropped.status_code == 200
        assert client.delete(f"{API}/database/collections/fresh/indexes/_id_").status_code == 400

        assert client.delete(f"{API}/database/collections/fresh").status_code == 200
        assert client.delete(f"{API}/database/collections/fresh").status_code == 404

    def test_backup_and_restore(self, client, db_manager):
        first = client.post(f"{API}/notes", json={"text": "keep"}).json()["data"]

        backup = client.post(f"{API}/database/backup", json={"collections": ["notes"]})
        assert backup.status_code == 200
        backup_data = backup.json()["data"]
        assert "$oid" in str(backup_data)

        db_manager.collection("notes").delete_many({})
        restored = client.post(f"{API}/database/restore", json={"backup": backup_data})

        assert restored.status_code == 200
        assert restored.json()["success"] is True
        doc = client.get(f"{API}/notes/{first['_id']}").json()["data"]
        assert doc["text"] == "keep"
        assert doc["createdAt"] == first["createdAt"]

    def test_restore_requires_backup(self, client):
        response = client.post(f"{API}/database/restore", json={})
        assert response.status_code == 400

    def test_query(self, client):
        for n in (1, 2, 3):
            client.post(f"{API}/notes", json={"n": n})

        found = client.post(
            f"{API}/database/query",
            json={"collection": "notes", "operation": "find", "query": {"n": {"$gte": 2}}},
        )
        assert found.status_code == 200
        assert sorted(d["n"] for d in found.json()["data"]) == [2, 3]

        count = client.post(f"{API}/database/query", json={"collection": "notes", "operation": "count"})
        assert count.json()["data"] == 3

    def test_query_rejects_bad_requests(self, client):
        no_collection = client.post(f"{API}/database/query", json={"operation": "find"})
        assert no_collection.status_code == 400
        assert no_collection.json()["errors"][0]["field"] == "collection"

        bad_operation = client.post(
            f"{API}/database/query", json={"collection": "notes", "operation": "drop"}
        )
        assert bad_operation.status_code == 400
        assert bad_operation.json()["errors"][0]["field"] == "operation"
