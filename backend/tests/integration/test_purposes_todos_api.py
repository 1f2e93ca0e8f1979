"""
Integration Tests — /v1/purposes and /v1/todos
══════════════════════════════════════════════
Request-scoped sessions come from the SQLite factory through the get_db
override in conftest.py; each request commits on success.

Coverage:
  ✅ Empty purpose table → GET seeds one active default
  ✅ At most one default after create/update
  ✅ Deleting the default promotes the oldest active purpose and detaches captures
  ✅ Body validation → 400 VALIDATION_ERROR
  ✅ Todo CRUD, unknown source capture → 404, capture delete detaches todos
"""

from __future__ import annotations

import uuid

import pytest


async def _create_purpose(client, name: str, **fields) -> dict:
    resp = await client.post("/v1/purposes", json={
        "name": name,
        "instruction": f"Organize {name.lower()} screenshots",
        **fields,
    })
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


def _defaults(purposes: list[dict]) -> list[str]:
    return [p["name"] for p in purposes if p["isDefault"]]


@pytest.mark.integration
class TestPurposesApi:

    async def test_empty_table_seeds_default(self, async_client):
        resp = await async_client.get("/v1/purposes")

        assert resp.status_code == 200
        [seed] = resp.json()["data"]
        assert seed["name"] == "General"
        assert seed["isDefault"] is True
        assert seed["isActive"] is True
        assert seed["sampleKeywords"] == ["schedule", "amount", "request"]

        # Seeding happens once
        again = await async_client.get("/v1/purposes")
        assert [p["id"] for p in again.json()["data"]] == [seed["id"]]

    async def test_create_returns_camel_case(self, async_client):
        created = await _create_purpose(async_client, "Travel", sampleKeywords=["flight", "hotel"])

        assert created["name"] == "Travel"
        assert created["sampleKeywords"] == ["flight", "hotel"]
        assert created["isDefault"] is False
        assert created["isActive"] is True
        assert "createdAt" in created and "updatedAt" in created

    async def test_single_default_after_create(self, async_client):
        await _create_purpose(async_client, "Travel", isDefault=True)
        await _create_purpose(async_client, "Expenses", isDefault=True)

        purposes = (await async_client.get("/v1/purposes")).json()["data"]
        assert _defaults(purposes) == ["Expenses"]
        # Default sorts first
        assert purposes[0]["name"] == "Expenses"

    async def test_single_default_after_update(self, async_client):
        travel   = await _create_purpose(async_client, "Travel", isDefault=True)
        expenses = await _create_purpose(async_client, "Expenses")

        resp = await async_client.patch(f"/v1/purposes/{expenses['id']}", json={"isDefault": True})

        assert resp.status_code == 200
        assert resp.json()["data"]["isDefault"] is True
        purposes = (await async_client.get("/v1/purposes")).json()["data"]
        assert _defaults(purposes) == ["Expenses"]
        assert any(p["id"] == travel["id"] and not p["isDefault"] for p in purposes)

    async def test_partial_update(self, async_client):
        travel = await _create_purpose(async_client, "Travel", description="trips")

        resp = await async_client.patch(
            f"/v1/purposes/{travel['id']}",
            json={"name": "Trips", "sampleKeywords": ["train"]},
        )

        data = resp.json()["data"]
        assert data["name"] == "Trips"
        assert data["sampleKeywords"] == ["train"]
        assert data["description"] == "trips"
        assert data["instruction"] == travel["instruction"]

    async def test_update_missing_404(self, async_client):
        resp = await async_client.patch(f"/v1/purposes/{uuid.uuid4()}", json={"name": "x"})
        assert resp.status_code == 404
        assert resp.json()["error_code"] == "NOT_FOUND"

    async def test_delete_default_promotes_oldest_active(self, async_client):
        first    = await _create_purpose(async_client, "First", isDefault=True)
        await _create_purpose(async_client, "Inactive", isActive=False)
        second   = await _create_purpose(async_client, "Second")
        await _create_purpose(async_client, "Third")

        resp = await async_client.delete(f"/v1/purposes/{first['id']}")

        assert resp.status_code == 200
        assert resp.json()["data"] == {"id": first["id"]}
        purposes = (await async_client.get("/v1/purposes")).json()["data"]
        assert _defaults(purposes) == ["Second"]
        assert first["id"] not in [p["id"] for p in purposes]
        assert second["id"] == purposes[0]["id"]

    async def test_delete_detaches_captures(self, async_client, make_capture):
        travel = await _create_purpose(async_client, "Travel")
        item   = await make_capture(purpose_id=uuid.UUID(travel["id"]))

        await async_client.delete(f"/v1/purposes/{travel['id']}")

        detail = (await async_client.get(f"/v1/captures/{item.id}")).json()["data"]
        assert detail["purposeId"] is None
        assert detail["purpose"] is None

    @pytest.mark.parametrize("body", [
        {"name": "", "instruction": "x"},
        {"name": "Travel"},
        {"name": "Travel", "instruction": "x", "sampleKeywords": ["ok", ""]},
    ])
    async def test_invalid_body_400(self, async_client, body):
        resp = await async_client.post("/v1/purposes", json=body)
        assert resp.status_code == 400
        assert resp.json()["error_code"] == "VALIDATION_ERROR"
        assert resp.json()["details"]


@pytest.mark.integration
class TestTodosApi:

    async def test_create_and_list(self, async_client, make_capture):
        item = await make_capture()

        first  = await async_client.post("/v1/todos", json={"title": "Book hotel"})
        second = await async_client.post(
            "/v1/todos", json={"title": "Pay invoice", "sourceCaptureId": str(item.id)},
        )

        assert first.status_code == 201
        assert first.json()["data"]["done"] is False
        assert first.json()["data"]["sourceCaptureId"] is None
        assert second.json()["data"]["sourceCaptureId"] == str(item.id)

        todos = (await async_client.get("/v1/todos")).json()["data"]
        assert [t["title"] for t in todos] == ["Pay invoice", "Book hotel"]

    async def test_unknown_source_capture_404(self, async_client):
        resp = await async_client.post(
            "/v1/todos", json={"title": "x", "sourceCaptureId": str(uuid.uuid4())},
        )
        assert resp.status_code == 404
        assert resp.json()["error_code"] == "NOT_FOUND"

    async def test_empty_title_400(self, async_client):
        resp = await async_client.post("/v1/todos", json={"title": ""})
        assert resp.status_code == 400

    async def test_toggle_done(self, async_client):
        todo = (await async_client.post("/v1/todos", json={"title": "Call back"})).json()["data"]

        resp = await async_client.patch(f"/v1/todos/{todo['id']}", json={"done": True})

        assert resp.status_code == 200
        assert resp.json()["data"]["done"] is True

    async def test_delete_then_404(self, async_client):
        todo = (await async_client.post("/v1/todos", json={"title": "Call back"})).json()["data"]

        resp = await async_client.delete(f"/v1/todos/{todo['id']}")
        assert resp.json()["data"] == {"id": todo["id"]}

        missing = await async_client.patch(f"/v1/todos/{todo['id']}", json={"done": True})
        assert missing.status_code == 404

    async def test_capture_delete_detaches_todo(self, async_client, make_capture):
        item = await make_capture()
        await async_client.post("/v1/todos", json={"title": "Follow up", "sourceCaptureId": str(item.id)})

        await async_client.delete(f"/v1/captures/{item.id}")

        [todo] = (await async_client.get("/v1/todos")).json()["data"]
        assert todo["title"] == "Follow up"
        assert todo["sourceCaptureId"] is None
