"""
HTTP tests for the marketplace API, run in-process.
"""
import httpx
import pytest
import pytest_asyncio

from servicehub.db import get_db_session
from servicehub.main import app, get_email_dispatcher

SLOT = {"startDate": "2025-06-01T10:00:00", "endDate": "2025-06-01T11:00:00"}


@pytest_asyncio.fixture
async def client(database, seed, emails):
    async def override_db_session():
        async with database.Session() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_email_dispatcher] = lambda: emails
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def reserve(client, auth, user_id, service_id, **window):
    body = {"service_id": service_id, **(window or SLOT)}
    return await client.post("/reservations", json=body, headers=auth(user_id))


@pytest.mark.asyncio
async def test_root(client):
    response = await client.get("/")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_list_services(client, seed):
    response = await client.get("/services")
    assert response.status_code == 200
    assert {s["id"] for s in response.json()} == {seed.s1, seed.s2}

    response = await client.get("/services", params={"available_only": True})
    assert [s["id"] for s in response.json()] == [seed.s1]

    response = await client.get("/services/9999")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_reservations_require_a_token(client, seed):
    response = await client.post("/reservations", json={"service_id": seed.s1, **SLOT})
    assert response.status_code == 401

    response = await client.get("/reservations/client", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_create_returns_201_and_conflict_returns_400(client, auth, seed):
    response = await reserve(client, auth, seed.client, seed.s1)
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending"
    assert body["client"] == {"id": seed.client, "name": "Carla Client", "email": "carla@example.com"}

    response = await reserve(client, auth, seed.client2, seed.s1)
    assert response.status_code == 400

    response = await reserve(client, auth, seed.client2, 9999)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_single_date_payload_is_accepted(client, auth, seed):
    response = await reserve(client, auth, seed.client, seed.s1, date="2025-06-01T10:00:00")
    assert response.status_code == 201
    body = response.json()
    assert body["start_at"] == body["end_at"]


@pytest.mark.asyncio
async def test_invalid_window_is_422(client, auth, seed):
    response = await reserve(client, auth, seed.client, seed.s1,
                             startDate="2025-06-01T11:00:00", endDate="2025-06-01T10:00:00")
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_confirm_flow_over_http(client, auth, seed, emails):
    created = (await reserve(client, auth, seed.client, seed.s1)).json()
    url = f"/reservations/{created['id']}"

    response = await client.patch(f"{url}/confirm", headers=auth(seed.client2))
    assert response.status_code == 403

    response = await client.patch(f"{url}/confirm", headers=auth(seed.provider, "provider"))
    assert response.status_code == 200
    assert response.json()["status"] == "confirmed"
    assert [sent[1] for sent in emails.sent] == ["reservationConfirmed"]

    response = await client.patch(f"{url}/cancel", headers=auth(seed.provider, "provider"))
    assert response.status_code == 400

    response = await client.get(url, headers=auth(seed.client))
    assert response.json()["status"] == "confirmed"

    response = await client.patch("/reservations/9999/confirm", headers=auth(seed.provider, "provider"))
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_seller_and_client_listings(client, auth, seed):
    await reserve(client, auth, seed.client, seed.s1)
    await reserve(client, auth, seed.client2, seed.s2)

    seller = (await client.get("/reservations/seller", headers=auth(seed.provider, "provider"))).json()
    assert [r["service"]["id"] for r in seller] == [seed.s1]
    assert "password_hash" not in seller[0]["client"]

    mine = (await client.get("/reservations/client", headers=auth(seed.client2))).json()
    assert [r["service_id"] for r in mine] == [seed.s2]

    alias = (await client.get("/reservations/user", headers=auth(seed.client2))).json()
    assert alias == mine


@pytest.mark.asyncio
async def test_notifications_can_be_listed_and_read(client, auth, seed):
    await reserve(client, auth, seed.client, seed.s1)
    headers = auth(seed.provider, "provider")

    unread = (await client.get("/notifications", params={"unread_only": True}, headers=headers)).json()
    assert len(unread) == 1
    assert unread[0]["type"] == "reservation_requested"

    response = await client.patch(f"/notifications/{unread[0]['id']}/read", headers=auth(seed.client))
    assert response.status_code == 404

    response = await client.patch(f"/notifications/{unread[0]['id']}/read", headers=headers)
    assert response.status_code == 200
    assert response.json()["is_read"] is True

    unread = (await client.get("/notifications", params={"unread_only": True}, headers=headers)).json()
    assert unread == []


@pytest.mark.asyncio
async def test_seller_listing_is_for_providers(client, auth, seed):
    response = await client.get("/reservations/seller", headers=auth(seed.client))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_categories(client, seed):
    response = await client.get("/categories")
    assert response.status_code == 200
    assert response.json() == [{"id": seed.category, "name": "Home"}]

    response = await client.get(f"/categories/{seed.category}")
    assert response.json()["name"] == "Home"

    response = await client.get("/categories/9999")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_provider_publishes_a_service(client, auth, seed):
    body = {"title": "Window cleaning", "price": 40, "category_id": seed.category}

    response = await client.post("/services", json=body, headers=auth(seed.client))
    assert response.status_code == 403

    response = await client.post("/services", json=body, headers=auth(seed.provider, "provider"))
    assert response.status_code == 201
    created = response.json()
    assert created["provider_id"] == seed.provider
    assert created["is_available"] is True

    response = await client.post("/services", json={**body, "category_id": 9999},
                                 headers=auth(seed.provider, "provider"))
    assert response.status_code == 404

    response = await client.post("/services", json={**body, "title": ""}, headers=auth(seed.provider, "provider"))
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_owner_toggles_availability(client, auth, seed):
    url = f"/services/{seed.s1}"

    response = await client.put(url, json={"is_available": False}, headers=auth(seed.other_provider, "provider"))
    assert response.status_code == 403

    response = await client.put(url, json={"is_available": False}, headers=auth(seed.provider, "provider"))
    assert response.status_code == 200
    assert response.json()["is_available"] is False
    assert response.json()["title"] == "Plumbing repair"

    response = await client.get("/services", params={"available_only": True})
    assert response.json() == []

    response = await client.put(url, json={"title": None}, headers=auth(seed.provider, "provider"))
    assert response.status_code == 422

    response = await client.put("/services/9999", json={"price": 10}, headers=auth(seed.provider, "provider"))
    assert response.status_code == 404
