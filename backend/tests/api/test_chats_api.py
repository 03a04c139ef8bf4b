import pytest

ALICE = {"X-User-Id": "user-a"}
BOB = {"X-User-Id": "user-b"}


@pytest.mark.asyncio
async def test_direct_chat_is_created_once(api_client):
    first = await api_client.post("/chats", json={"userId": "user-b"}, headers=ALICE)
    second = await api_client.post("/chats", json={"userId": "user-a"}, headers=BOB)

    assert first.status_code == 201
    assert second.status_code == 200
    assert first.json()["data"]["id"] == second.json()["data"]["id"]
    assert sorted(m["id"] for m in first.json()["data"]["members"]) == ["user-a", "user-b"]


@pytest.mark.asyncio
async def test_self_chat_is_rejected(api_client):
    response = await api_client.post("/chats", json={"userId": "user-a"}, headers=ALICE)

    assert response.status_code == 400
    assert response.json()["code"] == "cannot_chat_with_self"


@pytest.mark.asyncio
async def test_group_creation_and_listing(api_client):
    created = await api_client.post(
        "/chats/group",
        json={"name": "crew", "users": ["user-b", "user-c", "user-b"]},
        headers=ALICE,
    )
    assert created.status_code == 201
    group = created.json()["data"]
    assert group["kind"] == "group"
    assert group["adminId"] == "user-a"
    assert [m["id"] for m in group["members"]] == ["user-a", "user-b", "user-c"]

    await api_client.post("/messages", json={"chatId": group["id"], "content": "welcome"}, headers=ALICE)

    listing = await api_client.get("/chats", headers={"X-User-Id": "user-c"})
    chats = listing.json()["data"]
    assert [chat["id"] for chat in chats] == [group["id"]]
    assert chats[0]["latestMessage"]["content"] == "welcome"

    outsider = await api_client.get(f"/chats/{group['id']}", headers={"X-User-Id": "user-z"})
    assert outsider.status_code == 403


@pytest.mark.asyncio
async def test_group_needs_two_other_users(api_client):
    response = await api_client.post("/chats/group", json={"name": "duo", "users": ["user-b"]}, headers=ALICE)

    assert response.status_code == 400
    assert response.json()["code"] == "group_needs_more_users"


@pytest.mark.asyncio
async def test_validation_errors_use_failure_envelope(api_client):
    response = await api_client.post("/chats", json={}, headers=ALICE)

    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "invalid_argument"
    assert body["errors"]


@pytest.mark.asyncio
async def test_profile_and_presence(api_client, registry):
    updated = await api_client.put("/users/me", json={"name": "Bea"}, headers=BOB)
    assert updated.json()["data"] == {"id": "user-b", "name": "Bea", "avatar": None}

    await registry.connect("sid-1", "user-b")
    online = await api_client.get("/users/user-b", headers=ALICE)
    assert online.json()["data"]["online"] is True
    assert online.json()["data"]["user"]["name"] == "Bea"

    await registry.disconnect("sid-1")
    offline = await api_client.get("/users/user-b", headers=ALICE)
    assert offline.json()["data"]["online"] is False
    assert offline.json()["data"]["lastSeen"] is not None


@pytest.mark.asyncio
async def test_health_and_metrics(api_client):
    live = await api_client.get("/health")
    ready = await api_client.get("/health/ready")
    metrics = await api_client.get("/metrics")

    assert live.json() == {"status": "ok"}
    assert ready.status_code == 200
    assert ready.json()["checks"]["postgres"]["mode"] == "memory"
    assert "dsync_http_requests_total" in metrics.text
