from __future__ import annotations

import pytest

from incidentdesk.tests.utils.auth import create_test_org_user_key


@pytest.mark.asyncio
async def test_org_read_lists_available_features(client) -> None:
    org_id, _user_id, headers = await create_test_org_user_key(roles=("member",))
    response = await client.get(f"/v1/orgs/{org_id}", headers=headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["plan"] == "free"
    assert data["available_features"] == ["incidentManagement"]


@pytest.mark.asyncio
async def test_feature_override_grants_beyond_plan(client) -> None:
    org_id, _user_id, headers = await create_test_org_user_key()
    response = await client.patch(
        f"/v1/orgs/{org_id}",
        json={"features": {"problemManagement": True}},
        headers=headers,
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["features"] == {"problemManagement": True}
    assert data["available_features"] == ["incidentManagement", "problemManagement"]


@pytest.mark.asyncio
async def test_unknown_feature_key_is_rejected(client) -> None:
    org_id, _user_id, headers = await create_test_org_user_key()
    response = await client.patch(f"/v1/orgs/{org_id}", json={"features": {"timeTravel": True}}, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"]["details"] == {"unknown": ["timeTravel"]}


@pytest.mark.asyncio
async def test_member_cannot_manage_org_or_users(client) -> None:
    org_id, _user_id, headers = await create_test_org_user_key(roles=("member",))
    patch = await client.patch(f"/v1/orgs/{org_id}", json={"name": "Renamed"}, headers=headers)
    assert patch.status_code == 403
    assert patch.json()["error"]["code"] == "AUTH_FORBIDDEN"

    invite = await client.post(
        f"/v1/orgs/{org_id}/users",
        json={"email": "new@example.com", "name": "New"},
        headers=headers,
    )
    assert invite.status_code == 403


@pytest.mark.asyncio
async def test_plan_without_incident_management_blocks_incidents(client) -> None:
    org_id, _user_id, headers = await create_test_org_user_key(plan="legacy")
    for path in ("/incidents", "/dashboard"):
        response = await client.get(f"/v1/orgs/{org_id}{path}", headers=headers)
        assert response.status_code == 403, path
        error = response.json()["error"]
        assert error["code"] == "FEATURE_NOT_ENABLED"
        assert error["details"]["feature_key"] == "incidentManagement"


@pytest.mark.asyncio
async def test_invite_user_and_reject_duplicates(client) -> None:
    org_id, _user_id, headers = await create_test_org_user_key()
    created = await client.post(
        f"/v1/orgs/{org_id}/users",
        json={"email": "Responder@Example.com", "name": "Responder", "roles": ["oncall"]},
        headers=headers,
    )
    assert created.status_code == 201
    user = created.json()["data"]
    assert user["email"] == "responder@example.com"
    assert user["roles"] == ["oncall"]

    duplicate = await client.post(
        f"/v1/orgs/{org_id}/users",
        json={"email": "responder@example.com", "name": "Again"},
        headers=headers,
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "CONFLICT"

    invalid_role = await client.post(
        f"/v1/orgs/{org_id}/users",
        json={"email": "other@example.com", "name": "Other", "roles": ["owner"]},
        headers=headers,
    )
    assert invalid_role.status_code == 400


@pytest.mark.asyncio
async def test_free_plan_user_limit(client) -> None:
    org_id, _user_id, headers = await create_test_org_user_key()
    for index in range(2):
        response = await client.post(
            f"/v1/orgs/{org_id}/users",
            json={"email": f"user{index}@example.com", "name": f"User {index}"},
            headers=headers,
        )
        assert response.status_code == 201
    blocked = await client.post(
        f"/v1/orgs/{org_id}/users",
        json={"email": "user9@example.com", "name": "User 9"},
        headers=headers,
    )
    assert blocked.status_code == 403
    assert blocked.json()["error"]["code"] == "PLAN_LIMIT_REACHED"

    listing = await client.get(f"/v1/orgs/{org_id}/users", headers=headers)
    assert listing.json()["data"]["total"] == 3

    second_page = await client.get(f"/v1/orgs/{org_id}/users?page=2&limit=2", headers=headers)
    data = second_page.json()["data"]
    assert len(data["items"]) == 1
    assert data["total"] == 3
    assert data["pages"] == 2
    assert data["items"][0]["email"] == "user1@example.com"


@pytest.mark.asyncio
async def test_deactivate_user(client) -> None:
    org_id, _user_id, headers = await create_test_org_user_key()
    created = await client.post(
        f"/v1/orgs/{org_id}/users",
        json={"email": "temp@example.com", "name": "Temp"},
        headers=headers,
    )
    user_id = created.json()["data"]["id"]
    response = await client.patch(f"/v1/orgs/{org_id}/users/{user_id}", json={"is_active": False}, headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["is_active"] is False

    missing = await client.patch(f"/v1/orgs/{org_id}/users/nope", json={"name": "X"}, headers=headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
@pytest.mark.usefixtures("audit_log_unavailable")
async def test_failed_audit_write_keeps_committed_org_and_user_changes(client) -> None:
    org_id, _user_id, headers = await create_test_org_user_key()
    renamed = await client.patch(f"/v1/orgs/{org_id}", json={"name": "Renamed Org"}, headers=headers)
    assert renamed.status_code == 200, renamed.text
    assert renamed.json()["data"]["name"] == "Renamed Org"

    created = await client.post(
        f"/v1/orgs/{org_id}/users",
        json={"email": "audit-down@example.com", "name": "Audit Down"},
        headers=headers,
    )
    assert created.status_code == 201, created.text
    user_id = created.json()["data"]["id"]

    updated = await client.patch(
        f"/v1/orgs/{org_id}/users/{user_id}",
        json={"roles": ["oncall"]},
        headers=headers,
    )
    assert updated.status_code == 200, updated.text
    assert updated.json()["data"]["roles"] == ["oncall"]
