from __future__ import annotations

import pytest

from incidentdesk.tests.utils.auth import create_test_org_user_key, create_test_user_key


@pytest.mark.asyncio
async def test_dashboard_counts_and_recent_activity(client) -> None:
    org_id, _user_id, headers = await create_test_org_user_key()
    ids = []
    for title, severity in (("a", "P1"), ("b", "P2"), ("c", "P2")):
        response = await client.post(
            f"/v1/orgs/{org_id}/incidents",
            json={"title": title, "severity": severity},
            headers=headers,
        )
        ids.append(response.json()["data"]["id"])

    empty_avg = await client.get(f"/v1/orgs/{org_id}/dashboard", headers=headers)
    assert empty_avg.json()["data"]["avg_resolution_time_hours"] is None

    await client.patch(f"/v1/orgs/{org_id}/incidents/{ids[0]}", json={"status": "resolved"}, headers=headers)
    response = await client.get(f"/v1/orgs/{org_id}/dashboard", headers=headers)
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["incidents"]["total"] == 3
    assert data["incidents"]["by_status"] == {
        "open": 2,
        "acknowledged": 0,
        "investigating": 0,
        "resolved": 1,
        "closed": 0,
    }
    assert data["incidents"]["by_severity"] == {"P1": 1, "P2": 2, "P3": 0, "P4": 0}
    assert data["recent_activity"][0]["id"] == ids[0]
    assert data["avg_resolution_time_hours"] == 0


@pytest.mark.asyncio
async def test_audit_events_record_writes_for_admins(client) -> None:
    org_id, user_id, headers = await create_test_org_user_key()
    created = await client.post(
        f"/v1/orgs/{org_id}/incidents",
        json={"title": "Disk full", "severity": "P2"},
        headers={**headers, "X-Request-Id": "req-audit", "X-Forwarded-For": "203.0.113.9"},
    )
    incident_id = created.json()["data"]["id"]
    await client.patch(f"/v1/orgs/{org_id}/incidents/{incident_id}", json={"severity": "P1"}, headers=headers)

    response = await client.get(f"/v1/orgs/{org_id}/audit/events", headers=headers)
    assert response.status_code == 200
    items = response.json()["data"]["items"]
    assert [item["action"] for item in items] == ["update", "create"]
    create_event = items[1]
    assert create_event["resource_type"] == "incident"
    assert create_event["resource_id"] == incident_id
    assert create_event["user_id"] == user_id
    assert create_event["request_id"] == "req-audit"
    assert create_event["ip_address"] == "203.0.113.9"
    assert create_event["details"] == {"title": "Disk full", "severity": "P2", "status": "open"}
    assert items[0]["details"] == {"changes": {"severity": "P1"}}

    single = await client.get(f"/v1/orgs/{org_id}/audit/events/{create_event['id']}", headers=headers)
    assert single.json()["data"]["id"] == create_event["id"]

    paged = await client.get(f"/v1/orgs/{org_id}/audit/events", params={"limit": 1}, headers=headers)
    assert paged.json()["data"]["next_offset"] == 1

    report = await client.get(f"/v1/orgs/{org_id}/audit/report", headers=headers)
    report_data = report.json()["data"]
    assert report_data["summary"] == {"incident": 2}
    assert report_data["top_users"] == [{"user_id": user_id, "count": 2}]


@pytest.mark.asyncio
async def test_audit_events_are_admin_only_and_org_scoped(client) -> None:
    org_id, _user_id, headers = await create_test_org_user_key()
    _member_id, _raw, member_headers = await create_test_user_key(org_id=org_id, roles=("member",))
    other_org_id, _other_user, other_headers = await create_test_org_user_key()
    await client.post(f"/v1/orgs/{other_org_id}/incidents", json={"title": "elsewhere"}, headers=other_headers)

    denied = await client.get(f"/v1/orgs/{org_id}/audit/events", headers=member_headers)
    assert denied.status_code == 403

    own = await client.get(f"/v1/orgs/{org_id}/audit/events", headers=headers)
    assert own.json()["data"]["items"] == []

    missing = await client.get(f"/v1/orgs/{org_id}/audit/events/999999", headers=headers)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_audit_report_history_and_user_activity(client) -> None:
    org_id, user_id, headers = await create_test_org_user_key(plan="pro")
    first = await client.post(f"/v1/orgs/{org_id}/incidents", json={"title": "API errors"}, headers=headers)
    first_id = first.json()["data"]["id"]
    await client.post(f"/v1/orgs/{org_id}/incidents", json={"title": "Queue backlog"}, headers=headers)
    await client.patch(f"/v1/orgs/{org_id}/incidents/{first_id}", json={"status": "investigating"}, headers=headers)
    invited = await client.post(
        f"/v1/orgs/{org_id}/users",
        json={"email": "second@example.com", "name": "Second"},
        headers=headers,
    )
    invited_id = invited.json()["data"]["id"]

    report = await client.get(f"/v1/orgs/{org_id}/audit/report", headers=headers)
    assert report.status_code == 200
    data = report.json()["data"]
    assert data["summary"] == {"incident": 3, "user": 1}
    assert data["top_users"] == [{"user_id": user_id, "count": 4}]
    assert data["top_actions"][0] == {"action": "create", "count": 2}
    assert sum(bucket["count"] for bucket in data["timeline"]) == 4

    future = await client.get(
        f"/v1/orgs/{org_id}/audit/report",
        params={"from": "2999-01-01T00:00:00+00:00"},
        headers=headers,
    )
    assert future.json()["data"] == {"summary": {}, "top_users": [], "top_actions": [], "timeline": []}

    history = await client.get(f"/v1/orgs/{org_id}/audit/resources/incident/{first_id}", headers=headers)
    assert history.status_code == 200
    assert [item["action"] for item in history.json()["data"]["items"]] == ["update", "create"]

    activity = await client.get(f"/v1/orgs/{org_id}/audit/users/{user_id}/activity", headers=headers)
    items = activity.json()["data"]["items"]
    assert len(items) == 4
    assert items[0]["resource_type"] == "user"
    assert items[0]["resource_id"] == invited_id

    quiet = await client.get(f"/v1/orgs/{org_id}/audit/users/{invited_id}/activity", headers=headers)
    assert quiet.json()["data"]["items"] == []
