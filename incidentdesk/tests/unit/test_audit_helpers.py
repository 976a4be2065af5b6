from __future__ import annotations

from datetime import datetime, timedelta, timezone

from starlette.requests import Request

from incidentdesk.domain.models import AuditLogEntry
from incidentdesk.services.audit import client_ip, get_request_context, sanitize_metadata, summarize_events


def _request(headers: dict[str, str], client: tuple[str, int] | None = ("10.1.1.1", 5000)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(key.lower().encode("latin-1"), value.encode("latin-1")) for key, value in headers.items()],
        "client": client,
    }
    return Request(scope)


def test_sanitize_metadata_redacts_nested_secrets() -> None:
    occurred = datetime(2024, 1, 1, tzinfo=timezone.utc)
    cleaned = sanitize_metadata(
        {
            "title": "Outage",
            "api_key": "idk_123",
            "nested": {"Authorization": "Bearer x", "card_number": "4242", "ok": 1},
            "items": [{"password": "p"}, occurred],
        }
    )
    assert cleaned == {
        "title": "Outage",
        "api_key": "[REDACTED]",
        "nested": {"Authorization": "[REDACTED]", "card_number": "[REDACTED]", "ok": 1},
        "items": [{"password": "[REDACTED]"}, occurred.isoformat()],
    }


def test_client_ip_prefers_first_forwarded_hop() -> None:
    request = _request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "X-Real-IP": "198.51.100.2"})
    assert client_ip(request) == "203.0.113.7"


def test_client_ip_falls_back_to_real_ip_then_peer() -> None:
    assert client_ip(_request({"X-Real-IP": " 198.51.100.2 "})) == "198.51.100.2"
    assert client_ip(_request({})) == "10.1.1.1"
    assert client_ip(_request({}, client=None)) is None


def test_request_context_reads_request_id_header() -> None:
    context = get_request_context(_request({"X-Request-Id": "req-1", "User-Agent": "pytest"}))
    assert context == {"request_id": "req-1", "ip_address": "10.1.1.1", "user_agent": "pytest"}
    assert get_request_context(None) == {"request_id": None, "ip_address": None, "user_agent": None}


def _entry(user_id: str, action: str, resource_type: str, occurred_at: datetime) -> AuditLogEntry:
    return AuditLogEntry(
        org_id="org-1",
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id="r-1",
        occurred_at=occurred_at,
    )


def test_summarize_events_groups_by_resource_user_action_and_day() -> None:
    day1 = datetime(2024, 3, 2, 9, tzinfo=timezone.utc)
    day0 = day1 - timedelta(days=1)
    entries = [
        _entry("alice", "create", "incident", day1),
        _entry("alice", "update", "incident", day1),
        _entry("bob", "update", "incident", day0),
        _entry("alice", "invite", "user", day0),
    ]
    report = summarize_events(entries)
    assert report["summary"] == {"incident": 3, "user": 1}
    assert report["top_users"][0] == {"user_id": "alice", "count": 3}
    assert report["top_actions"][0] == {"action": "update", "count": 2}
    assert report["timeline"] == [
        {"date": "2024-03-01", "count": 2},
        {"date": "2024-03-02", "count": 2},
    ]


def test_summarize_events_caps_top_lists() -> None:
    now = datetime(2024, 3, 2, tzinfo=timezone.utc)
    entries = [_entry(f"user-{index}", f"action-{index}", "incident", now) for index in range(15)]
    report = summarize_events(entries)
    assert len(report["top_users"]) == 10
    assert len(report["top_actions"]) == 10
