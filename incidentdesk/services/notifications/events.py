from __future__ import annotations

from dataclasses import dataclass

from incidentdesk.domain.incidents import IncidentSnapshot


ACTION_CREATED = "created"
ACTION_UPDATED = "updated"
ACTION_RESOLVED = "resolved"
ACTION_ESCALATED = "escalated"
NOTIFICATION_ACTIONS = (ACTION_CREATED, ACTION_UPDATED, ACTION_RESOLVED, ACTION_ESCALATED)


@dataclass(frozen=True)
class NotificationActor:
    name: str
    email: str


@dataclass(frozen=True)
class IncidentNotification:
    # One lifecycle event fanned out to every configured channel.
    incident: IncidentSnapshot
    action: str
    actor: NotificationActor
    org_name: str
    # Assignee e-mail addresses; empty means Slack only.
    recipients: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.action not in NOTIFICATION_ACTIONS:
            raise ValueError(f"Unsupported notification action: {self.action}")


def incident_url(base_url: str, incident: IncidentSnapshot) -> str:
    return f"{base_url.rstrip('/')}/dashboard/{incident.org_id}/incidents/{incident.id}"
