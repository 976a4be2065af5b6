from __future__ import annotations

import logging
from typing import Any

import httpx

from incidentdesk.core.config import get_settings
from incidentdesk.services.notifications.events import IncidentNotification, incident_url


logger = logging.getLogger(__name__)

SEVERITY_EMOJI = {"P1": ":rotating_light:", "P2": ":warning:", "P3": ":zap:", "P4": ":memo:"}
ACTION_EMOJI = {
    "created": ":new:",
    "updated": ":arrows_counterclockwise:",
    "resolved": ":white_check_mark:",
    "escalated": ":arrow_up:",
}
_CLOSED_STATUSES = {"resolved", "closed"}


class SlackNotifier:
    """Post incident events to a Slack incoming webhook as Block Kit messages."""

    def __init__(
        self,
        webhook_url: str | None = None,
        *,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        settings = get_settings()
        self._webhook_url = webhook_url if webhook_url is not None else settings.slack_webhook_url
        self._base_url = base_url or settings.app_base_url
        self._timeout_s = max(0.2, settings.ext_call_timeout_ms / 1000.0)
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self._webhook_url)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse a single client per notifier for connection pooling.
        self._client = httpx.AsyncClient(timeout=self._timeout_s)
        return self._client

    def build_incident_message(self, notification: IncidentNotification) -> dict[str, Any]:
        incident = notification.incident
        actor = notification.actor
        severity_emoji = SEVERITY_EMOJI.get(incident.severity, ":memo:")
        action_emoji = ACTION_EMOJI.get(notification.action, ":arrows_counterclockwise:")

        blocks: list[dict[str, Any]] = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": f"{severity_emoji} {incident.title}", "emoji": True},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Severity:* {incident.severity}"},
                    {"type": "mrkdwn", "text": f"*Status:* {incident.status.capitalize()}"},
                    {"type": "mrkdwn", "text": f"*Organization:* {notification.org_name}"},
                    {"type": "mrkdwn", "text": f"*Reporter:* {actor.name} ({actor.email})"},
                ],
            },
        ]
        if incident.description:
            blocks.append(
                {"type": "section", "text": {"type": "mrkdwn", "text": f"*Description:*\n{incident.description}"}}
            )
        if incident.status not in _CLOSED_STATUSES:
            blocks.append(
                {
                    "type": "actions",
                    "elements": [
                        {
                            "type": "button",
                            "text": {"type": "plain_text", "text": "View Incident", "emoji": True},
                            "url": incident_url(self._base_url, incident),
                            "style": "primary",
                        }
                    ],
                }
            )
        blocks.append({"type": "divider"})
        return {
            "text": f"{action_emoji} Incident {notification.action} by {actor.name}",
            "blocks": blocks,
        }

    async def send_incident_notification(self, notification: IncidentNotification) -> bool:
        # Unconfigured webhooks are a normal local setup, not an error.
        if not self._webhook_url:
            logger.debug("slack_notification_skipped reason=not_configured")
            return False
        message = self.build_incident_message(notification)
        try:
            response = await self._get_client().post(self._webhook_url, json=message)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "slack_notification_failed incident_id=%s action=%s",
                notification.incident.id,
                notification.action,
                exc_info=exc,
            )
            return False
        logger.info(
            "slack_notification_sent incident_id=%s action=%s",
            notification.incident.id,
            notification.action,
        )
        return True

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
