from __future__ import annotations

import asyncio
import logging

from incidentdesk.core.config import get_settings
from incidentdesk.services.notifications.email import EmailNotifier
from incidentdesk.services.notifications.events import IncidentNotification
from incidentdesk.services.notifications.slack import SlackNotifier


logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Fan incident events out to Slack and assignee e-mail.

    Delivery is best-effort: ``notify`` never raises, and the returned mapping
    only tells callers which channels accepted the message.
    """

    def __init__(
        self,
        *,
        slack: SlackNotifier | None = None,
        email: EmailNotifier | None = None,
        enabled: bool | None = None,
    ) -> None:
        self._slack = slack or SlackNotifier()
        self._email = email or EmailNotifier()
        self._enabled = get_settings().notifications_enabled if enabled is None else enabled

    async def notify(self, notification: IncidentNotification) -> dict[str, bool]:
        if not self._enabled:
            return {}
        labels: list[str] = ["slack"]
        calls = [self._slack.send_incident_notification(notification)]
        for recipient in notification.recipients:
            labels.append(f"email:{recipient}")
            calls.append(self._email.send_incident_notification(notification, recipient))
        results = await asyncio.gather(*calls, return_exceptions=True)

        outcome: dict[str, bool] = {}
        for label, result in zip(labels, results):
            if isinstance(result, BaseException):
                # Channel failures are logged and dropped; the incident write already committed.
                logger.warning(
                    "notification_channel_failed channel=%s incident_id=%s action=%s",
                    label,
                    notification.incident.id,
                    notification.action,
                    exc_info=result,
                )
                outcome[label] = False
            else:
                outcome[label] = bool(result)
        return outcome

    async def aclose(self) -> None:
        await self._slack.aclose()
        await self._email.aclose()
