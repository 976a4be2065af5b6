from incidentdesk.services.notifications.dispatcher import NotificationDispatcher
from incidentdesk.services.notifications.email import EmailNotifier, EmailTemplate, build_email_template
from incidentdesk.services.notifications.events import (
    ACTION_CREATED,
    ACTION_ESCALATED,
    ACTION_RESOLVED,
    ACTION_UPDATED,
    IncidentNotification,
    NotificationActor,
)
from incidentdesk.services.notifications.slack import SlackNotifier

__all__ = [
    "NotificationDispatcher",
    "SlackNotifier",
    "EmailNotifier",
    "EmailTemplate",
    "build_email_template",
    "IncidentNotification",
    "NotificationActor",
    "ACTION_CREATED",
    "ACTION_UPDATED",
    "ACTION_RESOLVED",
    "ACTION_ESCALATED",
]
