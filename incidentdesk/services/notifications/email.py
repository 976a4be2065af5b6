from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from pathlib import Path

import httpx
from jinja2 import Environment, FileSystemLoader, StrictUndefined, select_autoescape

from incidentdesk.core.config import get_settings
from incidentdesk.services.notifications.events import IncidentNotification, incident_url


logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"
RESEND_URL = "https://api.resend.com/emails"
SENDER_NAME = "incidentdesk"

TEMPLATES_DIR = Path(__file__).parent / "templates"
HTML_TEMPLATE = "incident_email.html"
TEXT_TEMPLATE = "incident_email.txt"

SEVERITY_COLORS = {"P1": "#dc2626", "P2": "#ea580c", "P3": "#ca8a04", "P4": "#2563eb"}
STATUS_BADGES = {
    "open": ("#dc2626", "Open"),
    "acknowledged": ("#ca8a04", "Acknowledged"),
    "investigating": ("#2563eb", "Investigating"),
    "resolved": ("#16a34a", "Resolved"),
    "closed": ("#6b7280", "Closed"),
}


@dataclass(frozen=True)
class EmailTemplate:
    subject: str
    html: str
    text: str


def _format_utc(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M UTC")


_TEMPLATES = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(enabled_extensions=("html",)),
    undefined=StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
)
_TEMPLATES.filters["utc"] = _format_utc


def build_email_template(notification: IncidentNotification, *, recipient: str, base_url: str) -> EmailTemplate:
    """Render the subject plus HTML and plain-text bodies for one recipient.

    The HTML body is autoescaped; incident titles and descriptions are user
    input.
    """
    incident = notification.incident
    subject = f"[{incident.severity}] Incident {notification.action}: {incident.title}"
    status_color, status_text = STATUS_BADGES.get(incident.status, ("#6b7280", incident.status))
    context = {
        "subject": subject,
        "incident": incident,
        "actor": notification.actor,
        "org_name": notification.org_name,
        "recipient": recipient,
        "url": incident_url(base_url, incident),
        "severity_color": SEVERITY_COLORS.get(incident.severity, "#6b7280"),
        "status_color": status_color,
        "status_text": status_text,
    }
    return EmailTemplate(
        subject=subject,
        html=_TEMPLATES.get_template(HTML_TEMPLATE).render(**context),
        text=_TEMPLATES.get_template(TEXT_TEMPLATE).render(**context),
    )


class EmailNotifier:
    """Send incident e-mails through SendGrid or Resend.

    SendGrid is used whenever its key is configured; otherwise Resend. With
    neither key the notifier reports itself unconfigured and sends nothing.
    """

    def __init__(
        self,
        *,
        sendgrid_api_key: str | None = None,
        resend_api_key: str | None = None,
        from_email: str | None = None,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        settings = get_settings()
        sendgrid_key = sendgrid_api_key if sendgrid_api_key is not None else settings.sendgrid_api_key
        resend_key = resend_api_key if resend_api_key is not None else settings.resend_api_key
        self.provider = "sendgrid" if sendgrid_key else "resend"
        self._api_key = sendgrid_key or resend_key
        self._from_email = from_email or settings.email_from
        self._base_url = base_url or settings.app_base_url
        self._timeout_s = max(0.2, settings.ext_call_timeout_ms / 1000.0)
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        self._client = httpx.AsyncClient(timeout=self._timeout_s)
        return self._client

    def _request(self, to: str, template: EmailTemplate) -> tuple[str, dict]:
        if self.provider == "sendgrid":
            return SENDGRID_URL, {
                "personalizations": [{"to": [{"email": to}]}],
                "from": {"email": self._from_email, "name": SENDER_NAME},
                "subject": template.subject,
                "content": [
                    {"type": "text/plain", "value": template.text},
                    {"type": "text/html", "value": template.html},
                ],
            }
        return RESEND_URL, {
            "from": f"{SENDER_NAME} <{self._from_email}>",
            "to": [to],
            "subject": template.subject,
            "text": template.text,
            "html": template.html,
        }

    async def send_incident_notification(self, notification: IncidentNotification, recipient: str) -> bool:
        if not self._api_key:
            logger.debug("email_notification_skipped reason=not_configured")
            return False
        template = build_email_template(notification, recipient=recipient, base_url=self._base_url)
        url, payload = self._request(recipient, template)
        try:
            response = await self._get_client().post(
                url,
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "email_notification_failed provider=%s incident_id=%s",
                self.provider,
                notification.incident.id,
                exc_info=exc,
            )
            return False
        logger.info(
            "email_notification_sent provider=%s incident_id=%s",
            self.provider,
            notification.incident.id,
        )
        return True

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
