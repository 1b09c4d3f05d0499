"""Transactional email for the application lifecycle.

Messages are rendered from small ``string.Template`` bodies and handed to the
configured email API over HTTP. Sending never raises: a failed notification is
logged and reported as ``False`` so callers can carry on.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from string import Template
from typing import Any, Mapping, Protocol

import httpx

from app.core.context import applicant_reference
from app.core.settings import settings

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    APPLICATION_SUBMITTED = "application-submitted"
    APPLICATION_REMINDER = "application-reminder"
    APPLICATION_STATUS_UPDATE = "application-status-update"
    ONBOARDING_WELCOME = "onboarding-welcome"


REQUIRED_FIELDS: dict[NotificationKind, tuple[str, ...]] = {
    NotificationKind.APPLICATION_SUBMITTED: ("full_name", "application_id"),
    NotificationKind.APPLICATION_REMINDER: ("full_name", "progress_percentage", "current_step"),
    NotificationKind.APPLICATION_STATUS_UPDATE: ("full_name", "application_id", "status"),
    NotificationKind.ONBOARDING_WELCOME: ("full_name", "agent_id", "username"),
}

_TEMPLATES: dict[NotificationKind, tuple[Template, Template]] = {
    NotificationKind.APPLICATION_SUBMITTED: (
        Template("Your PlataPay agent application $application_id was received"),
        Template(
            "<p>Hi $full_name,</p>"
            "<p>We received your agent application <strong>$application_id</strong>. "
            "Our team will review it and get back to you.</p>"
            '<p><a href="$portal_url/dashboard">Track your application</a></p>'
        ),
    ),
    NotificationKind.APPLICATION_REMINDER: (
        Template("Finish your PlataPay agent application"),
        Template(
            "<p>Hi $full_name,</p>"
            "<p>Your application is $progress_percentage% complete. "
            "Next up: <strong>$current_step</strong>.</p>"
            "<p>$expiry_line</p>"
            '<p><a href="$portal_url/register">Continue your application</a></p>'
        ),
    ),
    NotificationKind.APPLICATION_STATUS_UPDATE: (
        Template("Update on your PlataPay agent application $application_id"),
        Template(
            "<p>Hi $full_name,</p>"
            "<p>Your application <strong>$application_id</strong> is now "
            "<strong>$status_label</strong>.</p>"
            "<p>$outcome_line</p>"
            "<p>$feedback</p>"
        ),
    ),
    NotificationKind.ONBOARDING_WELCOME: (
        Template("Welcome to PlataPay, $full_name"),
        Template(
            "<p>Hi $full_name,</p>"
            "<p>Your agent ID is <strong>$agent_id</strong> and your username is "
            "<strong>$username</strong>.</p>"
            '<p><a href="$portal_url/dashboard">Open your agent dashboard</a></p>'
        ),
    ),
}


class NotificationError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class RenderedEmail:
    subject: str
    html: str


class NotificationTrigger(Protocol):
    async def send(
        self, kind: NotificationKind, recipient_email: str, template_data: Mapping[str, Any]
    ) -> bool: ...


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime("%B %d, %Y")
    if isinstance(value, date):
        return value.strftime("%B %d, %Y")
    return str(value)


def _derived_fields(kind: NotificationKind, data: Mapping[str, Any]) -> dict[str, Any]:
    derived: dict[str, Any] = {"portal_url": settings.portal_base_url.rstrip("/")}
    if kind is NotificationKind.APPLICATION_REMINDER:
        expiry = data.get("expiry_date")
        derived["expiry_line"] = (
            f"Your saved progress is kept until {_format_value(expiry)}." if expiry else ""
        )
    if kind is NotificationKind.APPLICATION_STATUS_UPDATE:
        derived["status_label"] = str(data.get("status", "")).replace("_", " ").title()
        if data.get("is_approved"):
            derived["outcome_line"] = "Congratulations! Our onboarding team will contact you shortly."
        elif data.get("is_rejected"):
            derived["outcome_line"] = "Unfortunately we are unable to proceed with your application."
        else:
            derived["outcome_line"] = ""
        derived.setdefault("feedback", data.get("feedback") or "")
    return derived


def render_email(kind: NotificationKind, template_data: Mapping[str, Any]) -> RenderedEmail:
    missing = [key for key in REQUIRED_FIELDS[kind] if template_data.get(key) in (None, "")]
    if missing:
        raise NotificationError(f"Missing template data for {kind.value}: {', '.join(missing)}")
    values = {**_derived_fields(kind, template_data), **template_data}
    escaped = {key: html.escape(_format_value(value)) for key, value in values.items()}
    subject_template, body_template = _TEMPLATES[kind]
    return RenderedEmail(
        subject=subject_template.safe_substitute({k: _format_value(v) for k, v in values.items()}),
        html=body_template.safe_substitute(escaped),
    )


class EmailNotifier:
    def __init__(
        self,
        *,
        api_url: str | None = None,
        api_key: str | None = None,
        from_address: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_url = api_url if api_url is not None else settings.email_api_url
        self.api_key = api_key if api_key is not None else settings.email_api_key
        self.from_address = from_address or settings.email_from_address
        self.timeout_seconds = timeout_seconds or settings.email_timeout_seconds
        self._transport = transport

    async def send(
        self, kind: NotificationKind, recipient_email: str, template_data: Mapping[str, Any]
    ) -> bool:
        kind = NotificationKind(kind)
        recipient_ref = applicant_reference(recipient_email)
        try:
            message = render_email(kind, template_data)
        except NotificationError as exc:
            logger.warning("Skipping %s email for %s: %s", kind.value, recipient_ref, exc)
            return False

        if not self.api_url:
            logger.info("Email delivery disabled; %s email for %s not sent", kind.value, recipient_ref)
            return False

        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        payload = {
            "from": self.from_address,
            "to": [recipient_email],
            "subject": message.subject,
            "html": message.html,
            "tags": [{"name": "kind", "value": kind.value}],
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self._transport
            ) as client:
                response = await client.post(self.api_url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Failed to send %s email to %s: %s", kind.value, recipient_ref, exc)
            return False
        logger.info("Sent %s email to %s", kind.value, recipient_ref)
        return True
