import json
from datetime import datetime, timezone

import httpx
import pytest

from app.services.notifications import (
    EmailNotifier,
    NotificationError,
    NotificationKind,
    render_email,
)


def test_render_submitted_email_escapes_values() -> None:
    message = render_email(
        NotificationKind.APPLICATION_SUBMITTED,
        {"full_name": "Ana <script>", "application_id": "APP-1234ABCD"},
    )

    assert "APP-1234ABCD" in message.subject
    assert "Ana &lt;script&gt;" in message.html
    assert "<script>" not in message.html


def test_render_reminder_includes_progress_and_expiry() -> None:
    message = render_email(
        NotificationKind.APPLICATION_REMINDER,
        {
            "full_name": "Ana Reyes",
            "progress_percentage": 60,
            "current_step": "Business Location",
            "expiry_date": datetime(2024, 7, 1, tzinfo=timezone.utc),
        },
    )

    assert "60% complete" in message.html
    assert "Business Location" in message.html
    assert "July 01, 2024" in message.html


def test_render_status_update_for_rejection() -> None:
    message = render_email(
        NotificationKind.APPLICATION_STATUS_UPDATE,
        {
            "full_name": "Ana Reyes",
            "application_id": "APP-1",
            "status": "rejected",
            "is_rejected": True,
            "feedback": "Location outside coverage",
        },
    )

    assert "Rejected" in message.html
    assert "unable to proceed" in message.html
    assert "Location outside coverage" in message.html


def test_render_status_update_for_approval() -> None:
    message = render_email(
        NotificationKind.APPLICATION_STATUS_UPDATE,
        {"full_name": "Ana Reyes", "application_id": "APP-1", "status": "approved", "is_approved": True},
    )

    assert "Approved" in message.html
    assert "onboarding team will contact you" in message.html
    assert "unable to proceed" not in message.html


def test_render_requires_template_data() -> None:
    with pytest.raises(NotificationError):
        render_email(NotificationKind.ONBOARDING_WELCOME, {"full_name": "Ana"})


@pytest.mark.asyncio
async def test_send_posts_to_email_api() -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={"id": "msg-1"})

    notifier = EmailNotifier(
        api_url="https://mail.test/emails",
        api_key="key-123",
        from_address="noreply@test",
        transport=httpx.MockTransport(handler),
    )

    sent = await notifier.send(
        NotificationKind.APPLICATION_SUBMITTED,
        "a@x.com",
        {"full_name": "Ana Reyes", "application_id": "APP-1"},
    )

    assert sent is True
    request = captured[0]
    assert request.headers["authorization"] == "Bearer key-123"
    body = json.loads(request.content)
    assert body["to"] == ["a@x.com"]
    assert body["from"] == "noreply@test"
    assert "APP-1" in body["subject"]


@pytest.mark.asyncio
async def test_send_reports_http_failure() -> None:
    notifier = EmailNotifier(
        api_url="https://mail.test/emails",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )

    sent = await notifier.send(
        NotificationKind.APPLICATION_SUBMITTED,
        "a@x.com",
        {"full_name": "Ana Reyes", "application_id": "APP-1"},
    )

    assert sent is False


@pytest.mark.asyncio
async def test_send_skips_when_data_missing_or_unconfigured() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    configured = EmailNotifier(api_url="https://mail.test/emails", transport=httpx.MockTransport(handler))
    unconfigured = EmailNotifier(api_url="", transport=httpx.MockTransport(handler))
    data = {"full_name": "Ana Reyes", "application_id": "APP-1"}

    assert await configured.send(NotificationKind.APPLICATION_SUBMITTED, "a@x.com", {}) is False
    assert await unconfigured.send(NotificationKind.APPLICATION_SUBMITTED, "a@x.com", data) is False
