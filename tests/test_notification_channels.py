"""Tests for the NotifyX, webhook and email channels and protocol conformance."""

import json

import httpx
import pytest

from keepalive.notifications.channels import NotificationChannel
from keepalive.notifications.email_channel import EmailChannel
from keepalive.notifications.models import AlertPayload, NotificationSettings
from keepalive.notifications.notifyx_channel import NotifyXChannel, build_notifyx_body
from keepalive.notifications.webhook_channel import WebhookChannel
from keepalive.transport import HttpTransport

# -- Helpers -----------------------------------------------------------------


def _transport(handler) -> HttpTransport:
    return HttpTransport(httpx.AsyncClient(transport=httpx.MockTransport(handler)))


def _recording(status: int = 200, text: str = "ok"):
    """Handler returning *status* and remembering every request."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status, text=text)

    return handler, seen


def _payload() -> AlertPayload:
    return AlertPayload(
        kind="failure",
        task_id="task1",
        task_name="API health",
        task_type="keepalive",
        title="Task failed: API health",
        message="It broke",
        priority="high",
        timestamp="2025-06-01T09:00:00+00:00",
        error="HTTP 500: Internal Server Error",
    )


def _settings(**kwargs) -> NotificationSettings:
    return NotificationSettings(id="s1", user_id="user1", **kwargs)


# -- Protocol conformance ---------------------------------------------------


@pytest.mark.parametrize("cls", [NotifyXChannel, WebhookChannel, EmailChannel])
def test_channels_satisfy_protocol(cls) -> None:
    assert isinstance(cls(), NotificationChannel)


def test_channel_names() -> None:
    assert [c().name for c in (NotifyXChannel, WebhookChannel, EmailChannel)] == [
        "notifyx",
        "webhook",
        "email",
    ]


# -- NotifyX ----------------------------------------------------------------


def test_build_notifyx_body_omits_empty_routing() -> None:
    assert build_notifyx_body("T", "M") == {"title": "T", "message": "M", "priority": "normal"}
    body = build_notifyx_body("T", "M", priority="high", channel_id="ops", recipients=["a"])
    assert body["channel_id"] == "ops"
    assert body["recipients"] == ["a"]


async def test_notifyx_send_posts_with_bearer_key() -> None:
    handler, seen = _recording()
    ch = NotifyXChannel(_transport(handler), api_url="https://notifyx.test/v1/send")

    result = await ch.send(_settings(notifyx_enabled=True, notifyx_api_key=" nx-key "), _payload())

    assert result.success is True
    assert result.status_code == 200
    request = seen[0]
    assert str(request.url) == "https://notifyx.test/v1/send"
    assert request.headers["Authorization"] == "Bearer nx-key"
    body = json.loads(request.content)
    assert body == {"title": "Task failed: API health", "message": "It broke", "priority": "high"}


async def test_notifyx_http_error_message() -> None:
    handler, _ = _recording(status=401, text="bad key")
    ch = NotifyXChannel(_transport(handler))

    result = await ch.send_payload("nx-key", build_notifyx_body("T", "M"))

    assert result.success is False
    assert result.status_code == 401
    assert result.error == "Notification delivery failed: HTTP 401 - bad key"


async def test_notifyx_without_key_skips_request() -> None:
    handler, seen = _recording()
    ch = NotifyXChannel(_transport(handler))

    result = await ch.send(_settings(notifyx_enabled=True), _payload())

    assert result.success is False
    assert "api_key" in result.error
    assert seen == []


async def test_notifyx_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    ch = NotifyXChannel(_transport(handler))
    result = await ch.send_payload("nx-key", build_notifyx_body("T", "M"))

    assert result.success is False
    assert result.status_code is None
    assert "connection refused" in result.error


# -- Webhook ------------------------------------------------------------------


async def test_webhook_posts_payload_json() -> None:
    handler, seen = _recording(status=204, text="")
    ch = WebhookChannel(_transport(handler))

    result = await ch.send(_settings(webhook_url="https://hooks.example.com/alerts"), _payload())

    assert result.success is True
    body = json.loads(seen[0].content)
    assert body["event"] == "task.failure"
    assert body["task_id"] == "task1"
    assert body["error"] == "HTTP 500: Internal Server Error"


async def test_webhook_invalid_url() -> None:
    handler, seen = _recording()
    ch = WebhookChannel(_transport(handler))

    result = await ch.send(_settings(webhook_url="not a url"), _payload())

    assert result.success is False
    assert seen == []


async def test_webhook_server_error() -> None:
    handler, _ = _recording(status=502)
    ch = WebhookChannel(_transport(handler))

    result = await ch.send(_settings(webhook_url="https://hooks.example.com/alerts"), _payload())

    assert result.success is False
    assert result.error == "HTTP 502: Bad Gateway"


# -- Email --------------------------------------------------------------------


async def test_email_sends_through_api() -> None:
    handler, seen = _recording()
    ch = EmailChannel(
        _transport(handler), api_url="https://mail.test/emails", from_address="alerts@test"
    )

    result = await ch.send(
        _settings(email_address="ops@example.com", email_api_key="re_123"), _payload()
    )

    assert result.success is True
    request = seen[0]
    assert request.headers["Authorization"] == "Bearer re_123"
    body = json.loads(request.content)
    assert body == {
        "from": "alerts@test",
        "to": ["ops@example.com"],
        "subject": "Task failed: API health",
        "text": "It broke",
    }


async def test_email_missing_credentials() -> None:
    handler, seen = _recording()
    ch = EmailChannel(_transport(handler))

    result = await ch.send(_settings(email_address="ops@example.com"), _payload())

    assert result.success is False
    assert "api_key" in result.error
    assert seen == []
