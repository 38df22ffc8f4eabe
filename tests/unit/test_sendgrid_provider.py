from __future__ import annotations

import asyncio
import json

import httpx

from leadpitch.providers.sendgrid import SENDGRID_API_URL, SendGridSender


def _send(sender: SendGridSender, **overrides):
    kwargs = dict(
        to="ann@example.com",
        from_email="team@example.com",
        from_name="Team",
        subject="Hello",
        html="<p>Hi</p>",
        text="Hi",
    )
    kwargs.update(overrides)

    async def run():
        async with sender:
            return await sender.send(**kwargs)

    return asyncio.run(run())


def test_send_success_posts_v3_payload_and_reads_message_id():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(202, headers={"X-Message-Id": "abc123"})

    sender = SendGridSender(api_key="SG.key", transport=httpx.MockTransport(handler))
    result = _send(sender, reply_to="reply@example.com")

    assert result.success and result.message_id == "abc123"
    request = seen[0]
    assert str(request.url) == SENDGRID_API_URL
    assert request.headers["Authorization"] == "Bearer SG.key"
    body = json.loads(request.content)
    assert body["personalizations"] == [{"to": [{"email": "ann@example.com"}]}]
    assert body["from"] == {"email": "team@example.com", "name": "Team"}
    assert body["reply_to"] == {"email": "reply@example.com"}
    assert [c["type"] for c in body["content"]] == ["text/plain", "text/html"]


def test_api_error_message_is_extracted():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"errors": [{"message": "Invalid from address"}]})

    result = _send(SendGridSender(api_key="k", transport=httpx.MockTransport(handler)))
    assert not result.success
    assert result.error == "Invalid from address"


def test_api_error_without_body_uses_status():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    result = _send(SendGridSender(api_key="k", transport=httpx.MockTransport(handler)))
    assert result.error == "SendGrid API error: 503"


def test_transport_error_does_not_raise():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    result = _send(SendGridSender(api_key="k", transport=httpx.MockTransport(handler)))
    assert not result.success
    assert "connection refused" in result.error


def test_missing_key_or_fields_short_circuit():
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(202)

    no_key = _send(SendGridSender(api_key="  ", transport=httpx.MockTransport(handler)))
    assert no_key.error == "SendGrid API key not configured"
    no_to = _send(SendGridSender(api_key="k", transport=httpx.MockTransport(handler)), to="")
    assert "Missing required fields" in no_to.error
    assert calls == []


def test_validate_api_key():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200 if request.headers["Authorization"] == "Bearer good" else 401)

    async def run(key: str) -> bool:
        async with SendGridSender(api_key=key, transport=httpx.MockTransport(handler)) as sender:
            return await sender.validate_api_key()

    assert asyncio.run(run("good")) is True
    assert asyncio.run(run("bad")) is False
    assert asyncio.run(run("")) is False
