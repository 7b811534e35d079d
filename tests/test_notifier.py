"""Tests for the outbound automation notifier."""

import json

import httpx
import pytest

from notifier import OutboundNotifier

URL = "https://automation.example/webhook/relay"


@pytest.mark.asyncio
async def test_posts_json_payload():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((str(request.url), json.loads(request.content)))
        return httpx.Response(200, json={"ok": True})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        notifier = OutboundNotifier(client, URL)
        assert await notifier.notify({"sessionId": "9198765", "body": "hi"}) is True

    assert seen == [(URL, {"sessionId": "9198765", "body": "hi"})]


@pytest.mark.asyncio
async def test_error_status_is_swallowed():
    transport = httpx.MockTransport(lambda request: httpx.Response(502))
    async with httpx.AsyncClient(transport=transport) as client:
        assert await OutboundNotifier(client, URL).notify({"sessionId": "1"}) is False


@pytest.mark.asyncio
async def test_connection_error_is_swallowed():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        assert await OutboundNotifier(client, URL).notify({"sessionId": "1"}) is False


@pytest.mark.asyncio
async def test_disabled_without_url():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        notifier = OutboundNotifier(client, None)
        assert notifier.enabled is False
        assert await notifier.notify({"sessionId": "1"}) is False

    assert calls == []


@pytest.mark.asyncio
async def test_malformed_url_is_swallowed():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        notifier = OutboundNotifier(client, "http://[::1")
        assert notifier.enabled is True
        assert await notifier.notify({"sessionId": "1"}) is False

    assert calls == []
