from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
from fakeredis import FakeAsyncRedis

from chat_notifier.services.presence import RedisPresenceOracle
from chat_notifier.services.sender import TEMPLATE_CHAT_NEW_MESSAGE, HttpMessageSender


def _send_with(handler, **sender_kwargs: Any) -> bool:
    async def run() -> bool:
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport) as client:
            sender = HttpMessageSender("http://mailer.local/", client=client, **sender_kwargs)
            return await sender.send("seeker@example.com", TEMPLATE_CHAT_NEW_MESSAGE, {"username": "sam"})

    return asyncio.run(run())


def test_sender_posts_template_request_to_mailer() -> None:
    captured: dict[str, Any] = {}

    async def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["api_key"] = request.headers.get("X-API-Key")
        captured["body"] = json.loads(request.content)
        return httpx.Response(status_code=202, request=request)

    assert _send_with(handler, api_key="mailer-key") is True
    assert captured["url"] == "http://mailer.local/messages"
    assert captured["api_key"] == "mailer-key"
    assert captured["body"] == {
        "to": "seeker@example.com",
        "template": TEMPLATE_CHAT_NEW_MESSAGE,
        "params": {"username": "sam"},
    }


def test_sender_reports_mailer_errors_as_failure() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code=503, request=request)

    assert _send_with(handler) is False


def test_sender_reports_transport_errors_as_failure() -> None:
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    assert _send_with(handler) is False


def test_presence_follows_gateway_socket_keys(redis: FakeAsyncRedis) -> None:
    oracle = RedisPresenceOracle(redis, key_prefix="socket")

    async def scenario() -> tuple[bool, bool, bool]:
        before = await oracle.is_online("seeker-1")
        await redis.set("socket:seeker-1", "sid-123", ex=3600)
        during = await oracle.is_online("seeker-1")
        await redis.delete("socket:seeker-1")
        return before, during, await oracle.is_online("seeker-1")

    assert asyncio.run(scenario()) == (False, True, False)
