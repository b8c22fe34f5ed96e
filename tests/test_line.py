"""Tests for the LINE webhook app and LineMessenger."""
from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import json
from unittest.mock import MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

from bridge.context import BridgeContext
from bridge.line import LineMessenger, create_app, validate_signature

SECRET = "channel-secret"


def _sign(body: bytes, secret: str = SECRET) -> str:
    return base64.b64encode(hmac.new(secret.encode(), body, hashlib.sha256).digest()).decode()


@pytest.fixture
def context(backend, messenger):
    ctx = BridgeContext.build(messenger, backend=backend)
    ctx.router.on_text_message = MagicMock()
    return ctx


@pytest.fixture
def client(context):
    return TestClient(create_app(context, channel_secret=SECRET))


def _post(client, payload, signature: str | None = None):
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    return client.post(
        "/webhook",
        content=body,
        headers={"x-line-signature": signature if signature is not None else _sign(body)},
    )


class TestSignature:
    def test_valid(self):
        body = b'{"events": []}'
        assert validate_signature(body, _sign(body), SECRET)

    def test_wrong_secret(self):
        body = b'{"events": []}'
        assert not validate_signature(body, _sign(body, "other"), SECRET)

    def test_tampered_body(self):
        assert not validate_signature(b'{"events": [1]}', _sign(b'{"events": []}'), SECRET)


class TestWebhook:
    def test_health(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert "running" in resp.text

    def test_bad_signature_rejected(self, client, context):
        resp = _post(client, {"events": []}, signature="bogus")
        assert resp.status_code == 403
        context.router.on_text_message.assert_not_called()

    def test_missing_signature_rejected(self, client):
        resp = client.post("/webhook", content=b'{"events": []}')
        assert resp.status_code == 403

    def test_invalid_json(self, client):
        resp = _post(client, b"{not json")
        assert resp.status_code == 400

    def test_text_events_dispatched(self, client, context):
        payload = {
            "events": [
                {
                    "type": "message",
                    "replyToken": "tok-1",
                    "source": {"userId": "U123"},
                    "message": {"type": "text", "text": "hello"},
                },
                {
                    "type": "message",
                    "replyToken": "tok-2",
                    "source": {"userId": "U123"},
                    "message": {"type": "sticker", "packageId": "1"},
                },
                {
                    "type": "message",
                    "replyToken": "tok-3",
                    "source": {"type": "group"},
                    "message": {"type": "text", "text": "no user"},
                },
                {"type": "follow", "replyToken": "tok-4", "source": {"userId": "U123"}},
            ],
        }
        resp = _post(client, payload)

        assert resp.status_code == 200
        assert resp.text == "OK"
        context.router.on_text_message.assert_called_once_with("U123", "hello", "tok-1")

    @pytest.mark.parametrize("payload", [
        {"events": 5},
        {"events": ["not an event"]},
        {"events": [{"type": "message", "source": "x", "message": {"type": "text", "text": "hi"}}]},
        {"events": [{"type": "message", "source": {"userId": "U1"}, "message": "hi"}]},
    ])
    def test_malformed_events_rejected(self, client, context, payload):
        resp = _post(client, payload)
        assert resp.status_code == 400
        context.router.on_text_message.assert_not_called()

    def test_empty_events(self, client, context):
        resp = _post(client, {"events": []})
        assert resp.status_code == 200
        context.router.on_text_message.assert_not_called()


class TestLineMessenger:
    def _messenger(self, requests: list):
        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={})

        return LineMessenger(access_token="line-token", transport=httpx.MockTransport(handler))

    def test_reply(self):
        requests = []
        messenger = self._messenger(requests)

        async def main():
            await messenger.reply("tok", "hi")
            await messenger.aclose()

        asyncio.run(main())
        (req,) = requests
        assert req.url.path == "/v2/bot/message/reply"
        assert req.headers["authorization"] == "Bearer line-token"
        assert json.loads(req.content) == {"replyToken": "tok", "messages": [{"type": "text", "text": "hi"}]}

    def test_push(self):
        requests = []
        messenger = self._messenger(requests)

        async def main():
            await messenger.push("U1", "chunk")
            await messenger.aclose()

        asyncio.run(main())
        (req,) = requests
        assert req.url.path == "/v2/bot/message/push"
        assert json.loads(req.content) == {"to": "U1", "messages": [{"type": "text", "text": "chunk"}]}

    def test_push_error_raises(self):
        def handler(request):
            return httpx.Response(429, json={"message": "rate limited"})

        messenger = LineMessenger(access_token="t", transport=httpx.MockTransport(handler))

        async def main():
            try:
                await messenger.push("U1", "x")
            finally:
                await messenger.aclose()

        with pytest.raises(httpx.HTTPStatusError):
            asyncio.run(main())
