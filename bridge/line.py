"""LINE Messaging API webhook served with FastAPI."""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from bridge.backends import AgentBackend
from bridge.config import LINE_CHANNEL_ACCESS_TOKEN, LINE_CHANNEL_SECRET, LINE_MAX_TEXT
from bridge.context import BridgeContext

logger = logging.getLogger(__name__)

LINE_API_URL = "https://api.line.me/v2/bot/message"


def validate_signature(body: bytes, signature: str, channel_secret: str) -> bool:
    """Check the X-Line-Signature header: base64 HMAC-SHA256 of the raw body."""
    digest = hmac.new(channel_secret.encode(), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode()
    return hmac.compare_digest(expected, signature)


class LineMessenger:
    def __init__(
        self,
        access_token: str = LINE_CHANNEL_ACCESS_TOKEN,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=LINE_API_URL,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=15.0,
            transport=transport,
        )

    async def _post(self, path: str, payload: dict):
        resp = await self._client.post(path, json=payload)
        resp.raise_for_status()

    async def reply(self, reply_token: str, text: str):
        await self._post("/reply", {
            "replyToken": reply_token,
            "messages": [{"type": "text", "text": text}],
        })

    async def push(self, user_id: str, text: str):
        await self._post("/push", {
            "to": user_id,
            "messages": [{"type": "text", "text": text}],
        })

    async def aclose(self):
        await self._client.aclose()


def _text_events(payload: dict) -> list[tuple[str, str, str | None]]:
    """Return (user_id, text, reply_token) for each user text message in a webhook body.

    Raises ValueError when the body does not have the webhook event shape.
    """
    events = payload.get("events") or []
    if not isinstance(events, list):
        raise ValueError("events must be a list")

    found = []
    for event in events:
        if not isinstance(event, dict):
            raise ValueError("event must be an object")
        source = event.get("source") or {}
        message = event.get("message") or {}
        if not isinstance(source, dict) or not isinstance(message, dict):
            raise ValueError("event source and message must be objects")
        if event.get("type") != "message" or message.get("type") != "text":
            continue
        user_id = source.get("userId")
        text = message.get("text", "")
        if not isinstance(user_id, str) or not user_id or not isinstance(text, str):
            continue
        found.append((user_id, text, event.get("replyToken")))
    return found


def create_app(
    context: BridgeContext,
    messenger: LineMessenger | None = None,
    channel_secret: str = LINE_CHANNEL_SECRET,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await context.aclose()
        if messenger is not None:
            await messenger.aclose()

    app = FastAPI(title="Agent bridge", description="LINE webhook for the agent bridge", lifespan=lifespan)
    app.state.context = context

    @app.get("/", response_class=PlainTextResponse)
    async def health():
        return "Agent bridge is running"

    @app.post("/webhook", response_class=PlainTextResponse)
    async def webhook(request: Request):
        body = await request.body()
        signature = request.headers.get("x-line-signature", "")

        if not validate_signature(body, signature, channel_secret):
            logger.error("Invalid LINE signature")
            return PlainTextResponse("Invalid signature", status_code=403)

        try:
            payload = json.loads(body)
        except ValueError:
            return PlainTextResponse("Invalid JSON", status_code=400)
        if not isinstance(payload, dict):
            return PlainTextResponse("Invalid JSON", status_code=400)
        try:
            events = _text_events(payload)
        except ValueError as e:
            logger.error("Malformed webhook body: %s", e)
            return PlainTextResponse("Invalid JSON", status_code=400)

        # Acknowledge right away; the router runs each message in its own task
        for user_id, text, reply_token in events:
            context.router.on_text_message(user_id, text, reply_token)

        return "OK"

    return app


def build_app(backend: AgentBackend | None = None) -> FastAPI:
    messenger = LineMessenger()
    context = BridgeContext.build(messenger, backend=backend, chunk_limit=LINE_MAX_TEXT)
    return create_app(context, messenger)
