"""Shared fixtures for bridge tests.

FakeBackend and FakeMessenger stand in for the agent server and the chat
platform, so every test runs in-process with no network or subprocess.
"""
from __future__ import annotations

import asyncio

import pytest

from bridge.backends import AgentBackend, PromptResult
from bridge.errors import BackendError
from bridge.gateway import AgentGateway
from bridge.queue import UserQueue
from bridge.router import CommandRouter
from bridge.sessions import SessionStore


class FakeBackend(AgentBackend):
    """Scriptable backend.

    `replies` is consumed in order by send(): a PromptResult is returned, an
    exception is raised. With no scripted reply the prompt is echoed back.
    Set `hold` to an asyncio.Event to keep send() in flight until it is set.
    """

    name = "fake"

    def __init__(self):
        self.created = 0
        self.sent: list[tuple[str | None, str]] = []
        self.aborted: list[str | None] = []
        self.destroyed: list[str] = []
        self.replies: list = []
        self.hold: asyncio.Event | None = None
        self.delay = 0.0
        self.remote_abort = False
        self.status: dict | Exception = {"status": "idle"}
        self.fail_destroy = False

    async def create(self) -> str:
        self.created += 1
        return f"sess-{self.created}"

    async def send(self, handle, prompt):
        self.sent.append((handle, prompt))
        if self.hold is not None:
            await self.hold.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        reply = self.replies.pop(0) if self.replies else PromptResult(text=f"echo: {prompt}")
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def abort(self, handle):
        self.aborted.append(handle)
        return self.remote_abort

    async def inspect(self, handle):
        if isinstance(self.status, Exception):
            raise self.status
        return self.status

    async def destroy(self, handle):
        self.destroyed.append(handle)
        if self.fail_destroy:
            raise BackendError("Server 500: cleanup failed")


class FakeMessenger:
    def __init__(self):
        self.replies: list[tuple[object, str]] = []
        self.pushes: list[tuple[str, str]] = []
        # push() raises on these call numbers (0-based)
        self.fail_pushes: set[int] = set()
        self._push_calls = 0

    async def reply(self, reply_ctx, text):
        self.replies.append((reply_ctx, text))

    async def push(self, user_id, text):
        call = self._push_calls
        self._push_calls += 1
        if call in self.fail_pushes:
            raise RuntimeError("push failed")
        self.pushes.append((user_id, text))


async def wait_until(predicate, timeout: float = 1.0):
    """Yield to the loop until predicate() holds."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def gateway(backend):
    return AgentGateway(backend, SessionStore(), timeout=5)


@pytest.fixture
def router(gateway, messenger):
    return CommandRouter(gateway, UserQueue(), messenger, chunk_limit=5000)
