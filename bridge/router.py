"""Inbound text dispatch: control commands are answered directly, prompts are queued."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from bridge.backends import PromptResult
from bridge.chunking import segment
from bridge.config import ERROR_PREVIEW_CHARS, LINE_MAX_TEXT
from bridge.errors import BridgeError, PromptAborted
from bridge.gateway import AgentGateway
from bridge.queue import UserQueue
from bridge.transport import Messenger

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "Agent bridge ready. Messages go to the agent.\n\n"
    "/new: start a fresh session\n"
    "/abort: cancel the running prompt\n"
    "/sessions: current session info\n"
    "/cost: cost of this session\n"
    "/help: this message"
)

CommandHandler = Callable[[str, Any], Awaitable[None]]


def format_response(result: PromptResult) -> str:
    if result.is_error:
        return f"Error: {result.text}"
    text = result.text
    if result.cost > 0:
        text += f"\n\n[cost: ${result.cost:.4f}]"
    return text


def format_error(exc: BaseException) -> str:
    message = str(exc) or type(exc).__name__
    return f"Error: {message[:ERROR_PREVIEW_CHARS]}"


class CommandRouter:
    def __init__(
        self,
        gateway: AgentGateway,
        queue: UserQueue,
        messenger: Messenger,
        *,
        chunk_limit: int = LINE_MAX_TEXT,
        allowed_user_ids: Iterable[str] = (),
    ):
        self.gateway = gateway
        self.queue = queue
        self.messenger = messenger
        self.chunk_limit = chunk_limit
        self.allowed_user_ids = set(allowed_user_ids)
        self._tasks: set[asyncio.Task] = set()
        self._commands: dict[str, CommandHandler] = {
            "/new": self._new,
            "/reset": self._new,
            "/abort": self._abort,
            "/sessions": self._sessions,
            "/status": self._sessions,
            "/cost": self._cost,
            "/help": self._help,
            "/start": self._help,
        }

    def is_authorized(self, user_id: str) -> bool:
        return not self.allowed_user_ids or user_id in self.allowed_user_ids

    def on_text_message(self, user_id: str, text: str, reply_ctx: Any) -> asyncio.Task:
        """Handle one inbound text without making the transport wait for it."""
        task = asyncio.create_task(self.dispatch(user_id, text, reply_ctx))
        self._tasks.add(task)
        task.add_done_callback(self._dispatch_done)
        return task

    def _dispatch_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Error handling message", exc_info=task.exception())

    async def dispatch(self, user_id: str, text: str, reply_ctx: Any) -> asyncio.Future | None:
        """Run a control command, or queue the text as a prompt.

        Returns the queued prompt's future, or None when nothing was queued.
        """
        if not self.is_authorized(user_id):
            logger.warning("Ignoring message from unauthorized user %s", user_id)
            return None
        if not text or not text.strip():
            return None

        logger.info("Message from %s: %s", user_id, text[:200])

        command = self._commands.get(text.strip().lower())
        if command is not None:
            await command(user_id, reply_ctx)
            return None

        return self.queue.submit(user_id, lambda: self._run_prompt(user_id, text))

    async def _run_prompt(self, user_id: str, text: str):
        try:
            result = await self.gateway.send_prompt(user_id, text)
        except PromptAborted:
            logger.info("[%s] Prompt was aborted, nothing to send", user_id[-8:])
            return
        except BridgeError as e:
            logger.error("[%s] Prompt error: %s", user_id[-8:], e)
            await self.send_message(user_id, format_error(e))
            return
        except Exception as e:
            logger.exception("[%s] Agent error", user_id[-8:])
            await self.send_message(user_id, format_error(e))
            return

        response = format_response(result)
        logger.info(
            "[%s] Response: %d chars, cost: $%.4f",
            user_id[-8:], len(response), result.cost,
        )
        await self.send_message(user_id, response)

    async def send_message(self, user_id: str, text: str) -> int:
        """Push `text` in platform-sized chunks. Returns how many were delivered."""
        delivered = 0
        for chunk in segment(text, self.chunk_limit):
            try:
                await self.messenger.push(user_id, chunk)
                delivered += 1
            except Exception:
                logger.exception("[%s] Failed to send message chunk", user_id[-8:])
        return delivered

    async def _reply(self, reply_ctx: Any, text: str):
        await self.messenger.reply(reply_ctx, text)

    async def _new(self, user_id: str, reply_ctx: Any):
        await self.gateway.reset(user_id)
        await self._reply(reply_ctx, "Session cleared. Next message starts a new session.")

    async def _abort(self, user_id: str, reply_ctx: Any):
        if await self.gateway.abort(user_id):
            await self._reply(reply_ctx, "Prompt cancelled.")
        else:
            await self._reply(reply_ctx, "No active prompt.")

    async def _sessions(self, user_id: str, reply_ctx: Any):
        info = await self.gateway.describe(user_id)
        if info is None:
            await self._reply(reply_ctx, "No active session. Send a message to start one.")
            return
        lines = [
            f"Session: {info.session_id or 'pending'}",
            f"Cost: ${info.total_cost:.4f}",
            f"Messages: {info.message_count}",
        ]
        if info.status:
            lines.append(f"Status: {info.status}")
        await self._reply(reply_ctx, "\n".join(lines))

    async def _cost(self, user_id: str, reply_ctx: Any):
        cost = self.gateway.cost(user_id)
        if cost is None:
            await self._reply(reply_ctx, "No active session.")
        else:
            await self._reply(reply_ctx, f"Total cost this session: ${cost:.4f}")

    async def _help(self, user_id: str, reply_ctx: Any):
        await self._reply(reply_ctx, HELP_TEXT)
