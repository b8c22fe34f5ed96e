"""Session lifecycle on top of an agent backend.

The gateway owns the per-user session store and the map of in-flight backend
calls. It creates conversations lazily, accrues cost, recovers once from an
expired conversation, and lets a user cancel the call currently running for
them.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import TypeVar

from bridge.backends import AgentBackend, PromptResult
from bridge.config import PROMPT_TIMEOUT
from bridge.errors import BackendError, BackendTimeout, PromptAborted
from bridge.sessions import SessionStore, UserSession

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Remote abort is best effort; the local cancel has already happened
ABORT_TIMEOUT = 5.0


@dataclass
class SessionInfo:
    session_id: str | None
    total_cost: float
    message_count: int
    status: str | None = None


class AgentGateway:
    def __init__(
        self,
        backend: AgentBackend,
        store: SessionStore | None = None,
        timeout: float = PROMPT_TIMEOUT,
        abort_timeout: float = ABORT_TIMEOUT,
    ):
        self.backend = backend
        self.store = store if store is not None else SessionStore()
        self.timeout = timeout
        self.abort_timeout = abort_timeout
        self._inflight: dict[str, asyncio.Task[PromptResult]] = {}
        self._aborted: set[asyncio.Task[PromptResult]] = set()

    async def _call(self, awaitable: Awaitable[T], timeout: float | None = None) -> T:
        """Bound one backend call by the configured timeout."""
        timeout = self.timeout if timeout is None else timeout
        try:
            async with asyncio.timeout(timeout):
                return await awaitable
        except TimeoutError:
            raise BackendTimeout(f"Timed out after {timeout:g}s") from None

    async def get_or_create_session(self, user_id: str) -> UserSession:
        session = self.store.get(user_id)
        if session is not None:
            return session
        handle = await self._call(self.backend.create())
        # Another command may have created one while we waited on the backend
        session = self.store.get(user_id) or self.store.create(user_id, handle)
        logger.info("[%s] Created session: %s", user_id[-8:], handle or "(assigned on first prompt)")
        return session

    async def _attempt(self, user_id: str, prompt: str) -> PromptResult:
        session = await self.get_or_create_session(user_id)
        logger.info("[%s] Sending prompt to session %s", user_id[-8:], session.session_id or "new")
        result = await self._call(self.backend.send(session.session_id, prompt))

        if self.store.get(user_id) is session:
            session.record(result.cost, result.session_id)
        else:
            logger.info("[%s] Session was reset mid-prompt, result not recorded", user_id[-8:])
        return result

    async def _send_with_recovery(self, user_id: str, prompt: str) -> PromptResult:
        try:
            return await self._attempt(user_id, prompt)
        except BackendError as e:
            if not e.session_missing:
                raise
            logger.info("[%s] Session expired (%s), creating fresh", user_id[-8:], e)
            self.store.discard(user_id)
        # A second expiry is not retried again
        return await self._attempt(user_id, prompt)

    async def send_prompt(self, user_id: str, prompt: str) -> PromptResult:
        """Send `prompt` in the user's conversation, creating one if needed.

        Raises PromptAborted when cancelled through abort(), BackendTimeout
        when the backend takes longer than the timeout, BackendError for any
        other backend failure.
        """
        if self.busy(user_id):
            # The user queue serializes prompts, so this means a caller skipped it
            raise BackendError("A prompt is already running for this user")

        task = asyncio.ensure_future(self._send_with_recovery(user_id, prompt))
        self._inflight[user_id] = task
        try:
            return await task
        except asyncio.CancelledError:
            if task in self._aborted:
                raise PromptAborted("Prompt cancelled.") from None
            raise
        finally:
            if self._inflight.get(user_id) is task:
                del self._inflight[user_id]
            self._aborted.discard(task)

    def busy(self, user_id: str) -> bool:
        task = self._inflight.get(user_id)
        return task is not None and not task.done()

    async def abort(self, user_id: str) -> bool:
        """Cancel the backend call in flight for the user. Returns False if there was none."""
        task = self._inflight.get(user_id)
        if task is None or task.done():
            return False

        # Local cancel comes before the remote abort is awaited
        self._aborted.add(task)
        task.cancel()
        logger.info("[%s] Prompt aborted", user_id[-8:])

        session = self.store.get(user_id)
        if session is not None and session.session_id:
            try:
                remote = await self._call(self.backend.abort(session.session_id), self.abort_timeout)
                logger.info("[%s] Backend abort for %s: %s", user_id[-8:], session.session_id, remote)
            except BackendError as e:
                logger.warning("[%s] Backend abort failed: %s", user_id[-8:], e)
        return True

    async def reset(self, user_id: str) -> None:
        """Forget the user's session. Backend cleanup is best effort."""
        session = self.store.discard(user_id)
        if session is None or not session.session_id:
            return
        try:
            await self._call(self.backend.destroy(session.session_id))
        except Exception as e:
            logger.warning("[%s] Failed to destroy session %s: %s", user_id[-8:], session.session_id, e)

    async def describe(self, user_id: str) -> SessionInfo | None:
        session = self.store.get(user_id)
        if session is None:
            return None
        info = SessionInfo(
            session_id=session.session_id,
            total_cost=session.total_cost,
            message_count=session.message_count,
        )
        if session.session_id:
            try:
                status = await self._call(self.backend.inspect(session.session_id))
            except Exception as e:
                logger.debug("[%s] Could not inspect session: %s", user_id[-8:], e)
                status = None
            if status:
                info.status = status.get("status")
        return info

    def cost(self, user_id: str) -> float | None:
        session = self.store.get(user_id)
        return session.total_cost if session is not None else None
