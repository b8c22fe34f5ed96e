"""Per-user FIFO execution of agent requests."""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]


class UserQueue:
    """Runs operations for the same user one at a time, in submission order.

    Each user maps to the futures of the operations submitted for them that
    have not settled yet. A new operation waits for all of them to settle,
    whatever their outcome, then runs; different users never wait on each
    other. Waiting on every predecessor, not just the last one, keeps the
    order intact when a queued operation is cancelled before it starts.
    """

    def __init__(self):
        self._chains: dict[str, list[asyncio.Future[Any]]] = {}

    def submit(self, user_id: str, operation: Operation[T]) -> asyncio.Future[T]:
        """Schedule `operation` after everything already queued for `user_id`.

        Must be called from inside the running event loop. The returned
        future carries the operation's result or exception.
        """
        chain = self._chains.setdefault(user_id, [])
        future = asyncio.ensure_future(self._run_after(list(chain), operation))
        chain.append(future)
        future.add_done_callback(lambda f: self._settled(user_id, f))
        return future

    async def enqueue(self, user_id: str, operation: Operation[T]) -> T:
        return await self.submit(user_id, operation)

    def pending(self, user_id: str) -> bool:
        return user_id in self._chains

    def __len__(self) -> int:
        return len(self._chains)

    @staticmethod
    async def _run_after(predecessors: list[asyncio.Future[Any]], operation: Operation[T]) -> T:
        waiting = {f for f in predecessors if not f.done()}
        if waiting:
            # asyncio.wait never raises the awaited futures' exceptions
            await asyncio.wait(waiting)
        return await operation()

    def _settled(self, user_id: str, future: asyncio.Future[Any]):
        chain = self._chains.get(user_id)
        if chain is not None:
            chain.remove(future)
            if not chain:
                del self._chains[user_id]
        if not future.cancelled() and future.exception() is not None:
            # Callers of submit() may never look at the result
            logger.debug("[%s] queued operation failed: %r", user_id[-8:], future.exception())
