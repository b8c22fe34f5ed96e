from dataclasses import dataclass

from bridge.backends import AgentBackend, make_backend
from bridge.config import AGENT_BACKEND, ALLOWED_USER_IDS, LINE_MAX_TEXT, PROMPT_TIMEOUT
from bridge.gateway import AgentGateway
from bridge.queue import UserQueue
from bridge.router import CommandRouter
from bridge.sessions import SessionStore
from bridge.transport import Messenger


@dataclass
class BridgeContext:
    """Everything one running bridge owns. Lives as long as the process."""

    backend: AgentBackend
    store: SessionStore
    queue: UserQueue
    gateway: AgentGateway
    router: CommandRouter

    @classmethod
    def build(
        cls,
        messenger: Messenger,
        backend: AgentBackend | None = None,
        chunk_limit: int = LINE_MAX_TEXT,
        timeout: float = PROMPT_TIMEOUT,
        allowed_user_ids=ALLOWED_USER_IDS,
    ) -> "BridgeContext":
        backend = backend if backend is not None else make_backend(AGENT_BACKEND)
        store = SessionStore()
        queue = UserQueue()
        gateway = AgentGateway(backend, store, timeout=timeout)
        router = CommandRouter(
            gateway,
            queue,
            messenger,
            chunk_limit=chunk_limit,
            allowed_user_ids=allowed_user_ids,
        )
        return cls(backend=backend, store=store, queue=queue, gateway=gateway, router=router)

    async def aclose(self):
        await self.backend.aclose()
