from typing import Any, Protocol


class Messenger(Protocol):
    """Outbound side of a chat platform.

    `reply` answers one inbound message directly (reply_ctx is whatever the
    transport needs for that, e.g. a LINE reply token). `push` sends an
    unsolicited message to a user at any later time.
    """

    async def reply(self, reply_ctx: Any, text: str) -> None:
        ...

    async def push(self, user_id: str, text: str) -> None:
        ...
