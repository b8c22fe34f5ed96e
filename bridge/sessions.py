from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class UserSession:
    session_id: str | None = None
    total_cost: float = 0.0
    message_count: int = 0
    created_at: datetime = field(default_factory=datetime.now)

    def record(self, cost: float, session_id: str | None = None):
        """Account for one completed prompt."""
        self.total_cost += max(cost, 0.0)
        self.message_count += 1
        if session_id:
            self.session_id = session_id


class SessionStore:
    def __init__(self):
        self._sessions: dict[str, UserSession] = {}

    def get(self, user_id: str) -> UserSession | None:
        return self._sessions.get(user_id)

    def create(self, user_id: str, session_id: str | None = None) -> UserSession:
        session = UserSession(session_id=session_id)
        self._sessions[user_id] = session
        return session

    def discard(self, user_id: str) -> UserSession | None:
        return self._sessions.pop(user_id, None)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
