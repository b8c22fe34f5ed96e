"""Exceptions raised between the agent backends, the gateway and the router."""
from __future__ import annotations

# Substrings the backends use when a conversation handle no longer resolves
SESSION_MISSING_MARKERS = ("not found", "no conversation", "expired")


class BridgeError(Exception):
    pass


class BackendError(BridgeError):
    """The agent backend failed to create, run or answer a request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def session_missing(self) -> bool:
        """True when the error means the conversation is gone on the backend side.

        Falls back to matching the error text, since neither the session API
        nor the CLI return a dedicated error code for this.
        """
        if self.status_code == 404:
            return True
        text = str(self).lower()
        return any(marker in text for marker in SESSION_MISSING_MARKERS)


class SessionNotFound(BackendError):
    @property
    def session_missing(self) -> bool:
        return True


class BackendTimeout(BackendError):
    pass


class PromptAborted(BridgeError):
    """The in-flight prompt was cancelled by the user."""
