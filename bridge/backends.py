import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from bridge.config import PROMPT_TIMEOUT, SERVER_PASSWORD, SERVER_URL, WORKING_DIR
from bridge.errors import BackendError, BackendTimeout, SessionNotFound

logger = logging.getLogger(__name__)

NO_TEXT_OUTPUT = "Done. (no text output)"


@dataclass
class PromptResult:
    text: str
    cost: float = 0.0
    is_error: bool = False
    # Set when the backend reports (or rotates) the conversation handle
    session_id: str | None = None


class AgentBackend(ABC):
    """One agent conversation service, addressed by conversation handle."""

    name = "backend"

    @abstractmethod
    async def create(self) -> str | None:
        """Start a conversation. May return None if the id is only known after the first prompt."""

    @abstractmethod
    async def send(self, handle: str | None, prompt: str) -> PromptResult:
        ...

    async def abort(self, handle: str | None) -> bool:
        """Ask the backend to stop work on `handle`. Returns whether it did."""
        return False

    async def inspect(self, handle: str) -> dict[str, Any] | None:
        return None

    async def destroy(self, handle: str) -> None:
        pass

    async def aclose(self) -> None:
        pass


class HttpSessionBackend(AgentBackend):
    """Remote agent server exposing a /session REST API."""

    name = "http"

    def __init__(
        self,
        base_url: str = SERVER_URL,
        password: str = SERVER_PASSWORD,
        timeout: float = PROMPT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Authorization": f"Bearer {password}"} if password else {}
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def _request(self, method: str, path: str, body: Any = None) -> Any:
        try:
            resp = await self._client.request(method, path, json=body)
        except httpx.TimeoutException as e:
            raise BackendTimeout(f"Timed out after {self.timeout:g}s") from e
        except httpx.HTTPError as e:
            raise BackendError(f"Server unreachable: {e}") from e

        text = resp.text
        if resp.status_code == 404:
            raise SessionNotFound(f"Server 404: {text[:300]}", 404)
        if not resp.is_success:
            raise BackendError(f"Server {resp.status_code}: {text[:300]}", resp.status_code)
        try:
            return resp.json()
        except ValueError:
            return text

    async def create(self) -> str:
        created = await self._request("POST", "/session")
        if not isinstance(created, dict) or not created.get("id"):
            raise BackendError(f"Server returned no session id: {str(created)[:300]}")
        return created["id"]

    async def send(self, handle: str | None, prompt: str) -> PromptResult:
        if handle is None:
            handle = await self.create()
        result = await self._request("POST", f"/session/{handle}/message", {"prompt": prompt})
        if not isinstance(result, dict):
            return PromptResult(text=str(result) or NO_TEXT_OUTPUT, session_id=handle)
        return PromptResult(
            text=result.get("result") or NO_TEXT_OUTPUT,
            cost=float(result.get("cost_usd") or 0),
            is_error=bool(result.get("is_error", False)),
            session_id=result.get("session_id") or handle,
        )

    async def abort(self, handle: str | None) -> bool:
        if handle is None:
            return False
        res = await self._request("POST", f"/session/{handle}/abort")
        return isinstance(res, dict) and bool(res.get("aborted"))

    async def inspect(self, handle: str) -> dict[str, Any] | None:
        info = await self._request("GET", f"/session/{handle}")
        return info if isinstance(info, dict) else None

    async def destroy(self, handle: str) -> None:
        await self._request("DELETE", f"/session/{handle}")

    async def aclose(self) -> None:
        await self._client.aclose()


_DEFAULT_TOOLS = ["Bash", "Read", "Write", "Edit", "Glob", "Grep", "WebFetch", "WebSearch"]


class ClaudeCliBackend(AgentBackend):
    """Claude Code CLI run as one subprocess per prompt, resumed by session id."""

    name = "claude"

    def __init__(self, working_dir: str = WORKING_DIR, tools: list[str] | None = None):
        self.working_dir = working_dir
        self.tools = tools if tools is not None else _DEFAULT_TOOLS
        self._running: dict[str, asyncio.subprocess.Process] = {}

    async def create(self) -> None:
        # The CLI assigns the session id on the first run
        return None

    def _command(self, handle: str | None, prompt: str) -> list[str]:
        cmd = ["claude"]
        if handle:
            cmd.extend(["--resume", handle])
        cmd.extend([
            "-p", prompt,
            "--output-format", "stream-json",
            "--verbose",
            "--allowedTools", *self.tools,
        ])
        return cmd

    async def send(self, handle: str | None, prompt: str) -> PromptResult:
        cmd = self._command(handle, prompt)

        # Strip CLAUDECODE so Claude doesn't refuse to run nested inside another Claude session
        env = {k: v for k, v in os.environ.items() if k != "CLAUDECODE"}

        logger.info("Running: %s", " ".join(cmd[:4]) + " ...")
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.working_dir,
            env=env,
            limit=1024 * 1024,  # 1MB line buffer, result events can be large
        )
        if handle:
            self._running[handle] = proc

        result_event: dict[str, Any] = {}
        new_session_id = handle
        lines = 0
        try:
            async for raw_line in proc.stdout:
                line = raw_line.decode().strip()
                if not line:
                    continue
                lines += 1
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue

                if event.get("session_id"):
                    new_session_id = event["session_id"]
                if event.get("type") == "result":
                    result_event = event

            await proc.wait()
        except asyncio.CancelledError:
            # Timeout or abort: don't leave the agent running
            proc.kill()
            await proc.wait()
            raise
        finally:
            if handle and self._running.get(handle) is proc:
                del self._running[handle]

        stderr_text = (await proc.stderr.read()).decode().strip()
        if proc.returncode != 0:
            logger.error("Claude CLI error (rc=%d): %s", proc.returncode, stderr_text or "(no stderr)")
            raise BackendError(f"Claude CLI exited with {proc.returncode}: {stderr_text[:300] or '(no stderr)'}")
        elif stderr_text:
            logger.debug("Claude CLI stderr (rc=0): %s", stderr_text)

        logger.info(
            "Claude done: rc=%d, lines=%d, session=%s",
            proc.returncode, lines, new_session_id,
        )

        return PromptResult(
            text=result_event.get("result") or NO_TEXT_OUTPUT,
            cost=float(result_event.get("total_cost_usd") or 0),
            is_error=bool(result_event.get("is_error", False)),
            session_id=new_session_id,
        )

    async def inspect(self, handle: str) -> dict[str, Any] | None:
        return {"status": "busy" if handle in self._running else "idle"}


BACKENDS = {
    "http": HttpSessionBackend,
    "claude": ClaudeCliBackend,
}


def make_backend(kind: str) -> AgentBackend:
    try:
        backend_cls = BACKENDS[kind]
    except KeyError:
        raise ValueError(f"Unknown agent backend {kind!r}, expected one of: {', '.join(BACKENDS)}") from None
    return backend_cls()
