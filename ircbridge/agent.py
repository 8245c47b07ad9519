"""Agent collaborator — where normalized messages go.

Two backends:
- HttpAgentClient: POSTs ``{session_id, message}`` to an HTTP endpoint
- CommandAgentClient: runs ``<command> agent --session-id K --message M --json``

Both return the reply text (or None) after handing it to ``reply``.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

import httpx

from .communication.inbound import InboundMessage
from .errors import AgentError

logger = logging.getLogger("ircbridge.agent")

AGENT_TIMEOUT = 120.0

ReplyFn = Callable[[str], Awaitable[object]]


def build_session_key(account_id: str, message: InboundMessage) -> str:
    """``irc:<account>:<channel>`` for groups, ``irc:<account>:<nick>`` for DMs."""
    chat = message.chat_id if message.is_group else message.sender_id
    return f"irc:{account_id}:{chat}"


def extract_response_text(data) -> Optional[str]:
    """Pull reply text out of an agent JSON document."""
    if not isinstance(data, dict):
        return None
    result = data.get("result")
    if isinstance(result, dict):
        payloads = result.get("payloads")
        if isinstance(payloads, list) and payloads and isinstance(payloads[0], dict):
            text = payloads[0].get("text")
            if text:
                return text
    for key in ("text", "response"):
        value = data.get(key)
        if isinstance(value, str) and value:
            return value
    return None


class AgentClient(ABC):
    """Hands one message to the agent and delivers its reply."""

    @abstractmethod
    async def invoke(self, session_key: str, message: str, reply: ReplyFn) -> Optional[str]:
        ...

    async def handle(self, message: InboundMessage) -> Optional[str]:
        """InboundMonitor handler: derive the session and invoke."""
        return await self.invoke(
            build_session_key(message.account_id, message),
            message.text,
            message.reply,
        )

    async def _deliver(self, session_key: str, text: Optional[str], reply: ReplyFn) -> Optional[str]:
        if not text:
            logger.warning(f"No response from agent for {session_key}")
            return None
        logger.info(f"Agent response for {session_key}: {text[:100]}")
        await reply(text)
        return text


class HttpAgentClient(AgentClient):
    """Agent reachable over HTTP."""

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        timeout: float = AGENT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._token = token
        self._transport = transport

    async def invoke(self, session_key: str, message: str, reply: ReplyFn) -> Optional[str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        logger.info(f"Sending to agent via HTTP: {message[:50]}")
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            resp = await client.post(
                self.url,
                headers=headers,
                json={"session_id": session_key, "message": message},
            )
            resp.raise_for_status()

        try:
            data = resp.json()
        except ValueError as e:
            raise AgentError(f"Agent returned invalid JSON: {resp.text[:200]}") from e

        return await self._deliver(session_key, extract_response_text(data), reply)


class CommandAgentClient(AgentClient):
    """Agent reachable through its CLI."""

    def __init__(self, command: str = "openclaw", timeout: float = AGENT_TIMEOUT):
        self.command = command
        self.timeout = timeout

    async def invoke(self, session_key: str, message: str, reply: ReplyFn) -> Optional[str]:
        logger.info(f"Sending to agent via CLI: {message[:50]}")
        proc = await asyncio.create_subprocess_exec(
            self.command, "agent",
            "--session-id", session_key,
            "--message", message,
            "--json",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise

        out = stdout.decode("utf-8", errors="replace").strip()
        err = stderr.decode("utf-8", errors="replace").strip()

        if proc.returncode != 0:
            logger.error(f"Agent command failed (code {proc.returncode}): {err}")
            raise AgentError(f"Agent command failed: {err or 'unknown error'}")

        try:
            data = json.loads(out)
        except json.JSONDecodeError as e:
            logger.error(f"Agent output is not JSON: {out[:200]}")
            raise AgentError("Agent returned invalid JSON") from e

        return await self._deliver(session_key, extract_response_text(data), reply)
