"""User-facing failure notices for agent errors.

Chat users only ever see a fixed phrase plus a reference id. The
exception text, its cause chain and anything the agent printed stay in
the server log under the same reference.
"""

import asyncio
import secrets

import httpx

from ..errors import AgentError, AgentInvocationError


def new_reference() -> str:
    """Short id that ties a chat notice to a log line."""
    return secrets.token_hex(4)


def _root_cause(e: BaseException) -> BaseException:
    if isinstance(e, AgentInvocationError) and e.cause is not None:
        return e.cause
    return e


def classify_error(e: BaseException) -> str:
    """Classify an exception into a fixed, detail-free phrase."""
    e = _root_cause(e)

    if isinstance(e, (asyncio.TimeoutError, httpx.TimeoutException)):
        return "The agent took too long to respond. Please try again."

    if isinstance(e, httpx.HTTPStatusError):
        code = e.response.status_code
        if code == 429:
            return "The agent is busy right now. Please wait a moment and try again."
        if 500 <= code < 600:
            return "The agent is having server issues. Please try again later."

    if isinstance(e, (httpx.ConnectError, ConnectionError, FileNotFoundError)):
        return "The agent is unavailable right now. Please try again later."

    if isinstance(e, AgentError):
        return "The agent could not handle that message. Please try again."

    return "Sorry, something went wrong while handling your message."


def failure_notice(error: AgentInvocationError) -> str:
    """Notice sent back to the chat target for a failed agent invocation."""
    return f"{classify_error(error)} (ref: {error.reference})"
