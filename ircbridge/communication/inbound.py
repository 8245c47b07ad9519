"""Inbound message pipeline — one received line to one agent call.

Order matters:
1. Self-echo filter
2. Sanitize, drop non-ACTION CTCP
3. Content validity
4. Authorization (denials are silent)
5. Rate limit (one notice per window, otherwise silent)
6. Mention extraction
7. Hand off to the agent handler
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional

from ..config import AccountConfig
from ..errors import AgentInvocationError
from ..ratelimit import RateLimitConfig, RateLimiter
from ..security import authorize
from ..transport import LineReceived
from .errors import failure_notice, new_reference
from .outbound import OutboundSender
from .sanitize import extract_mention, is_channel, is_valid_content, normalize_target, sanitize

logger = logging.getLogger("ircbridge.inbound")

RATE_LIMIT_NOTICE = "{nick}: you are sending messages too quickly, please wait a moment."


class ChatType(str, Enum):
    DIRECT = "direct"
    GROUP = "group"


@dataclass
class InboundMessage:
    """Normalized inbound message handed to the agent."""

    account_id: str
    sender_id: str
    chat_type: ChatType
    chat_id: str
    text: str
    addressed: bool
    reply: Callable[[str], Awaitable[int]]
    is_action: bool = False
    raw_target: str = ""

    @property
    def is_group(self) -> bool:
        return self.chat_type is ChatType.GROUP


MessageHandler = Callable[[InboundMessage], Awaitable[None]]


class InboundMonitor:
    """Runs the pipeline for one account's received lines.

    ``handle_line`` is the ConnectionManager's ``on_line`` callback, so it
    is only ever called for one line at a time per account.
    """

    def __init__(
        self,
        account_id: str,
        config: AccountConfig,
        connection,
        sender: OutboundSender,
        rate_limiter: RateLimiter,
        handler: MessageHandler,
        rate_limit_config: Optional[RateLimitConfig] = None,
        on_inbound: Optional[Callable[[], None]] = None,
    ):
        self.account_id = account_id
        self.config = config
        self._connection = connection
        self._sender = sender
        self._rate_limiter = rate_limiter
        self._handler = handler
        self._rate_limit_config = rate_limit_config
        self._on_inbound = on_inbound
        self.last_inbound_at: Optional[datetime] = None

    async def handle_line(self, line: LineReceived):
        nick, target = line.sender, line.target

        if normalize_target(nick) == normalize_target(self._connection.nickname):
            return

        sanitized = sanitize(line.text)
        if sanitized.is_out_of_band and not sanitized.is_action:
            logger.debug(f"[{self.account_id}] Ignoring CTCP {sanitized.ob_command} from {nick}")
            return

        if not is_valid_content(sanitized.clean_text):
            logger.debug(f"[{self.account_id}] Rejecting invalid message from {nick}")
            return

        auth = authorize(nick, target, self.config)
        if not auth.authorized:
            logger.debug(f"[{self.account_id}] Dropping message from {nick} in {target}: {auth.reason}")
            return

        limit = self._rate_limiter.check(nick, self._rate_limit_config)
        if limit.limited:
            if limit.should_notify:
                notice = RATE_LIMIT_NOTICE.format(nick=nick)
                await self._send_quietly(self._reply_target(nick, target), notice)
            return

        self.last_inbound_at = datetime.now(timezone.utc)
        if self._on_inbound:
            self._on_inbound()

        message = self._build_message(nick, target, sanitized.clean_text, sanitized.is_action)
        logger.info(
            f"[{self.account_id}] Message from {message.sender_id} in {message.chat_id}: "
            f"{message.text[:100]}"
        )

        try:
            await self._handler(message)
        except Exception as e:
            error = AgentInvocationError(new_reference(), cause=e)
            error.__cause__ = e
            logger.error(
                f"[{self.account_id}] Error handling message from {nick} (ref {error.reference}): {e}",
                exc_info=True,
            )
            await self._send_quietly(self._reply_target(nick, target), failure_notice(error))

    def _reply_target(self, nick: str, target: str) -> str:
        return target if is_channel(target) else nick

    def _build_message(self, nick: str, target: str, text: str, is_action: bool) -> InboundMessage:
        group = is_channel(target)
        mention = extract_mention(text, self._connection.nickname)
        body = mention.clean_text or text
        if is_action:
            body = f"* {nick} {body}"

        reply_target = self._reply_target(nick, target)

        async def reply(reply_text: str) -> int:
            return await self._sender.send(reply_target, reply_text)

        return InboundMessage(
            account_id=self.account_id,
            sender_id=nick,
            chat_type=ChatType.GROUP if group else ChatType.DIRECT,
            chat_id=target if group else nick,
            text=body,
            addressed=mention.mentioned,
            reply=reply,
            is_action=is_action,
            raw_target=target,
        )

    async def _send_quietly(self, target: str, text: str):
        try:
            await self._sender.send(target, text)
        except Exception as e:
            logger.warning(f"[{self.account_id}] Could not send notice to {target}: {e}")
