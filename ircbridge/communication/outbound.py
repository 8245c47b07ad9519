"""Outbound message processing — chunking and paced delivery.

Handles:
- Splitting replies into protocol-legal lines (no line breaks, bounded length)
- Word/line boundary preference, hard split as last resort
- Preserving leading and internal whitespace (indented content survives)
- Flood-safe pacing between chunks of one reply
- CTCP ACTION (/me) sends
"""

import asyncio
import logging
import re
from typing import Callable, Optional

from ..errors import NotConnectedError

logger = logging.getLogger("ircbridge.outbound")

# Leaves room for ":nick!user@host PRIVMSG #target :" inside the 512-byte line
MAX_MESSAGE_LENGTH = 450
CHUNK_DELAY = 0.5

# Boundaries in the first 30% of the window make chunks too short
_BOUNDARY_THRESHOLD = 0.3


# ============================================================
# MESSAGE SPLITTING
# ============================================================

def _split_segment(segment: str, max_length: int) -> list[str]:
    """Split one line into chunks of at most ``max_length`` characters."""
    chunks = []
    remaining = segment
    threshold = max_length * _BOUNDARY_THRESHOLD

    while remaining:
        if len(remaining) <= max_length:
            final = remaining.rstrip()
            if final:
                chunks.append(final)
            break

        split_at = -1

        newline = remaining.rfind("\n", 0, max_length + 1)
        if newline > threshold:
            split_at = newline

        if split_at == -1:
            space = remaining.rfind(" ", 0, max_length + 1)
            if space > threshold:
                split_at = space

        if split_at == -1:
            split_at = max_length

        chunk = remaining[:split_at].rstrip()
        if chunk:
            chunks.append(chunk)

        # Consume the boundary character itself, keep everything else
        skip = 1 if remaining[split_at:split_at + 1] in (" ", "\n") else 0
        remaining = remaining[split_at + skip:]

    return chunks


def chunk_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split a reply into IRC-sized chunks.

    Lines are split on explicit line breaks first (an IRC line can't
    carry one), then each line is split at the last newline/space past
    30% of the window, or hard-split at ``max_length``. Trailing
    whitespace is trimmed, empty chunks are dropped, leading and inner
    whitespace is kept verbatim. A single line that fits is returned
    whole, and is only trimmed when something is left afterwards.

    Args:
        text: Reply text
        max_length: Maximum characters per chunk (default: 450)

    Returns:
        Ordered list of chunks (empty for empty input)
    """
    if max_length < 1:
        raise ValueError(f"max_length must be positive, got {max_length}")
    if not text:
        return []

    text = text.replace("\r\n", "\n").replace("\r", "\n")

    if "\n" not in text and len(text) <= max_length:
        trimmed = text.rstrip()
        return [trimmed] if trimmed else [text]

    chunks = []
    for line in text.split("\n"):
        if not line:
            continue
        chunks.extend(_split_segment(line, max_length))
    return chunks


# ============================================================
# DELIVERY
# ============================================================

class OutboundSender:
    """Paced sender bound to one account's connection.

    ``connection`` needs ``account_id``, ``is_ready`` and ``say()`` — in
    practice a ConnectionManager.
    """

    def __init__(
        self,
        connection,
        max_length: int = MAX_MESSAGE_LENGTH,
        chunk_delay: float = CHUNK_DELAY,
        on_sent: Optional[Callable[[], None]] = None,
    ):
        self._connection = connection
        self.max_length = max_length
        self.chunk_delay = chunk_delay
        self._on_sent = on_sent

    def _ensure_ready(self):
        if not self._connection.is_ready:
            raise NotConnectedError(
                f"[{self._connection.account_id}] IRC client not connected and registered"
            )

    async def send(self, target: str, text: str) -> int:
        """Send ``text`` to ``target`` in order, pausing between chunks.

        Raises:
            NotConnectedError: before anything is sent if the connection
                is not ready, or mid-reply if it drops.

        Returns:
            Number of chunks sent
        """
        self._ensure_ready()
        chunks = chunk_message(text, self.max_length)

        for i, chunk in enumerate(chunks):
            preview = chunk[:50] + ("..." if len(chunk) > 50 else "")
            logger.debug(f"[{self._connection.account_id}] Sending to {target}: {preview}")
            self._connection.say(target, chunk)
            if self._on_sent:
                self._on_sent()
            if i < len(chunks) - 1 and self.chunk_delay > 0:
                await asyncio.sleep(self.chunk_delay)

        return len(chunks)

    async def send_action(self, target: str, action: str):
        """Send a single CTCP ACTION (/me). Never chunked."""
        self._ensure_ready()
        action = re.sub(r"[\r\n]+", " ", action).strip()
        self._connection.say(target, f"\x01ACTION {action}\x01")
        if self._on_sent:
            self._on_sent()
