"""Communication sub-core — IRC-specific message handling.

- Sanitize: control-code stripping, CTCP classification, mentions, targets
- Outbound: chunking and paced delivery
- Inbound: the per-account monitor (import from ``.inbound`` directly)
- Errors: user-facing failure notices
"""

from .sanitize import (
    SanitizedText,
    MentionResult,
    sanitize,
    strip_formatting,
    is_valid_content,
    extract_mention,
    is_channel,
    normalize_target,
    format_target,
)
from .outbound import chunk_message, OutboundSender

__all__ = [
    # Sanitize
    "SanitizedText",
    "MentionResult",
    "sanitize",
    "strip_formatting",
    "is_valid_content",
    "extract_mention",
    "is_channel",
    "normalize_target",
    "format_target",
    # Outbound
    "chunk_message",
    "OutboundSender",
]
