"""Inbound text normalization — pure functions, no I/O.

Handles:
- Formatting/control byte stripping (bold, colour, underline, ...)
- CTCP detection (ACTION is a real message, everything else is dropped)
- Content sanity checks
- Mention extraction ("bot: hi", "@bot hi", "hi @bot")
- Nickname / channel validation and target normalization
"""

import re
from dataclasses import dataclass
from typing import Optional


# ============================================================
# CONTROL CODES
# ============================================================
# \x02 bold, \x03 colour, \x0F reset, \x16 reverse, \x1D italic,
# \x1F underline. Tab, LF and CR are left alone.

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")

# Colour codes must go first: \x03 followed by fg[,bg] digits
_COLOR_CODES_RE = re.compile(r"\x03(\d{1,2}(,\d{1,2})?)?")

# \x01COMMAND text\x01 (trailing delimiter is optional in the wild)
_CTCP_RE = re.compile(r"^\x01([A-Z]+)\s*(.*?)\x01?$", re.DOTALL)

CTCP_DELIMITER = "\x01"
ACTION_COMMAND = "ACTION"

# Protocol sanity bound for inbound text. Unrelated to the outbound chunk size.
MAX_CONTENT_LENGTH = 2000

_NICK_RE = re.compile(r"^[a-zA-Z\[\]\\`_^{|}][a-zA-Z0-9\[\]\\`_^{|}-]*$")
_NICK_CHARS = r"a-zA-Z0-9\[\]\\`_^{|}\-"
_CHANNEL_FORBIDDEN_RE = re.compile(r"[\s,\x07]")
CHANNEL_PREFIXES = ("#", "&")


@dataclass(frozen=True)
class SanitizedText:
    clean_text: str
    is_out_of_band: bool = False
    ob_command: Optional[str] = None
    ob_payload: Optional[str] = None

    @property
    def is_action(self) -> bool:
        return self.is_out_of_band and self.ob_command == ACTION_COMMAND


@dataclass(frozen=True)
class MentionResult:
    mentioned: bool
    clean_text: str


def strip_formatting(text: str) -> str:
    """Remove colour codes and control bytes, then surrounding whitespace."""
    text = _COLOR_CODES_RE.sub("", text)
    text = _CONTROL_CHARS_RE.sub("", text)
    return text.strip()


def sanitize(raw: str) -> SanitizedText:
    """Classify and clean one inbound line.

    ACTION payloads become the clean text. Any other CTCP command yields
    an empty clean text; the command is still reported so callers can log
    it before dropping the line.
    """
    match = _CTCP_RE.match(raw)
    if match:
        command = match.group(1)
        payload = strip_formatting(match.group(2) or "")
        if command == ACTION_COMMAND:
            return SanitizedText(
                clean_text=payload,
                is_out_of_band=True,
                ob_command=command,
                ob_payload=payload,
            )
        return SanitizedText(
            clean_text="",
            is_out_of_band=True,
            ob_command=command,
            ob_payload=payload,
        )

    return SanitizedText(clean_text=strip_formatting(raw))


def is_valid_content(text: str) -> bool:
    """Return False for text that must never reach the agent."""
    if not text or not text.strip():
        return False
    if len(text) > MAX_CONTENT_LENGTH:
        return False
    if "\x00" in text:
        return False
    return True


# ============================================================
# MENTIONS
# ============================================================

def _mention_patterns(nickname: str) -> list[re.Pattern]:
    nick = re.escape(nickname)
    # A nick followed by another nick character is a different word
    boundary = rf"(?![{_NICK_CHARS}])"
    return [
        re.compile(rf"^\s*(?:@{nick}{boundary}[,:]?|{nick}[,:])", re.IGNORECASE),
        re.compile(rf"(?<!\S)@{nick}{boundary}", re.IGNORECASE),
    ]


def extract_mention(text: str, nickname: str) -> MentionResult:
    """Detect and strip mentions of ``nickname``.

    Recognised: a leading ``@nick``, ``nick:`` or ``nick,`` prefix, and
    ``@nick`` anywhere. Whitespace is collapsed either way.
    """
    clean = text
    mentioned = False

    if nickname:
        for pattern in _mention_patterns(nickname):
            clean, count = pattern.subn(" ", clean)
            if count:
                mentioned = True

    clean = re.sub(r"\s+", " ", clean).strip()
    return MentionResult(mentioned=mentioned, clean_text=clean)


# ============================================================
# IDENTIFIERS & TARGETS
# ============================================================

def is_channel(target: str) -> bool:
    return target.startswith(CHANNEL_PREFIXES)


def is_valid_nickname(nick: str) -> bool:
    if not nick or len(nick) > 16:
        return False
    return bool(_NICK_RE.match(nick))


def is_valid_channel(channel: str) -> bool:
    if not channel or len(channel) < 2 or len(channel) > 50:
        return False
    if not is_channel(channel):
        return False
    return not _CHANNEL_FORBIDDEN_RE.search(channel)


def normalize_target(target: str) -> str:
    """Key form of a nick or channel: trimmed and lower-cased."""
    return target.strip().lower()


def format_target(target: str) -> str:
    """Outbound form: channels lower-cased, nicknames kept as typed."""
    target = target.strip()
    if is_channel(target):
        return target.lower()
    return target


def looks_like_target(text: str) -> bool:
    """Loose check used when resolving user-supplied send targets."""
    text = text.strip()
    return text.startswith("#") or bool(_NICK_RE.match(text))
