"""Inbound authorization — who may talk to the agent.

Two message classes, two policies:

DM policy (private messages):
- disabled: nobody
- open: everybody
- pairing: only nicks on the allow list ("*" matches everyone)

Group policy (channel messages):
- all: everybody in every channel
- allowlist: only channels with an entry, only users listed in it
- denylist: everybody, except users listed for that channel

Unknown policy values always deny. Denials are silent to the sender;
reasons exist for logging only.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Optional, TypeVar

from .communication.sanitize import is_channel, normalize_target
from .config import AccountConfig, DmPolicy, GroupConfig, GroupPolicy

logger = logging.getLogger("ircbridge.security")

WILDCARD = "*"

REASON_DMS_DISABLED = "DMs are disabled"
REASON_NOT_PAIRED = "Not paired"
REASON_CHANNEL_NOT_CONFIGURED = "Channel not configured"
REASON_NOT_IN_ALLOWLIST = "Not in allowlist"
REASON_IN_DENYLIST = "In denylist"
REASON_UNKNOWN_POLICY = "Unknown policy"

_E = TypeVar("_E", bound=Enum)


@dataclass(frozen=True)
class AuthorizationResult:
    authorized: bool
    reason: Optional[str] = None


_ALLOW = AuthorizationResult(authorized=True)


def _deny(reason: str) -> AuthorizationResult:
    return AuthorizationResult(authorized=False, reason=reason)


def _coerce(enum_cls: type[_E], value) -> Optional[_E]:
    """Map a raw config value onto the policy enum, or None if unknown."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return None


def matches_entry(sender: str, entry: str) -> bool:
    if entry == WILDCARD:
        return True
    return normalize_target(sender) == normalize_target(entry)


def is_in_list(sender: str, entries: Iterable[str]) -> bool:
    return any(matches_entry(sender, entry) for entry in entries)


def find_group(groups: Mapping[str, GroupConfig], channel: str) -> Optional[GroupConfig]:
    """Look up a channel entry, ignoring case."""
    if channel in groups:
        return groups[channel]
    wanted = normalize_target(channel)
    for name, group in groups.items():
        if normalize_target(name) == wanted:
            return group
    return None


# ============================================================
# DM POLICY
# ============================================================

def authorize_dm(
    sender: str,
    policy: DmPolicy | str,
    allow_from: Iterable[str] = (),
) -> AuthorizationResult:
    """Check whether ``sender`` may send direct messages."""
    match _coerce(DmPolicy, policy):
        case DmPolicy.DISABLED:
            logger.debug(f"DM from {sender} rejected: DMs are disabled")
            return _deny(REASON_DMS_DISABLED)
        case DmPolicy.OPEN:
            return _ALLOW
        case DmPolicy.PAIRING:
            allow_from = list(allow_from)
            # Empty list: nobody has been paired yet
            if allow_from and is_in_list(sender, allow_from):
                return _ALLOW
            logger.debug(f"DM from {sender} rejected: not paired")
            return _deny(REASON_NOT_PAIRED)
        case _:
            logger.warning(f"Unknown DM policy {policy!r}, denying {sender}")
            return _deny(REASON_UNKNOWN_POLICY)


# ============================================================
# GROUP POLICY
# ============================================================

def authorize_group(
    sender: str,
    channel: str,
    policy: GroupPolicy | str,
    groups: Mapping[str, GroupConfig],
) -> AuthorizationResult:
    """Check whether ``sender`` may address the agent in ``channel``."""
    match _coerce(GroupPolicy, policy):
        case GroupPolicy.ALL:
            return _ALLOW
        case GroupPolicy.ALLOWLIST:
            group = find_group(groups, channel)
            if group is None:
                logger.debug(f"{channel} not configured, denying {sender}")
                return _deny(REASON_CHANNEL_NOT_CONFIGURED)
            if is_in_list(sender, group.users):
                return _ALLOW
            logger.debug(f"{sender} not in allowlist for {channel}")
            return _deny(REASON_NOT_IN_ALLOWLIST)
        case GroupPolicy.DENYLIST:
            group = find_group(groups, channel)
            # No denylist for this channel means open
            if group is None:
                return _ALLOW
            if is_in_list(sender, group.users):
                logger.debug(f"{sender} is in denylist for {channel}")
                return _deny(REASON_IN_DENYLIST)
            return _ALLOW
        case _:
            logger.warning(f"Unknown group policy {policy!r}, denying {sender} in {channel}")
            return _deny(REASON_UNKNOWN_POLICY)


def authorize(sender: str, target: str, account: AccountConfig) -> AuthorizationResult:
    """Route to the DM or group policy depending on the message target.

    Args:
        sender: Nick that sent the message
        target: Channel for group messages, our own nick for DMs
        account: Account whose policies apply

    Returns:
        AuthorizationResult — ``reason`` is set on denial
    """
    if not is_channel(target):
        return authorize_dm(sender, account.dm.policy, account.dm.allow_from)
    return authorize_group(sender, target, account.group_policy, account.groups)
