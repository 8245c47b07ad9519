"""ircbridge configuration management.

Process settings come from the environment (or .env). Per-account IRC
settings come from a JSON file and are immutable once loaded.
"""

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings

from .communication.sanitize import is_valid_channel, is_valid_nickname

logger = logging.getLogger("ircbridge.config")

DEFAULT_ACCOUNT_ID = "default"


class BridgeSettings(BaseSettings):
    """Settings loaded from environment variables or .env file."""

    config_path: str = Field(default="ircbridge.json", description="Account config file (JSON)")

    # Agent collaborator. HTTP endpoint wins over the CLI command
    agent_url: Optional[str] = Field(default=None, description="Agent HTTP endpoint")
    agent_token: Optional[SecretStr] = Field(default=None, description="Bearer token for agent_url")
    agent_command: str = Field(default="openclaw", description="Agent CLI executable")
    agent_timeout: float = Field(default=120.0, description="Agent call timeout (seconds)")

    # Per-sender rate limit
    rate_limit_max_requests: int = Field(default=5, ge=1)
    rate_limit_window_seconds: float = Field(default=60.0, gt=0)

    # Outbound pacing
    chunk_max_length: int = Field(default=450, ge=1, le=480)
    chunk_delay: float = Field(default=0.5, ge=0)

    log_file: str = Field(default="~/ircbridge.log")
    debug: bool = Field(default=False)

    model_config = {"env_prefix": "IRCBRIDGE_", "env_file": ".env", "extra": "ignore"}


# ============================================================
# ACCOUNT CONFIG
# ============================================================

class DmPolicy(str, Enum):
    DISABLED = "disabled"
    OPEN = "open"
    PAIRING = "pairing"


class GroupPolicy(str, Enum):
    ALLOWLIST = "allowlist"
    DENYLIST = "denylist"
    ALL = "all"


class SaslConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str = Field(min_length=1)
    password: SecretStr


class DmConfig(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    policy: DmPolicy = DmPolicy.PAIRING
    allow_from: tuple[str, ...] = Field(default=(), alias="allowFrom")


class GroupConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    users: tuple[str, ...] = ("*",)


class AccountConfig(BaseModel):
    """Immutable per-account IRC configuration."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    enabled: bool = True
    server: str = ""
    port: int = Field(default=6697, ge=1, le=65535)
    tls: bool = Field(default=True, alias="ssl")
    nickname: str = "ircbridge"
    username: Optional[str] = None
    realname: str = Field(default="IRC Agent", max_length=128)
    sasl: Optional[SaslConfig] = None
    # Legacy NickServ IDENTIFY is plaintext; only used with explicit opt-in
    nickserv_password: Optional[SecretStr] = Field(default=None, alias="nickservPassword")
    allow_insecure_nickserv: bool = Field(default=False, alias="allowInsecureNickserv")
    channels: tuple[str, ...] = ()
    dm: DmConfig = DmConfig()
    group_policy: GroupPolicy = Field(default=GroupPolicy.ALLOWLIST, alias="groupPolicy")
    groups: dict[str, GroupConfig] = Field(default_factory=dict)

    @field_validator("nickname")
    @classmethod
    def _check_nickname(cls, value: str) -> str:
        if not is_valid_nickname(value):
            raise ValueError(f"invalid IRC nickname: {value!r}")
        return value

    @field_validator("channels")
    @classmethod
    def _check_channels(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        for channel in value:
            if not is_valid_channel(channel):
                raise ValueError(f"invalid IRC channel: {channel!r}")
        return value

    @property
    def configured(self) -> bool:
        return bool(self.server.strip())

    @property
    def effective_username(self) -> str:
        return self.username or self.nickname

    @property
    def auth_mode(self) -> str:
        if self.sasl:
            return "sasl"
        if self.nickserv_password and self.allow_insecure_nickserv:
            return "nickserv"
        return "none"


def parse_accounts(data: dict) -> dict[str, AccountConfig]:
    """Build account configs from a parsed config document.

    Accepts either ``{"accounts": {id: {...}}}`` or a single account
    object, which becomes the ``default`` account.
    """
    if "accounts" in data and isinstance(data["accounts"], dict):
        raw_accounts = data["accounts"]
    else:
        raw_accounts = {DEFAULT_ACCOUNT_ID: data}

    accounts = {}
    for account_id, raw in raw_accounts.items():
        account = AccountConfig.model_validate(raw or {})
        if account.sasl and not account.tls:
            logger.warning(
                f"[{account_id}] SASL credentials configured without TLS — "
                "the password is only base64-encoded on the wire."
            )
        if account.nickserv_password and not account.sasl and not account.allow_insecure_nickserv:
            logger.warning(
                f"[{account_id}] nickservPassword is set but allowInsecureNickserv is false — "
                "NickServ IDENTIFY will NOT be sent. Configure SASL instead."
            )
        accounts[account_id] = account
    return accounts


def load_accounts(path: str | Path) -> dict[str, AccountConfig]:
    """Load and validate account configs from a JSON file."""
    path = Path(path).expanduser()
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top-level JSON value must be an object")
    return parse_accounts(data)


def load_settings() -> BridgeSettings:
    """Load settings from environment."""
    return BridgeSettings()
