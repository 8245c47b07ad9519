"""Account registry — resolved IRC accounts, keyed by account id.

An explicit object owned by the Gateway. Nothing here is module-level
state, so separate gateways (and tests) never share accounts.
"""

from dataclasses import dataclass
from typing import Optional

from .config import DEFAULT_ACCOUNT_ID, AccountConfig


@dataclass(frozen=True)
class ResolvedAccount:
    account_id: str
    name: str
    enabled: bool
    configured: bool
    config: AccountConfig

    @classmethod
    def from_config(cls, account_id: str, config: AccountConfig, name: Optional[str] = None) -> "ResolvedAccount":
        return cls(
            account_id=account_id,
            name=name or account_id,
            enabled=config.enabled,
            configured=config.configured,
            config=config,
        )

    def describe(self) -> dict:
        """Public description. No credentials."""
        return {
            "account_id": self.account_id,
            "name": self.name,
            "enabled": self.enabled,
            "configured": self.configured,
            "server": self.config.server,
            "nickname": self.config.nickname,
        }


class AccountRegistry:
    def __init__(self):
        self._accounts: dict[str, ResolvedAccount] = {}

    def register(
        self,
        account_id: str,
        config: AccountConfig,
        name: Optional[str] = None,
    ) -> ResolvedAccount:
        """Add or replace an account."""
        account = ResolvedAccount.from_config(account_id, config, name)
        self._accounts[account_id] = account
        return account

    def get(self, account_id: str = DEFAULT_ACCOUNT_ID) -> Optional[ResolvedAccount]:
        return self._accounts.get(account_id)

    def all(self) -> list[ResolvedAccount]:
        return list(self._accounts.values())

    def remove(self, account_id: str) -> bool:
        return self._accounts.pop(account_id, None) is not None

    def has(self, account_id: str) -> bool:
        return account_id in self._accounts

    def clear(self):
        self._accounts.clear()

    def resolve_by_nickname(self, nickname: str) -> Optional[ResolvedAccount]:
        wanted = nickname.lower()
        for account in self._accounts.values():
            if account.config.nickname.lower() == wanted:
                return account
        return None

    def resolve_by_server(self, server: str) -> Optional[ResolvedAccount]:
        wanted = server.lower()
        for account in self._accounts.values():
            if account.config.server.lower() == wanted:
                return account
        return None

    def __len__(self) -> int:
        return len(self._accounts)

    def __contains__(self, account_id: str) -> bool:
        return account_id in self._accounts
