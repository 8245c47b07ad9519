"""Gateway — owns every account's runtime plus the shared rate limiter.

Per account: Transport → ConnectionManager → InboundMonitor → agent,
and agent reply → OutboundSender → ConnectionManager.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Union

from .accounts import AccountRegistry, ResolvedAccount
from .agent import AgentClient
from .communication.inbound import InboundMonitor
from .communication.outbound import CHUNK_DELAY, MAX_MESSAGE_LENGTH, OutboundSender
from .communication.sanitize import format_target
from .config import DEFAULT_ACCOUNT_ID, AccountConfig, BridgeSettings
from .connection import REGISTRATION_TIMEOUT, ConnectionManager, ReconnectPolicy
from .errors import ReconnectExhaustedError
from .ratelimit import RateLimitConfig, RateLimiter
from .transport import IrcTransport, Transport

logger = logging.getLogger("ircbridge.gateway")

PAIRING_APPROVED_MESSAGE = "Your pairing request has been approved!"


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AccountStatus:
    running: bool = False
    last_start_at: Optional[datetime] = None
    last_stop_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_inbound_at: Optional[datetime] = None
    last_outbound_at: Optional[datetime] = None

    def as_dict(self) -> dict:
        def iso(value: Optional[datetime]) -> Optional[str]:
            return value.isoformat() if value else None

        return {
            "running": self.running,
            "last_start_at": iso(self.last_start_at),
            "last_stop_at": iso(self.last_stop_at),
            "last_error": self.last_error,
            "last_inbound_at": iso(self.last_inbound_at),
            "last_outbound_at": iso(self.last_outbound_at),
        }


@dataclass
class GatewayOptions:
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    chunk_max_length: int = MAX_MESSAGE_LENGTH
    chunk_delay: float = CHUNK_DELAY
    reconnect: ReconnectPolicy = field(default_factory=ReconnectPolicy)
    registration_timeout: float = REGISTRATION_TIMEOUT

    @classmethod
    def from_settings(cls, settings: BridgeSettings) -> "GatewayOptions":
        return cls(
            rate_limit=RateLimitConfig(
                max_requests=settings.rate_limit_max_requests,
                window_seconds=settings.rate_limit_window_seconds,
            ),
            chunk_max_length=settings.chunk_max_length,
            chunk_delay=settings.chunk_delay,
        )


@dataclass
class AccountRuntime:
    account: ResolvedAccount
    connection: ConnectionManager
    sender: OutboundSender
    monitor: InboundMonitor


class Gateway:
    """Starts, stops and reports on IRC accounts.

    Usage:
        gateway = Gateway(agent, GatewayOptions.from_settings(settings))
        gateway.load(load_accounts(settings.config_path))
        await gateway.start()
        await gateway.start_account("default")
        ...
        await gateway.stop()
    """

    def __init__(
        self,
        agent: AgentClient,
        options: Optional[GatewayOptions] = None,
        transport_factory: Callable[[], Transport] = IrcTransport,
        registry: Optional[AccountRegistry] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.agent = agent
        self.options = options or GatewayOptions()
        self.registry = registry or AccountRegistry()
        self.rate_limiter = rate_limiter or RateLimiter(self.options.rate_limit)
        self._transport_factory = transport_factory
        self._runtimes: dict[str, AccountRuntime] = {}
        self._status: dict[str, AccountStatus] = {}

    # ── Lifecycle ───────────────────────────────────────────

    def load(self, accounts: dict[str, AccountConfig]) -> list[ResolvedAccount]:
        return [self.registry.register(account_id, config) for account_id, config in accounts.items()]

    async def start(self):
        await self.rate_limiter.start()

    async def stop(self):
        await self.stop_all()
        await self.rate_limiter.stop()

    def runtime(self, account_id: str) -> Optional[AccountRuntime]:
        return self._runtimes.get(account_id)

    def status(self, account_id: str) -> AccountStatus:
        return self._status.setdefault(account_id, AccountStatus())

    async def start_account(self, account: Union[ResolvedAccount, str]) -> AccountRuntime:
        """Connect one account. Any previous runtime for it is stopped first.

        Raises:
            KeyError: unknown account id
            ValueError: account has no server configured
        """
        if isinstance(account, str):
            resolved = self.registry.get(account)
            if resolved is None:
                raise KeyError(f"Unknown IRC account: {account}")
            account = resolved

        account_id = account.account_id
        if account_id in self._runtimes:
            await self.stop_account(account_id)

        if not account.configured:
            raise ValueError("IRC server not configured")

        cfg = account.config
        logger.info(f"[{account_id}] Starting IRC provider ({cfg.nickname}@{cfg.server}:{cfg.port})")

        status = self.status(account_id)
        status.running = True
        status.last_start_at = _now()
        status.last_error = None

        monitor: Optional[InboundMonitor] = None

        async def on_line(line):
            await monitor.handle_line(line)

        connection = ConnectionManager(
            account_id,
            cfg,
            self._transport_factory(),
            policy=self.options.reconnect,
            on_line=on_line,
            on_error=lambda e: self._on_error(account_id, e),
            on_fatal=lambda e: self._on_fatal(account_id, e),
            on_state_change=lambda manager: self._on_state_change(account_id, manager),
            registration_timeout=self.options.registration_timeout,
        )
        sender = OutboundSender(
            connection,
            max_length=self.options.chunk_max_length,
            chunk_delay=self.options.chunk_delay,
            on_sent=lambda: self._touch(account_id, "last_outbound_at"),
        )
        monitor = InboundMonitor(
            account_id,
            cfg,
            connection,
            sender,
            self.rate_limiter,
            self.agent.handle,
            rate_limit_config=self.options.rate_limit,
            on_inbound=lambda: self._touch(account_id, "last_inbound_at"),
        )
        runtime = AccountRuntime(account=account, connection=connection, sender=sender, monitor=monitor)
        self._runtimes[account_id] = runtime

        try:
            await connection.connect()
        except Exception as e:
            self._runtimes.pop(account_id, None)
            await connection.disconnect()
            status.running = False
            status.last_stop_at = _now()
            status.last_error = str(e)
            raise

        logger.info(f"[{account_id}] IRC provider started, connected as {connection.nickname}")
        return runtime

    async def stop_account(self, account_id: str) -> bool:
        runtime = self._runtimes.pop(account_id, None)
        if runtime is None:
            return False
        try:
            await runtime.connection.disconnect()
        except Exception as e:
            logger.error(f"[{account_id}] Error while stopping: {e}", exc_info=True)
        status = self.status(account_id)
        status.running = False
        status.last_stop_at = _now()
        logger.info(f"[{account_id}] IRC provider stopped")
        return True

    async def stop_all(self):
        """Stop every running account (reload and shutdown cleanup)."""
        for account_id in list(self._runtimes):
            await self.stop_account(account_id)

    # ── Outbound ────────────────────────────────────────────

    async def send_text(self, to: str, text: str, account_id: str = DEFAULT_ACCOUNT_ID) -> dict:
        runtime = self._runtimes.get(account_id)
        if runtime is None:
            raise KeyError(f"IRC client not running for account {account_id}")

        target = format_target(to)
        try:
            await runtime.sender.send(target, text or "")
        except Exception as e:
            logger.error(f"[{account_id}] Failed to send message to {to}: {e}")
            raise
        return {"channel": "irc", "to": target}

    async def notify_pairing_approved(self, nick: str) -> Optional[str]:
        """Tell ``nick`` they were paired. First account that can send wins."""
        for account_id, runtime in list(self._runtimes.items()):
            try:
                await runtime.sender.send(nick, PAIRING_APPROVED_MESSAGE)
            except Exception as e:
                logger.debug(f"[{account_id}] Failed to send approval to {nick}, trying next account: {e}")
                continue
            logger.info(f"[{account_id}] Sent pairing approval to {nick}")
            return account_id
        logger.warning(f"Could not deliver pairing approval to {nick}: no account available")
        return None

    # ── Status ──────────────────────────────────────────────

    def snapshot(self, account_id: str) -> dict:
        account = self.registry.get(account_id)
        if account is None:
            raise KeyError(f"Unknown IRC account: {account_id}")
        return {**account.describe(), **self.status(account_id).as_dict()}

    def status_issues(self) -> list[dict]:
        issues = []
        for account_id, status in self._status.items():
            error = (status.last_error or "").strip()
            if error:
                issues.append({
                    "account_id": account_id,
                    "kind": "runtime",
                    "message": f"Channel error: {error}",
                })
        return issues

    def _touch(self, account_id: str, attr: str):
        setattr(self.status(account_id), attr, _now())

    def _on_error(self, account_id: str, error: Exception):
        self.status(account_id).last_error = str(error)

    def _on_state_change(self, account_id: str, manager: ConnectionManager):
        state = manager.state
        status = self.status(account_id)
        if state.last_error:
            status.last_error = state.last_error
        elif manager.is_ready:
            status.last_error = None

    def _on_fatal(self, account_id: str, error: ReconnectExhaustedError):
        logger.error(f"[{account_id}] Giving up: {error}. Restart the account to try again.")
        status = self.status(account_id)
        status.running = False
        status.last_stop_at = _now()
        status.last_error = str(error)
