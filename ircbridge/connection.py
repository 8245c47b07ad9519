"""Connection lifecycle — connect, register, join, reconnect, disconnect.

One ConnectionManager per account. It owns the transport and the
ConnectionState; nothing else mutates either. Lifecycle events are
applied as soon as the transport reports them. Received lines go onto
a per-account queue drained by a single consumer task, so inbound
messages for one account are handled strictly one at a time.

State machine:
    IDLE → CONNECTING → REGISTERED → DISCONNECTED → (CONNECTING | TERMINATED)

TERMINATED is entered by disconnect() (absorbing) or by running out of
reconnect attempts (an operator may call connect() again).
"""

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional

from .communication.sanitize import normalize_target
from .config import AccountConfig
from .errors import (
    BridgeError,
    ConnectionTerminatedError,
    NotConnectedError,
    ReconnectExhaustedError,
    RegistrationError,
)
from .transport import (
    ConnectOptions,
    Joined,
    Kicked,
    LineReceived,
    NickChanged,
    Parted,
    ProtocolError,
    Registered,
    SocketClosed,
    SocketError,
    Transport,
    TransportEvent,
)

logger = logging.getLogger("ircbridge.connection")

INITIAL_RECONNECT_DELAY = 1.0
MAX_RECONNECT_DELAY = 300.0
MAX_RECONNECT_ATTEMPTS = 10
REGISTRATION_TIMEOUT = 60.0
QUIT_MESSAGE = "Goodbye"


class LifecycleState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    REGISTERED = "registered"
    DISCONNECTED = "disconnected"
    TERMINATED = "terminated"


@dataclass
class ConnectionState:
    connected: bool = False
    registered: bool = False
    nickname: Optional[str] = None
    channels: set[str] = field(default_factory=set)
    last_error: Optional[str] = None
    reconnect_attempts: int = 0

    def reset(self):
        self.connected = False
        self.registered = False
        self.channels.clear()


@dataclass(frozen=True)
class ReconnectPolicy:
    """Capped exponential backoff with a hard attempt ceiling."""

    initial_delay: float = INITIAL_RECONNECT_DELAY
    max_delay: float = MAX_RECONNECT_DELAY
    max_attempts: int = MAX_RECONNECT_ATTEMPTS

    def delay_for(self, attempts: int) -> float:
        """Delay before the next retry, given how many were already scheduled."""
        return min(self.initial_delay * (2 ** attempts), self.max_delay)


LineHandler = Callable[[LineReceived], Awaitable[None]]


class ConnectionManager:
    """Owns one account's IRC connection and its recovery.

    Usage:
        manager = ConnectionManager("main", config, IrcTransport(), on_line=monitor.handle_line)
        await manager.connect()
        # ... later ...
        await manager.disconnect()
    """

    def __init__(
        self,
        account_id: str,
        config: AccountConfig,
        transport: Transport,
        *,
        policy: Optional[ReconnectPolicy] = None,
        on_line: Optional[LineHandler] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
        on_fatal: Optional[Callable[[ReconnectExhaustedError], None]] = None,
        on_state_change: Optional[Callable[["ConnectionManager"], None]] = None,
        registration_timeout: float = REGISTRATION_TIMEOUT,
    ):
        """Initialize the manager.

        Args:
            account_id: Account this connection belongs to (log prefix, status key)
            config: Immutable account configuration
            transport: Wire-level client emitting TransportEvents
            policy: Reconnect backoff policy
            on_line: Async handler for received lines, called sequentially
            on_error: Called for socket and protocol errors (non-fatal)
            on_fatal: Called once when reconnect attempts are exhausted
            on_state_change: Called on every lifecycle transition
            registration_timeout: Seconds to wait for the server's welcome
        """
        self.account_id = account_id
        self.config = config
        self.policy = policy or ReconnectPolicy()
        self.lifecycle = LifecycleState.IDLE
        self._transport = transport
        self._on_line = on_line
        self._on_error = on_error
        self._on_fatal = on_fatal
        self._on_state_change = on_state_change
        self._registration_timeout = registration_timeout

        self._state = ConnectionState()
        self._should_reconnect = True
        self._destroyed = False
        self._registration: Optional[asyncio.Future] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._consumer_task: Optional[asyncio.Task] = None
        self._inbound: asyncio.Queue[LineReceived] = asyncio.Queue()

    # ── Read-only views ─────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        """Snapshot of the connection state. Mutating it has no effect."""
        return dataclasses.replace(self._state, channels=set(self._state.channels))

    @property
    def is_ready(self) -> bool:
        return self._state.connected and self._state.registered

    @property
    def nickname(self) -> str:
        return self._state.nickname or self.config.nickname

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    # ── Public API ──────────────────────────────────────────

    async def connect(self):
        """Connect, authenticate and wait for registration.

        Raises:
            ConnectionTerminatedError: after an explicit disconnect()
            RegistrationError: server rejected us or closed before welcome
            OSError: the socket could not be opened
        """
        if self._destroyed:
            raise ConnectionTerminatedError(
                f"[{self.account_id}] Client has been disconnected and cannot reconnect"
            )
        self._should_reconnect = True
        self._state.reconnect_attempts = 0
        self._ensure_consumer()
        await self._do_connect()

    async def disconnect(self):
        """Stop for good. Safe to call at any point, any number of times."""
        if self._destroyed:
            return
        self._should_reconnect = False
        self._destroyed = True

        reconnect_task, self._reconnect_task = self._reconnect_task, None
        if reconnect_task and not reconnect_task.done():
            reconnect_task.cancel()

        registration = self._registration
        if registration is not None and not registration.done():
            registration.set_exception(
                ConnectionTerminatedError(f"[{self.account_id}] Disconnected during connect")
            )

        was_connected = self._state.connected
        self._transport.remove_listeners()
        if was_connected:
            try:
                self._transport.quit(QUIT_MESSAGE)
            except Exception as e:
                logger.debug(f"[{self.account_id}] QUIT failed during disconnect: {e}")
        try:
            self._transport.close()
        except Exception as e:
            logger.debug(f"[{self.account_id}] Close failed during disconnect: {e}")

        self._state.reset()
        self._set_lifecycle(LifecycleState.TERMINATED)
        logger.info(f"[{self.account_id}] Disconnected")

        consumer_task, self._consumer_task = self._consumer_task, None
        for task in (reconnect_task, consumer_task):
            if task is None or task is asyncio.current_task():
                continue
            task.cancel()
            try:
                await task
            except (asyncio.CancelledError, Exception):
                pass

    def say(self, target: str, text: str):
        if not self.is_ready:
            raise NotConnectedError(f"[{self.account_id}] IRC client not connected and registered")
        self._transport.say(target, text)

    def join(self, channel: str):
        if not self.is_ready:
            logger.debug(f"[{self.account_id}] Not ready, skipping join {channel}")
            return
        self._transport.join(channel)

    def part(self, channel: str):
        if not self.is_ready:
            logger.debug(f"[{self.account_id}] Not ready, skipping part {channel}")
            return
        self._transport.part(channel)
        self._state.channels.discard(normalize_target(channel))

    # ── Connect / reconnect ─────────────────────────────────

    def _connect_options(self) -> ConnectOptions:
        cfg = self.config
        sasl_username = sasl_password = None
        if cfg.sasl:
            sasl_username = cfg.sasl.username
            sasl_password = cfg.sasl.password.get_secret_value()
            logger.info(f"[{self.account_id}] Using SASL authentication for {sasl_username}")
        return ConnectOptions(
            host=cfg.server,
            port=cfg.port,
            tls=cfg.tls,
            nickname=cfg.nickname,
            username=cfg.effective_username,
            realname=cfg.realname,
            sasl_username=sasl_username,
            sasl_password=sasl_password,
        )

    async def _do_connect(self):
        if self._destroyed:
            raise ConnectionTerminatedError(f"[{self.account_id}] Client has been disconnected")

        registration = asyncio.get_running_loop().create_future()
        self._registration = registration
        self._set_lifecycle(LifecycleState.CONNECTING)
        self._transport.set_listener(self._handle_event)

        try:
            await self._transport.connect(self._connect_options())
        except Exception as e:
            self._registration = None
            self._record_error(f"Connection failed: {e}", e)
            self._set_lifecycle(LifecycleState.DISCONNECTED)
            raise

        try:
            if self._destroyed:
                # disconnect() ran while the socket was opening
                self._close_transport()
                raise ConnectionTerminatedError(f"[{self.account_id}] Disconnected during connect")
            await asyncio.wait_for(registration, self._registration_timeout)
        except asyncio.TimeoutError:
            self._state.last_error = "Timed out waiting for registration"
            self._abort_attempt()
            raise RegistrationError(self._state.last_error) from None
        except RegistrationError:
            self._abort_attempt()
            raise
        finally:
            if self._registration is registration:
                self._registration = None

    def _abort_attempt(self):
        self._registration = None
        self._close_transport()
        if self.lifecycle is not LifecycleState.TERMINATED:
            self._set_lifecycle(LifecycleState.DISCONNECTED)

    def _close_transport(self):
        try:
            self._transport.close()
        except Exception as e:
            logger.debug(f"[{self.account_id}] Close failed: {e}")

    def _schedule_reconnect(self):
        if self.reconnect_pending:
            logger.debug(f"[{self.account_id}] Reconnect already pending")
            return
        if self._destroyed or not self._should_reconnect:
            return

        attempts = self._state.reconnect_attempts
        if attempts >= self.policy.max_attempts:
            error = ReconnectExhaustedError(self.policy.max_attempts)
            self._should_reconnect = False
            self._state.last_error = str(error)
            logger.error(f"[{self.account_id}] {error}")
            self._set_lifecycle(LifecycleState.TERMINATED)
            self._notify_error(error)
            if self._on_fatal:
                try:
                    self._on_fatal(error)
                except Exception as e:
                    logger.error(f"[{self.account_id}] on_fatal callback failed: {e}", exc_info=True)
            return

        delay = self.policy.delay_for(attempts)
        self._state.reconnect_attempts = attempts + 1
        logger.info(
            f"[{self.account_id}] Scheduling reconnect attempt "
            f"{attempts + 1}/{self.policy.max_attempts} in {delay:g}s"
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float):
        await asyncio.sleep(delay)
        if self._destroyed:
            return
        try:
            await self._do_connect()
            logger.info(f"[{self.account_id}] Reconnected successfully")
        except ConnectionTerminatedError:
            return
        except Exception as e:
            logger.error(f"[{self.account_id}] Reconnect failed: {e}")
            # Free the slot before scheduling the next attempt
            self._reconnect_task = None
            self._schedule_reconnect()

    # ── Inbound queue ───────────────────────────────────────

    def _ensure_consumer(self):
        if self._consumer_task is None or self._consumer_task.done():
            self._consumer_task = asyncio.create_task(self._consume_inbound())

    async def _consume_inbound(self):
        while True:
            event = await self._inbound.get()
            if self._on_line is None:
                continue
            try:
                await self._on_line(event)
            except Exception as e:
                logger.error(
                    f"[{self.account_id}] Error handling line from {event.sender}: {e}",
                    exc_info=True,
                )

    # ── Transport events ────────────────────────────────────

    def _is_me(self, nick: str) -> bool:
        return bool(nick) and normalize_target(nick) == normalize_target(self.nickname)

    def _handle_event(self, event: TransportEvent):
        if isinstance(event, LineReceived):
            self._inbound.put_nowait(event)
        elif isinstance(event, Registered):
            self._on_registered(event)
        elif isinstance(event, Joined):
            if self._is_me(event.nick):
                self._state.channels.add(normalize_target(event.channel))
                logger.info(f"[{self.account_id}] Joined {event.channel}")
        elif isinstance(event, Parted):
            if self._is_me(event.nick):
                self._state.channels.discard(normalize_target(event.channel))
                logger.info(f"[{self.account_id}] Left {event.channel}")
        elif isinstance(event, Kicked):
            if self._is_me(event.kicked):
                self._state.channels.discard(normalize_target(event.channel))
                logger.warning(
                    f"[{self.account_id}] Kicked from {event.channel} by {event.by}: "
                    f"{event.reason or 'no reason'}"
                )
        elif isinstance(event, NickChanged):
            if self._is_me(event.old):
                self._state.nickname = event.new
                logger.info(f"[{self.account_id}] Nick changed to {event.new}")
        elif isinstance(event, SocketClosed):
            self._on_socket_closed(event)
        elif isinstance(event, SocketError):
            self._record_error(f"Socket error: {event.message}", OSError(event.message))
        elif isinstance(event, ProtocolError):
            self._on_protocol_error(event)

    def _on_registered(self, event: Registered):
        state = self._state
        state.connected = True
        state.registered = True
        state.nickname = event.nickname or self.config.nickname
        state.last_error = None
        state.reconnect_attempts = 0
        logger.info(f"[{self.account_id}] Registered as {state.nickname}")

        self._legacy_identify()

        for channel in self.config.channels:
            logger.info(f"[{self.account_id}] Joining {channel}")
            self._transport.join(channel)

        self._set_lifecycle(LifecycleState.REGISTERED)
        if self._registration is not None and not self._registration.done():
            self._registration.set_result(None)

    def _legacy_identify(self):
        """NickServ IDENTIFY — only without SASL and only with explicit opt-in."""
        cfg = self.config
        if not cfg.nickserv_password or cfg.sasl:
            return
        if not cfg.allow_insecure_nickserv:
            self._state.last_error = (
                "NickServ password configured but allowInsecureNickserv is false; not identifying"
            )
            logger.error(
                f"[{self.account_id}] Refusing NickServ IDENTIFY: plaintext authentication "
                f"is not enabled. Configure SASL or set allowInsecureNickserv."
            )
            return
        logger.warning(
            f"[{self.account_id}] WARNING: Using NickServ authentication is insecure. "
            f"The IDENTIFY command is sent as plain text and may be logged by the IRC server. "
            f"Please migrate to SASL authentication."
        )
        self._transport.say("NickServ", f"IDENTIFY {cfg.nickserv_password.get_secret_value()}")

    def _on_socket_closed(self, event: SocketClosed):
        was_connected = self._state.connected
        self._state.reset()
        if was_connected:
            logger.warning(f"[{self.account_id}] Connection closed")
        if self.lifecycle is not LifecycleState.TERMINATED:
            self._set_lifecycle(LifecycleState.DISCONNECTED)

        registration = self._registration
        if registration is not None and not registration.done():
            # The attempt in flight owns the retry decision
            registration.set_exception(
                RegistrationError(event.reason or "Connection closed before registration")
            )
            return

        if was_connected and self._should_reconnect and not self._destroyed:
            self._schedule_reconnect()

    def _on_protocol_error(self, event: ProtocolError):
        self._record_error(f"IRC error: {event.message}", BridgeError(event.message))
        registration = self._registration
        if registration is not None and not registration.done():
            registration.set_exception(RegistrationError(event.message))

    def _record_error(self, message: str, error: Exception):
        self._state.last_error = message
        logger.error(f"[{self.account_id}] {message}")
        self._notify_error(error)

    def _notify_error(self, error: Exception):
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception as e:
            logger.error(f"[{self.account_id}] on_error callback failed: {e}", exc_info=True)

    def _set_lifecycle(self, lifecycle: LifecycleState):
        if lifecycle is self.lifecycle:
            return
        logger.debug(f"[{self.account_id}] {self.lifecycle.value} → {lifecycle.value}")
        self.lifecycle = lifecycle
        if self._on_state_change:
            try:
                self._on_state_change(self)
            except Exception as e:
                logger.error(f"[{self.account_id}] on_state_change callback failed: {e}", exc_info=True)
