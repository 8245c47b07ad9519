"""IRC transport — structured events over a wire-level IRC client.

The lifecycle manager never touches sockets or raw protocol lines. It
talks to a ``Transport``, which emits the events below and accepts a
handful of outbound commands. ``IrcTransport`` implements it on top of
the ``irc`` package's asyncio client, including SASL PLAIN.
"""

import base64
import logging
import ssl
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Union

import irc.client
import irc.client_aio
import irc.connection

logger = logging.getLogger("ircbridge.transport")


# ============================================================
# EVENTS
# ============================================================

@dataclass(frozen=True)
class Registered:
    nickname: str


@dataclass(frozen=True)
class Joined:
    channel: str
    nick: str


@dataclass(frozen=True)
class Parted:
    channel: str
    nick: str


@dataclass(frozen=True)
class Kicked:
    channel: str
    kicked: str
    by: str
    reason: str = ""


@dataclass(frozen=True)
class NickChanged:
    old: str
    new: str


@dataclass(frozen=True)
class LineReceived:
    sender: str
    target: str
    text: str


@dataclass(frozen=True)
class SocketClosed:
    reason: str = ""


@dataclass(frozen=True)
class SocketError:
    message: str


@dataclass(frozen=True)
class ProtocolError:
    message: str


TransportEvent = Union[
    Registered, Joined, Parted, Kicked, NickChanged,
    LineReceived, SocketClosed, SocketError, ProtocolError,
]

EventListener = Callable[[TransportEvent], None]


@dataclass(frozen=True)
class ConnectOptions:
    host: str
    port: int
    tls: bool
    nickname: str
    username: str
    realname: str
    sasl_username: Optional[str] = None
    sasl_password: Optional[str] = None

    @property
    def uses_sasl(self) -> bool:
        return bool(self.sasl_username and self.sasl_password)

    def __repr__(self) -> str:
        # Never leak the SASL password into logs
        return (
            f"ConnectOptions(host={self.host!r}, port={self.port}, tls={self.tls}, "
            f"nickname={self.nickname!r}, sasl={self.uses_sasl})"
        )


class Transport(ABC):
    """Abstract IRC connection that emits ``TransportEvent``s."""

    def __init__(self):
        self._listener: Optional[EventListener] = None

    def set_listener(self, listener: EventListener):
        self._listener = listener

    def remove_listeners(self):
        """Detach the listener. No events are delivered afterwards."""
        self._listener = None

    def emit(self, event: TransportEvent):
        if self._listener is not None:
            self._listener(event)

    @abstractmethod
    async def connect(self, options: ConnectOptions) -> None:
        """Open the socket and start the registration handshake.

        Returns once the handshake has been sent. Registration is
        reported later through a ``Registered`` event.
        """
        ...

    @abstractmethod
    def say(self, target: str, text: str) -> None:
        ...

    @abstractmethod
    def join(self, channel: str) -> None:
        ...

    @abstractmethod
    def part(self, channel: str, reason: str = "") -> None:
        ...

    @abstractmethod
    def quit(self, reason: str = "") -> None:
        ...

    @abstractmethod
    def close(self) -> None:
        """Drop the socket. Emits ``SocketClosed`` if a listener is attached."""
        ...


# ============================================================
# irc.client_aio ADAPTER
# ============================================================

# Numerics show up under their names when the irc package knows them
_SASL_SUCCESS = ("903", "saslsuccess")
_SASL_FAILURE = ("902", "904", "905", "906", "nicklocked", "saslfail", "sasltoolong", "saslaborted")
_REGISTRATION_ERRORS = (
    "error", "nicknameinuse", "erroneusnickname", "passwdmismatch",
    "yourebannedcreep", "unavailresource",
)

# AUTHENTICATE payloads are sent in 400-byte pieces
_SASL_CHUNK = 400


def _nick(source) -> str:
    nick = getattr(source, "nick", None)
    return nick if nick else str(source or "")


def _event_text(event) -> str:
    parts = [a for a in (event.arguments or []) if a]
    if parts:
        return parts[-1]
    return event.target or ""


class IrcTransport(Transport):
    """Transport backed by ``irc.client_aio``.

    CTCP messages are decoded by the irc package; they are re-wrapped in
    \\x01 delimiters so classification stays with the sanitizer.
    """

    def __init__(self):
        super().__init__()
        self._reactor: Optional[irc.client_aio.AioReactor] = None
        self._connection: Optional[irc.client_aio.AioConnection] = None
        self._options: Optional[ConnectOptions] = None
        self._handlers: list[tuple[str, Callable]] = []

    async def connect(self, options: ConnectOptions) -> None:
        self._options = options
        self._ensure_reactor()

        if options.tls:
            factory = irc.connection.AioFactory(ssl=ssl.create_default_context())
        else:
            factory = irc.connection.AioFactory()

        logger.debug(f"Connecting with {options!r}")
        try:
            await self._connection.connect(
                options.host,
                options.port,
                options.nickname,
                username=options.username,
                ircname=options.realname,
                connect_factory=factory,
            )
        except irc.client.ServerConnectionError as e:
            raise OSError(str(e)) from e

    def say(self, target: str, text: str) -> None:
        self._require_connection().privmsg(target, text)

    def join(self, channel: str) -> None:
        self._require_connection().join(channel)

    def part(self, channel: str, reason: str = "") -> None:
        self._require_connection().part(channel, reason)

    def quit(self, reason: str = "") -> None:
        self._require_connection().quit(reason)

    def close(self) -> None:
        if self._connection is not None and self._connection.is_connected():
            self._connection.disconnect()

    def remove_listeners(self):
        super().remove_listeners()
        if self._reactor is not None:
            for name, handler in self._handlers:
                self._reactor.remove_global_handler(name, handler)
        self._handlers = []

    def _require_connection(self) -> irc.client_aio.AioConnection:
        if self._connection is None or not self._connection.is_connected():
            raise irc.client.ServerNotConnectedError("Not connected.")
        return self._connection

    def _ensure_reactor(self) -> irc.client_aio.AioConnection:
        if self._reactor is None:
            self._reactor = irc.client_aio.AioReactor(on_connect=self._on_socket_open)
            self._connection = self._reactor.server()
        if not self._handlers:
            self._install_handlers()
        return self._connection

    def _add(self, names, handler):
        if isinstance(names, str):
            names = (names,)
        for name in names:
            self._reactor.add_global_handler(name, handler)
            self._handlers.append((name, handler))

    def _install_handlers(self):
        self._add("welcome", self._on_welcome)
        self._add("join", self._on_join)
        self._add("part", self._on_part)
        self._add("kick", self._on_kick)
        self._add("nick", self._on_nick)
        self._add(("pubmsg", "privmsg"), self._on_message)
        # The irc package fires "ctcp" and then "action" for every ACTION;
        # only "ctcp" is handled so each line is emitted once
        self._add("ctcp", self._on_ctcp)
        self._add("disconnect", self._on_disconnect)
        self._add(_REGISTRATION_ERRORS, self._on_error)
        self._add("cap", self._on_cap)
        self._add("authenticate", self._on_authenticate)
        self._add(_SASL_SUCCESS, self._on_sasl_success)
        self._add(_SASL_FAILURE, self._on_sasl_failure)

    # ── SASL ────────────────────────────────────────────────

    def _on_socket_open(self, *args):
        # Runs before NICK/USER go out, so the server holds registration
        if self._options and self._options.uses_sasl:
            self._connection.send_raw("CAP REQ :sasl")

    def _on_cap(self, connection, event):
        args = [a.lower() for a in event.arguments or []]
        if not args:
            return
        subcommand, caps = args[0], " ".join(args[1:])
        if subcommand == "ack" and "sasl" in caps.split():
            connection.send_raw("AUTHENTICATE PLAIN")
        elif subcommand == "nak":
            self.emit(ProtocolError("Server does not support SASL"))

    def _on_authenticate(self, connection, event):
        challenge = event.target or (event.arguments[0] if event.arguments else "")
        if challenge != "+":
            return
        opts = self._options
        raw = f"{opts.sasl_username}\0{opts.sasl_username}\0{opts.sasl_password}".encode("utf-8")
        encoded = base64.b64encode(raw).decode("ascii")
        for i in range(0, len(encoded), _SASL_CHUNK):
            connection.send_raw(f"AUTHENTICATE {encoded[i:i + _SASL_CHUNK]}")
        if len(encoded) % _SASL_CHUNK == 0:
            connection.send_raw("AUTHENTICATE +")

    def _on_sasl_success(self, connection, event):
        logger.info("SASL authentication succeeded")
        connection.send_raw("CAP END")

    def _on_sasl_failure(self, connection, event):
        self.emit(ProtocolError(f"SASL authentication failed: {_event_text(event)}"))

    # ── Lifecycle ───────────────────────────────────────────

    def _on_welcome(self, connection, event):
        self.emit(Registered(nickname=connection.get_nickname()))

    def _on_join(self, connection, event):
        self.emit(Joined(channel=event.target, nick=_nick(event.source)))

    def _on_part(self, connection, event):
        self.emit(Parted(channel=event.target, nick=_nick(event.source)))

    def _on_kick(self, connection, event):
        args = event.arguments or []
        self.emit(Kicked(
            channel=event.target,
            kicked=args[0] if args else "",
            by=_nick(event.source),
            reason=args[1] if len(args) > 1 else "",
        ))

    def _on_nick(self, connection, event):
        self.emit(NickChanged(old=_nick(event.source), new=event.target))

    def _on_disconnect(self, connection, event):
        self.emit(SocketClosed(reason=_event_text(event)))

    def _on_error(self, connection, event):
        self.emit(ProtocolError(f"{event.type}: {_event_text(event)}"))

    # ── Messages ────────────────────────────────────────────

    def _on_message(self, connection, event):
        text = event.arguments[0] if event.arguments else ""
        self.emit(LineReceived(sender=_nick(event.source), target=event.target, text=text))

    def _on_ctcp(self, connection, event):
        body = " ".join(a for a in event.arguments or [] if a)
        self.emit(LineReceived(
            sender=_nick(event.source),
            target=event.target,
            text=f"\x01{body}\x01",
        ))
