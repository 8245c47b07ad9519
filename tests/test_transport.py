"""Tests for the irc.client_aio transport adapter."""

import base64
from types import SimpleNamespace
from unittest.mock import MagicMock, call

import pytest
from irc.client import NickMask

from ircbridge.transport import (
    ConnectOptions,
    IrcTransport,
    Joined,
    Kicked,
    LineReceived,
    NickChanged,
    ProtocolError,
    Registered,
    SocketClosed,
)


def event(type_="privmsg", source="alice!a@example.org", target="#chan", arguments=None):
    return SimpleNamespace(
        type=type_,
        source=NickMask(source) if source else None,
        target=target,
        arguments=arguments or [],
    )


def sasl_options(username="acct", password="pw") -> ConnectOptions:
    return ConnectOptions(
        host="irc.example.org", port=6697, tls=True, nickname="bot", username="bot",
        realname="IRC Agent", sasl_username=username, sasl_password=password,
    )


def make_transport():
    transport = IrcTransport()
    events = []
    transport.set_listener(events.append)
    return transport, events


class TestSasl:
    """CAP REQ → AUTHENTICATE PLAIN → payload → CAP END."""

    def test_cap_request_on_socket_open(self):
        transport, _ = make_transport()
        transport._options = sasl_options()
        transport._connection = MagicMock()
        transport._on_socket_open()
        transport._connection.send_raw.assert_called_once_with("CAP REQ :sasl")

    def test_no_cap_request_without_sasl(self):
        transport, _ = make_transport()
        transport._options = sasl_options(username=None, password=None)
        transport._connection = MagicMock()
        transport._on_socket_open()
        transport._connection.send_raw.assert_not_called()

    def test_ack_starts_plain(self):
        transport, _ = make_transport()
        connection = MagicMock()
        transport._on_cap(connection, event("cap", target="*", arguments=["ACK", "sasl"]))
        connection.send_raw.assert_called_once_with("AUTHENTICATE PLAIN")

    def test_nak_is_protocol_error(self):
        transport, events = make_transport()
        transport._on_cap(MagicMock(), event("cap", target="*", arguments=["NAK", "sasl"]))
        assert isinstance(events[0], ProtocolError)

    def test_payload_sent_on_challenge(self):
        transport, _ = make_transport()
        transport._options = sasl_options("acct", "pw")
        connection = MagicMock()
        transport._on_authenticate(connection, event("authenticate", source=None, target="+"))

        expected = base64.b64encode(b"acct\0acct\0pw").decode()
        connection.send_raw.assert_called_once_with(f"AUTHENTICATE {expected}")

    def test_payload_split_in_400_byte_pieces(self):
        transport, _ = make_transport()
        transport._options = sasl_options("a" * 100, "b" * 98)
        connection = MagicMock()
        transport._on_authenticate(connection, event("authenticate", source=None, target="+"))

        encoded = base64.b64encode(("a" * 100 + "\0" + "a" * 100 + "\0" + "b" * 98).encode()).decode()
        assert len(encoded) == 400
        assert connection.send_raw.call_args_list == [
            call(f"AUTHENTICATE {encoded}"),
            call("AUTHENTICATE +"),
        ]

    def test_success_ends_capability_negotiation(self):
        transport, _ = make_transport()
        connection = MagicMock()
        transport._on_sasl_success(connection, event("903", arguments=["SASL authentication successful"]))
        connection.send_raw.assert_called_once_with("CAP END")

    def test_failure_is_protocol_error(self):
        transport, events = make_transport()
        transport._on_sasl_failure(MagicMock(), event("904", target="bot", arguments=["SASL authentication failed"]))
        assert events == [ProtocolError("SASL authentication failed: SASL authentication failed")]


class TestEventMapping:
    """irc package events become transport events."""

    def test_welcome(self):
        transport, events = make_transport()
        connection = MagicMock()
        connection.get_nickname.return_value = "bot"
        transport._on_welcome(connection, event("welcome"))
        assert events == [Registered("bot")]

    def test_join(self):
        transport, events = make_transport()
        transport._on_join(MagicMock(), event("join", source="bot!b@host", target="#chan"))
        assert events == [Joined(channel="#chan", nick="bot")]

    def test_kick(self):
        transport, events = make_transport()
        transport._on_kick(MagicMock(), event("kick", source="op!o@host", arguments=["bot", "spam"]))
        assert events == [Kicked(channel="#chan", kicked="bot", by="op", reason="spam")]

    def test_nick(self):
        transport, events = make_transport()
        transport._on_nick(MagicMock(), event("nick", source="bot!b@host", target="bot_"))
        assert events == [NickChanged(old="bot", new="bot_")]

    def test_message(self):
        transport, events = make_transport()
        transport._on_message(MagicMock(), event(arguments=["hello"]))
        assert events == [LineReceived(sender="alice", target="#chan", text="hello")]

    def test_action_rewrapped(self):
        transport, events = make_transport()
        transport._on_ctcp(MagicMock(), event("ctcp", arguments=["ACTION", "waves"]))
        assert events == [LineReceived(sender="alice", target="#chan", text="\x01ACTION waves\x01")]

    def test_ctcp_rewrapped(self):
        transport, events = make_transport()
        transport._on_ctcp(MagicMock(), event("ctcp", target="bot", arguments=["VERSION"]))
        assert events == [LineReceived(sender="alice", target="bot", text="\x01VERSION\x01")]

    def test_disconnect(self):
        transport, events = make_transport()
        transport._on_disconnect(MagicMock(), event("disconnect", arguments=["Connection reset"]))
        assert events == [SocketClosed("Connection reset")]

    def test_registration_error(self):
        transport, events = make_transport()
        transport._on_error(
            MagicMock(), event("nicknameinuse", target="*", arguments=["bot", "Nickname is already in use"]),
        )
        assert events == [ProtocolError("nicknameinuse: Nickname is already in use")]

    def test_no_events_after_remove_listeners(self):
        transport, events = make_transport()
        transport.remove_listeners()
        transport._on_message(MagicMock(), event(arguments=["hello"]))
        assert events == []


class TestLibraryDispatch:
    """Raw lines through the irc package's own event dispatch."""

    @pytest.mark.asyncio
    async def test_action_emitted_once(self):
        transport, events = make_transport()
        connection = transport._ensure_reactor()
        connection._process_line(":alice!a@example.org PRIVMSG #chan :\x01ACTION waves\x01")
        assert events == [LineReceived(sender="alice", target="#chan", text="\x01ACTION waves\x01")]

    @pytest.mark.asyncio
    async def test_ctcp_request_emitted_once(self):
        transport, events = make_transport()
        connection = transport._ensure_reactor()
        connection._process_line(":alice!a@example.org PRIVMSG bot :\x01VERSION\x01")
        assert events == [LineReceived(sender="alice", target="bot", text="\x01VERSION\x01")]

    @pytest.mark.asyncio
    async def test_plain_message_emitted_once(self):
        transport, events = make_transport()
        connection = transport._ensure_reactor()
        connection._process_line(":alice!a@example.org PRIVMSG #chan :hello there")
        assert events == [LineReceived(sender="alice", target="#chan", text="hello there")]

    @pytest.mark.asyncio
    async def test_handlers_installed_once(self):
        transport, events = make_transport()
        transport._ensure_reactor()
        connection = transport._ensure_reactor()
        connection._process_line(":alice!a@example.org PRIVMSG #chan :hi")
        assert len(events) == 1


class TestConnectOptions:

    def test_repr_hides_password(self):
        assert "pw" not in repr(sasl_options(password="pw"))

    def test_uses_sasl_requires_both(self):
        assert sasl_options().uses_sasl is True
        assert sasl_options(password=None).uses_sasl is False
