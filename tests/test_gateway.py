"""Tests for the gateway: account runtimes, outbound API and status."""

import pytest

from fakes import FakeTransport, eventually
from ircbridge.agent import AgentClient
from ircbridge.config import BridgeSettings
from ircbridge.connection import LifecycleState
from ircbridge.gateway import PAIRING_APPROVED_MESSAGE, Gateway, GatewayOptions
from ircbridge.transport import LineReceived


class EchoAgent(AgentClient):
    """Replies with the message text upper-cased."""

    def __init__(self):
        self.calls = []

    async def invoke(self, session_key, message, reply):
        self.calls.append((session_key, message))
        text = message.upper()
        await reply(text)
        return text


class TransportFactory:
    def __init__(self):
        self.created: list[FakeTransport] = []
        self.connect_errors: list[Exception] = []

    def __call__(self) -> FakeTransport:
        transport = FakeTransport()
        transport.connect_errors = list(self.connect_errors)
        self.created.append(transport)
        return transport


def make_gateway(**option_overrides):
    factory = TransportFactory()
    options = GatewayOptions(chunk_delay=0, **option_overrides)
    gateway = Gateway(EchoAgent(), options, transport_factory=factory)
    return gateway, factory


class TestGatewayOptions:

    def test_from_settings(self):
        settings = BridgeSettings(
            rate_limit_max_requests=7, rate_limit_window_seconds=30, chunk_max_length=400, chunk_delay=1.0,
        )
        options = GatewayOptions.from_settings(settings)
        assert options.rate_limit.max_requests == 7
        assert options.rate_limit.window_seconds == 30
        assert options.chunk_max_length == 400
        assert options.chunk_delay == 1.0


class TestStartStop:

    @pytest.mark.asyncio
    async def test_start_account(self, make_account):
        gateway, factory = make_gateway()
        gateway.load({"main": make_account(channels=("#chan",))})
        await gateway.start()
        try:
            runtime = await gateway.start_account("main")
            assert runtime.connection.is_ready
            assert factory.created[0].joined == ["#chan"]

            snapshot = gateway.snapshot("main")
            assert snapshot["running"] is True
            assert snapshot["last_start_at"] is not None
            assert snapshot["server"] == "irc.example.org"
        finally:
            await gateway.stop()

        assert gateway.snapshot("main")["running"] is False
        assert gateway.snapshot("main")["last_stop_at"] is not None
        assert factory.created[0].quits == ["Goodbye"]

    @pytest.mark.asyncio
    async def test_unknown_account(self):
        gateway, _ = make_gateway()
        with pytest.raises(KeyError):
            await gateway.start_account("nope")

    @pytest.mark.asyncio
    async def test_unconfigured_account_refused(self, make_account):
        gateway, factory = make_gateway()
        gateway.load({"main": make_account(server="  ")})
        with pytest.raises(ValueError, match="not configured"):
            await gateway.start_account("main")
        assert factory.created == []

    @pytest.mark.asyncio
    async def test_restart_stops_previous_runtime(self, make_account):
        gateway, factory = make_gateway()
        gateway.load({"main": make_account()})
        try:
            first = await gateway.start_account("main")
            second = await gateway.start_account("main")
            assert first is not second
            assert first.connection.lifecycle is LifecycleState.TERMINATED
            assert factory.created[0].quits == ["Goodbye"]
            assert gateway.runtime("main") is second
        finally:
            await gateway.stop_all()

    @pytest.mark.asyncio
    async def test_connect_failure_recorded(self, make_account):
        gateway, factory = make_gateway()
        factory.connect_errors = [OSError("Connection refused")]
        gateway.load({"main": make_account()})

        with pytest.raises(OSError):
            await gateway.start_account("main")

        snapshot = gateway.snapshot("main")
        assert snapshot["running"] is False
        assert "Connection refused" in snapshot["last_error"]
        assert gateway.runtime("main") is None

    @pytest.mark.asyncio
    async def test_stop_unknown_account(self):
        gateway, _ = make_gateway()
        assert await gateway.stop_account("nope") is False


class TestMessageFlow:
    """Inbound line → agent → reply."""

    @pytest.mark.asyncio
    async def test_channel_message_round_trip(self, make_account):
        gateway, factory = make_gateway()
        gateway.load({"main": make_account(group_policy="all")})
        try:
            await gateway.start_account("main")
            transport = factory.created[0]

            transport.emit(LineReceived("alice", "#chan", "bot: ping"))
            await eventually(lambda: transport.said)

            assert transport.said == [("#chan", "PING")]
            assert gateway.agent.calls == [("irc:main:#chan", "ping")]
            snapshot = gateway.snapshot("main")
            assert snapshot["last_inbound_at"] is not None
            assert snapshot["last_outbound_at"] is not None
        finally:
            await gateway.stop_all()

    @pytest.mark.asyncio
    async def test_dm_session_keyed_by_sender(self, make_account):
        gateway, factory = make_gateway()
        gateway.load({"main": make_account(dm={"policy": "open"})})
        try:
            await gateway.start_account("main")
            transport = factory.created[0]

            transport.emit(LineReceived("Alice", "bot", "hello"))
            await eventually(lambda: transport.said)

            assert transport.said == [("Alice", "HELLO")]
            assert gateway.agent.calls == [("irc:main:Alice", "hello")]
        finally:
            await gateway.stop_all()


class TestOutboundApi:

    @pytest.mark.asyncio
    async def test_send_text_formats_target(self, make_account):
        gateway, factory = make_gateway()
        gateway.load({"default": make_account()})
        try:
            await gateway.start_account("default")
            result = await gateway.send_text("#General", "hi\nthere")
            assert result == {"channel": "irc", "to": "#general"}
            assert factory.created[0].said == [("#general", "hi"), ("#general", "there")]
        finally:
            await gateway.stop_all()

    @pytest.mark.asyncio
    async def test_send_text_requires_running_account(self):
        gateway, _ = make_gateway()
        with pytest.raises(KeyError):
            await gateway.send_text("#chan", "hi", account_id="main")

    @pytest.mark.asyncio
    async def test_pairing_approval_first_success_wins(self, make_account):
        gateway, factory = make_gateway()
        gateway.load({"a": make_account(), "b": make_account()})
        try:
            await gateway.start_account("a")
            await gateway.start_account("b")
            factory.created[0].drop()

            sent_via = await gateway.notify_pairing_approved("alice")
            assert sent_via == "b"
            assert factory.created[1].said == [("alice", PAIRING_APPROVED_MESSAGE)]
        finally:
            await gateway.stop_all()

    @pytest.mark.asyncio
    async def test_pairing_approval_nobody_running(self):
        gateway, _ = make_gateway()
        assert await gateway.notify_pairing_approved("alice") is None


class TestStatusIssues:

    @pytest.mark.asyncio
    async def test_no_issues_when_healthy(self, make_account):
        gateway, _ = make_gateway()
        gateway.load({"main": make_account()})
        try:
            await gateway.start_account("main")
            assert gateway.status_issues() == []
        finally:
            await gateway.stop_all()

    @pytest.mark.asyncio
    async def test_nickserv_refusal_reported(self, make_account):
        gateway, _ = make_gateway()
        gateway.load({"main": make_account(nickserv_password="pw")})
        try:
            await gateway.start_account("main")
            issues = gateway.status_issues()
            assert len(issues) == 1
            assert issues[0]["account_id"] == "main"
            assert issues[0]["kind"] == "runtime"
            assert issues[0]["message"].startswith("Channel error: ")
        finally:
            await gateway.stop_all()

    def test_snapshot_unknown_account(self):
        gateway, _ = make_gateway()
        with pytest.raises(KeyError):
            gateway.snapshot("nope")
