"""Exception hierarchy for the IRC bridge."""

from typing import Optional


# ════════════════════════════════════════════════════════
# Connection errors: raised by ConnectionManager and the
# outbound sender.  Rate-limit and authorization outcomes
# are result values, not exceptions.
# ════════════════════════════════════════════════════════

class BridgeError(Exception):
    """Base class for all bridge errors."""
    pass


class RegistrationError(BridgeError):
    """Server rejected the handshake or authentication."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class NotConnectedError(BridgeError):
    """Send attempted while the connection is not connected and registered."""
    pass


class ConnectionTerminatedError(BridgeError):
    """The manager was explicitly disconnected and accepts no further connects."""
    pass


class ReconnectExhaustedError(BridgeError):
    """Reconnect attempts ran out. Needs operator intervention."""

    def __init__(self, attempts: int):
        super().__init__(f"Max reconnection attempts ({attempts}) reached")
        self.attempts = attempts


# ════════════════════════════════════════════════════════
# Agent errors
# ════════════════════════════════════════════════════════

class AgentError(BridgeError):
    """The agent collaborator failed (bad status, bad output, timeout)."""
    pass


class AgentInvocationError(BridgeError):
    """Wraps any failure raised while handing a message to the agent.

    The reference id is the only part that may be shown to chat users.
    """

    def __init__(self, reference: str, cause: Optional[BaseException] = None):
        super().__init__(f"Agent invocation failed (ref {reference})")
        self.reference = reference
        self.cause = cause
