"""ircbridge — IRC channel adapter for conversational agents."""

__version__ = "0.1.0"
