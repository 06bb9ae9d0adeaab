"""XMPP server liveness probe."""

__version__ = "0.1.0"
