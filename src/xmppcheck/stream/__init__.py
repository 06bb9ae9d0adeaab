"""Stream layer: XML token scanner, TCP/TLS transport, SRV resolution."""

from xmppcheck.stream.resolver import resolve_target
from xmppcheck.stream.scanner import OpenTag, TokenScanner
from xmppcheck.stream.transport import Connection, connect, create_ssl_context, upgrade_to_tls

__all__ = [
    "Connection",
    "OpenTag",
    "TokenScanner",
    "connect",
    "create_ssl_context",
    "resolve_target",
    "upgrade_to_tls",
]
