"""TCP connection and in-place STARTTLS upgrade on asyncio streams."""

from __future__ import annotations

import asyncio
import contextlib
import ssl
from dataclasses import dataclass

from loguru import logger

from xmppcheck.core.errors import HandshakeFailed

# Seconds to wait for the peer when closing; a TLS shutdown can otherwise stall
_CLOSE_TIMEOUT = 1.0


@dataclass(frozen=True)
class Connection:
    """Reader/writer pair for the current byte stream."""

    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    secure: bool = False

    async def write(self, data: bytes) -> None:
        self.writer.write(data)
        await self.writer.drain()

    async def close(self) -> None:
        """Close the socket. Errors while closing an already broken link are ignored."""
        if self.writer.is_closing():
            return
        self.writer.close()
        with contextlib.suppress(ConnectionError, ssl.SSLError, OSError):
            await asyncio.wait_for(self.writer.wait_closed(), _CLOSE_TIMEOUT)


async def connect(host: str, port: int) -> Connection:
    """Open a plaintext TCP connection."""
    logger.debug("Connecting to XMPP host {}:{} ...", host, port)
    reader, writer = await asyncio.open_connection(host, port)
    return Connection(reader, writer)


def create_ssl_context(verify: bool = True) -> ssl.SSLContext:
    """Default client context; ``verify=False`` accepts any certificate."""
    context = ssl.create_default_context()
    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


async def upgrade_to_tls(
    connection: Connection,
    server_name: str,
    ssl_context: ssl.SSLContext,
    timeout: float | None = None,
) -> Connection:
    """Run the TLS handshake over ``connection`` and return the secured handle.

    The caller must have consumed every plaintext byte up to and including
    ``<proceed/>``. The returned handle replaces ``connection``; the old one
    must not be used for I/O afterwards.
    """
    if connection.secure:
        raise HandshakeFailed("Connection is already encrypted", code="already_secure")
    logger.debug("Starting TLS handshake with {}", server_name)
    try:
        await connection.writer.start_tls(
            ssl_context,
            server_hostname=server_name,
            ssl_handshake_timeout=timeout,
        )
    except ssl.SSLCertVerificationError as exc:
        raise HandshakeFailed(
            f"Certificate verification failed: {exc.verify_message}",
            code="certificate",
            details={"server_name": server_name},
            original_error=exc,
        ) from exc
    except (ssl.SSLError, ConnectionError, TimeoutError, OSError) as exc:
        raise HandshakeFailed(
            f"Could not initialize STARTTLS connection: {exc}",
            code="handshake",
            details={"server_name": server_name},
            original_error=exc,
        ) from exc
    logger.debug("TLS established with {}", server_name)
    return Connection(connection.reader, connection.writer, secure=True)
