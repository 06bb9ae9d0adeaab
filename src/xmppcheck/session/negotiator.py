"""Session establishment: plaintext stream, STARTTLS, SASL PLAIN, restart, bind, presence."""

from __future__ import annotations

import asyncio
import enum
import ssl
from collections.abc import Awaitable, Callable

from loguru import logger

from xmppcheck import stanzas
from xmppcheck.config import Config
from xmppcheck.core.errors import AuthenticationFailed, HandshakeFailed
from xmppcheck.stanzas import STREAM_ERROR_QNAME, MessageUnit, condition_of, random_label, stream_error
from xmppcheck.stream import Connection, TokenScanner, connect, create_ssl_context, resolve_target
from xmppcheck.stream import upgrade_to_tls as _upgrade_to_tls

Upgrader = Callable[[Connection, str, ssl.SSLContext, float | None], Awaitable[Connection]]
Resolver = Callable[[str], Awaitable[str]]
Connector = Callable[[str, int], Awaitable[Connection]]


class NegotiationState(enum.Enum):
    DISCONNECTED = "disconnected"
    STREAM_OPENED_PLAIN = "stream_opened_plain"
    FEATURES_PLAIN = "features_plain"
    TLS_NEGOTIATING = "tls_negotiating"
    STREAM_OPENED_SECURE = "stream_opened_secure"
    FEATURES_SECURE = "features_secure"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    STREAM_OPENED_BOUND = "stream_opened_bound"
    FEATURES_BOUND = "features_bound"
    RESOURCE_BINDING = "resource_binding"
    ONLINE = "online"
    FAILED = "failed"


class Session:
    """One client-to-server session, established exactly once per run.

    The session owns the current connection and the scanner reading from it.
    Both are swapped together after STARTTLS, and the scanner alone after
    SASL success; nothing else replaces them.
    Once ``establish()`` returns, the scanner belongs to the stanza router.
    """

    def __init__(
        self,
        config: Config,
        *,
        upgrader: Upgrader = _upgrade_to_tls,
        resolver: Resolver = resolve_target,
        connector: Connector = connect,
    ) -> None:
        self._config = config
        self._upgrader = upgrader
        self._resolver = resolver
        self._connector = connector
        self.host = config.domain
        self.jid = config.jid
        self.deliveries: asyncio.Queue[MessageUnit] = asyncio.Queue(maxsize=1)
        self.state = NegotiationState.DISCONNECTED
        self.resource: str | None = None
        self.bind_id: str | None = None
        self._conn: Connection | None = None
        self._scanner: TokenScanner | None = None

    @property
    def connection(self) -> Connection:
        if self._conn is None:
            raise RuntimeError("Session is not connected")
        return self._conn

    @property
    def scanner(self) -> TokenScanner:
        if self._scanner is None:
            raise RuntimeError("Session is not connected")
        return self._scanner

    def _bind_connection(self, conn: Connection) -> None:
        """Make ``conn`` current with a fresh scanner; the previous scanner is detached."""
        if self._scanner is not None:
            self._scanner.detach()
        self._conn = conn
        self._scanner = TokenScanner(conn.reader)

    def _advance(self, state: NegotiationState) -> None:
        logger.debug("Session {}: {} -> {}", self.jid, self.state.value, state.value)
        self.state = state

    async def send(self, data: bytes) -> None:
        await self.connection.write(data)

    async def _open_stream(self, opened: NegotiationState, features: NegotiationState) -> None:
        await self.send(stanzas.stream_header(self.jid, self.host))
        await self.scanner.next_start()  # <stream:stream>
        self._advance(opened)
        # Features are not inspected; STARTTLS and PLAIN are assumed offered
        features_tag = await self.scanner.next_start()
        if features_tag.qname == STREAM_ERROR_QNAME:
            raise stream_error(await self.scanner.read_element())
        await self.scanner.skip()
        self._advance(features)

    async def establish(self) -> None:
        """Run the handshake to ONLINE. Raises on any failure; nothing is retried."""
        try:
            await self._establish()
        except BaseException:
            self.state = NegotiationState.FAILED
            raise

    async def _establish(self) -> None:
        target = self._config.host or await self._resolver(self.host)
        logger.debug("Remote host: {}", target)
        self._bind_connection(await self._connector(target, self._config.port))

        await self._open_stream(NegotiationState.STREAM_OPENED_PLAIN, NegotiationState.FEATURES_PLAIN)
        await self._starttls()
        await self._open_stream(NegotiationState.STREAM_OPENED_SECURE, NegotiationState.FEATURES_SECURE)
        await self._authenticate()
        await self._open_stream(NegotiationState.STREAM_OPENED_BOUND, NegotiationState.FEATURES_BOUND)
        await self._bind_and_announce()
        logger.debug("XMPP stream is established")

    async def _starttls(self) -> None:
        await self.send(stanzas.starttls())
        response = await self.scanner.next_start()
        if response.local != "proceed":
            raise HandshakeFailed(
                "Server refused STARTTLS",
                code="starttls_refused",
                details={"response": response.qname},
            )
        # <proceed/> is empty; consuming its end leaves no plaintext unread
        await self.scanner.skip()
        self._advance(NegotiationState.TLS_NEGOTIATING)
        context = create_ssl_context(self._config.tls_verify)
        secured = await self._upgrader(self.connection, self.host, context, self._config.timeout)
        self._bind_connection(secured)

    async def _authenticate(self) -> None:
        self._advance(NegotiationState.AUTHENTICATING)
        logger.debug("Authenticating as {} (PLAIN)", self._config.username)
        await self.send(stanzas.auth_plain(self._config.username, self._config.password))
        response = await self.scanner.next_start()
        if response.local == "failure":
            condition = condition_of(await self.scanner.read_element())
            raise AuthenticationFailed(
                "Authentication failed.",
                code=condition or "failure",
                details={"condition": condition},
            )
        await self.scanner.skip()
        # The restarted stream is a new XML document on the same connection
        self._bind_connection(self.connection)
        self._advance(NegotiationState.AUTHENTICATED)
        logger.debug("Authentication successful")

    async def _bind_and_announce(self) -> None:
        self._advance(NegotiationState.RESOURCE_BINDING)
        self.resource = random_label()
        self.bind_id = random_label()
        await self.send(stanzas.bind_request(self.bind_id, self.resource))
        # The bind result is left to the router, which skips it like any iq
        await self.send(stanzas.presence())
        self._advance(NegotiationState.ONLINE)

    async def send_message(self, to: str, body: str) -> str:
        """Send a chat message from this session's JID. Returns the stanza id."""
        msg_id = random_label()
        await self.send(stanzas.message(self.jid, to, body, msg_id))
        return msg_id

    async def close(self) -> None:
        if self._scanner is not None:
            self._scanner.detach()
        if self._conn is not None:
            await self._conn.close()
