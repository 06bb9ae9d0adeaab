"""Test the session handshake against a scripted server."""

import asyncio

import pytest

from tests.mocks import STREAM_HEADER, FakeUpgrader, FakeXMPPServer
from xmppcheck.core.errors import AuthenticationFailed, HandshakeFailed, StreamClosed
from xmppcheck.session import NegotiationState, Session
from xmppcheck.stream import Connection


class TestEstablish:
    """Full handshake ordering."""

    @pytest.mark.asyncio
    async def test_reaches_online(self):
        # Arrange
        upgrader = FakeUpgrader()
        async with FakeXMPPServer() as server:
            session = Session(server.config(), upgrader=upgrader)

            # Act
            await session.establish()
            await session.close()

        # Assert
        assert session.state is NegotiationState.ONLINE
        assert session.connection.secure
        assert session.resource is not None and len(session.resource) == 10

    @pytest.mark.asyncio
    async def test_three_stream_headers_and_one_upgrade(self):
        # Arrange
        upgrader = FakeUpgrader()
        async with FakeXMPPServer() as server:
            session = Session(server.config(), upgrader=upgrader)

            # Act
            await session.establish()
            await asyncio.sleep(0.05)
            await session.close()

        # Assert
        assert server.count(b"<stream:stream") == 3
        assert upgrader.calls == ["example.org"]
        assert server.events[:3] == ["stream:stream", "starttls", "stream:stream"]

    @pytest.mark.asyncio
    async def test_step_order_on_the_wire(self):
        # Arrange
        async with FakeXMPPServer() as server:
            session = Session(server.config(), upgrader=FakeUpgrader())

            # Act
            await session.establish()
            await asyncio.sleep(0.05)
            await session.close()

        # Assert
        assert server.events == [
            "stream:stream",
            "starttls",
            "stream:stream",
            "auth",
            "stream:stream",
            "iq",
            "presence",
        ]

    @pytest.mark.asyncio
    async def test_upgrade_happens_between_first_features_and_second_header(self):
        # Arrange
        seen: list[int] = []
        async with FakeXMPPServer() as server:
            upgrader = FakeUpgrader()

            async def recording_upgrader(conn: Connection, name, ctx, timeout) -> Connection:
                seen.append(server.count(b"<stream:stream"))
                return await upgrader(conn, name, ctx, timeout)

            session = Session(server.config(), upgrader=recording_upgrader)

            # Act
            await session.establish()
            await session.close()

        # Assert
        assert seen == [1]

    @pytest.mark.asyncio
    async def test_auth_failure_stops_before_bind(self):
        # Arrange
        async with FakeXMPPServer(auth_ok=False) as server:
            session = Session(server.config(), upgrader=FakeUpgrader())

            # Act
            with pytest.raises(AuthenticationFailed) as exc_info:
                await session.establish()
            await session.close()
            await asyncio.sleep(0.05)

        # Assert
        assert exc_info.value.code == "not-authorized"
        assert session.state is NegotiationState.FAILED
        assert server.count(b"<iq") == 0
        assert server.count(b"<presence") == 0

    @pytest.mark.asyncio
    async def test_auth_payload_contains_credentials(self):
        # Arrange
        import base64
        import re

        async with FakeXMPPServer() as server:
            session = Session(server.config(password="pw"), upgrader=FakeUpgrader())

            # Act
            await session.establish()
            await asyncio.sleep(0.05)
            await session.close()

        # Assert
        payload = re.search(rb"mechanism=\"PLAIN\">([^<]+)</auth>", server.received).group(1)
        assert base64.b64decode(payload) == b"\x00alice\x00pw"

    @pytest.mark.asyncio
    async def test_upgrade_failure_is_fatal(self):
        # Arrange
        async def failing_upgrader(conn, name, ctx, timeout):
            raise HandshakeFailed("Certificate verification failed", code="certificate")

        async with FakeXMPPServer() as server:
            session = Session(server.config(), upgrader=failing_upgrader)

            # Act & Assert
            with pytest.raises(HandshakeFailed):
                await session.establish()
            await session.close()
            await asyncio.sleep(0.05)

        assert server.count(b"<stream:stream") == 1
        assert server.count(b"<auth") == 0

    @pytest.mark.asyncio
    async def test_old_scanner_is_detached_after_upgrade(self):
        # Arrange
        scanners = []
        async with FakeXMPPServer() as server:
            upgrader = FakeUpgrader()

            async def capturing_upgrader(conn, name, ctx, timeout):
                scanners.append(session.scanner)
                return await upgrader(conn, name, ctx, timeout)

            session = Session(server.config(), upgrader=capturing_upgrader)

            # Act
            await session.establish()
            await session.close()

        # Assert
        assert scanners[0] is not session.scanner
        with pytest.raises(StreamClosed):
            await scanners[0].next_start()

    @pytest.mark.asyncio
    async def test_restart_after_auth_accepts_xml_declaration(self):
        # Arrange
        seen = []

        class RecordingSession(Session):
            def _bind_connection(self, conn):
                super()._bind_connection(conn)
                seen.append((self.state, self.scanner))

        async with FakeXMPPServer() as server:
            session = RecordingSession(server.config(), upgrader=FakeUpgrader())

            # Act
            await session.establish()
            await session.close()

        # Assert
        assert STREAM_HEADER.startswith("<?xml version='1.0'?>")
        assert session.state is NegotiationState.ONLINE
        assert [state for state, _ in seen] == [
            NegotiationState.DISCONNECTED,
            NegotiationState.TLS_NEGOTIATING,
            NegotiationState.AUTHENTICATING,
        ]
        assert seen[-1][1] is session.scanner
        assert session.scanner.depth == 1

    @pytest.mark.asyncio
    async def test_uses_resolver_when_no_host(self):
        # Arrange
        targets = []

        async def resolver(domain):
            targets.append(domain)
            return "127.0.0.1"

        async with FakeXMPPServer() as server:
            session = Session(server.config(host=None), upgrader=FakeUpgrader(), resolver=resolver)

            # Act
            await session.establish()
            await session.close()

        # Assert
        assert targets == ["example.org"]


class TestRefusals:
    """Server-side refusals during negotiation."""

    @pytest.mark.asyncio
    async def test_starttls_failure_raises_handshake_failed(self):
        # Arrange
        class RefusingServer(FakeXMPPServer):
            async def _respond(self, marker, writer):
                if marker == b"<starttls":
                    self.events.append("starttls")
                    writer.write(b"<failure xmlns='urn:ietf:params:xml:ns:xmpp-tls'/>")
                    await writer.drain()
                    return
                await super()._respond(marker, writer)

        async with RefusingServer() as server:
            session = Session(server.config(), upgrader=FakeUpgrader())

            # Act & Assert
            with pytest.raises(HandshakeFailed) as exc_info:
                await session.establish()
            await session.close()

        assert exc_info.value.code == "starttls_refused"

    @pytest.mark.asyncio
    async def test_stream_error_instead_of_features(self):
        # Arrange
        class ErrorServer(FakeXMPPServer):
            async def _respond(self, marker, writer):
                if marker == b"<stream:stream":
                    self.events.append("stream:stream")
                    from tests.mocks import STREAM_HEADER

                    writer.write(
                        (
                            STREAM_HEADER + "<stream:error><host-unknown "
                            "xmlns='urn:ietf:params:xml:ns:xmpp-streams'/></stream:error>"
                        ).encode()
                    )
                    await writer.drain()
                    return
                await super()._respond(marker, writer)

        async with ErrorServer() as server:
            session = Session(server.config(), upgrader=FakeUpgrader())

            # Act & Assert
            with pytest.raises(StreamClosed) as exc_info:
                await session.establish()
            await session.close()

        assert exc_info.value.code == "host-unknown"
