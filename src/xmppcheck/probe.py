"""Probe orchestration: deadline, negotiation, self-message echo, outcome."""

from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from xmppcheck.config import Config
from xmppcheck.core.constants import PROBE_BODY
from xmppcheck.core.errors import (
    AuthenticationFailed,
    HandshakeFailed,
    ProbeConfigurationError,
    StreamClosed,
    StreamError,
)
from xmppcheck.core.status import ProbeResult, Status
from xmppcheck.session import Session, StanzaRouter
from xmppcheck.stanzas import MessageUnit


class Probe:
    """One pass/fail check against the server of ``config.domain``.

    The whole run lives inside a single ``asyncio.timeout`` scope. When the
    echo arrives, the router fails, or the deadline fires, every task started
    here is cancelled and the connection closed before ``run()`` returns.
    """

    def __init__(self, config: Config, **session_options: Any) -> None:
        self._config = config
        self._session_options = session_options
        self.session: Session | None = None

    async def run(self) -> ProbeResult:
        logger.debug("XMPP check starting ...")
        try:
            async with asyncio.timeout(self._config.timeout):
                return await self._check()
        except TimeoutError:
            return ProbeResult(Status.CRITICAL, "Timeout")
        except AuthenticationFailed as exc:
            logger.debug("SASL failure condition: {}", exc.code)
            return ProbeResult(Status.CRITICAL, str(exc))
        except (ProbeConfigurationError, HandshakeFailed, StreamError) as exc:
            return ProbeResult(Status.CRITICAL, str(exc))
        except OSError as exc:
            return ProbeResult(Status.CRITICAL, f"Connection failed: {exc}")
        except Exception as exc:
            logger.exception("Unexpected probe failure")
            return ProbeResult(Status.UNKNOWN, f"Unexpected error: {exc}")

    async def _check(self) -> ProbeResult:
        session = Session(self._config, **self._session_options)
        self.session = session
        try:
            await session.establish()
            loop = asyncio.get_running_loop()
            started = loop.time()
            unit = await self._exchange(session)
            return self._evaluate(unit, loop.time() - started)
        finally:
            await session.close()

    async def _exchange(self, session: Session) -> MessageUnit:
        """Send the self-addressed message and wait for its echo."""
        router = StanzaRouter(session.scanner, session.deliveries)
        tasks: list[asyncio.Task[Any]] = [asyncio.create_task(router.run(), name="stanza-router")]
        try:
            logger.debug("Sending message ...")
            await session.send_message(self._config.jid, PROBE_BODY)
            waiter = asyncio.create_task(self._await_echo(session.deliveries), name="echo-waiter")
            tasks.append(waiter)
            logger.debug("Waiting for message to arrive ...")
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            if waiter in done:
                return waiter.result()
            tasks[0].result()
            raise StreamClosed("Stanza router stopped", code="router_stopped")
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _await_echo(self, deliveries: asyncio.Queue[MessageUnit]) -> MessageUnit:
        own = self._config.jid.lower()
        while True:
            unit = await deliveries.get()
            if unit.bare_sender.lower() == own:
                logger.debug("Received message")
                return unit
            logger.debug("Ignoring message from {}", unit.sender)

    def _evaluate(self, unit: MessageUnit, elapsed: float) -> ProbeResult:
        if unit.type == "error":
            return ProbeResult(Status.CRITICAL, "Message bounced")
        warning = self._config.warning
        if warning is not None and elapsed > warning:
            return ProbeResult(Status.WARNING, f"Message echo took {elapsed:.2f}s")
        return ProbeResult(Status.OK, "XMPP server is okay.")


async def run_probe(config: Config, **session_options: Any) -> ProbeResult:
    """Run one probe and return its result."""
    return await Probe(config, **session_options).run()
