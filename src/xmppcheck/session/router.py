"""Stanza router: forwards inbound <message/> stanzas, skips everything else."""

from __future__ import annotations

import asyncio

from loguru import logger

from xmppcheck.core.errors import StanzaDecodeError
from xmppcheck.stanzas import MESSAGE_QNAME, STREAM_ERROR_QNAME, MessageUnit, stream_error
from xmppcheck.stream import TokenScanner


class StanzaRouter:
    """Drains top-level stanzas from a negotiated stream.

    Must only be started once the session is ONLINE: it takes over the
    scanner and becomes its sole reader. Delivery waits for the consumer, so
    at most one message is in flight and inbound order is kept.
    """

    def __init__(self, scanner: TokenScanner, deliveries: asyncio.Queue[MessageUnit]) -> None:
        self._scanner = scanner
        self._deliveries = deliveries
        self.forwarded = 0
        self.skipped = 0
        self.dropped = 0

    async def run(self) -> None:
        """Route stanzas until the stream fails. Stream errors propagate."""
        while True:
            tag = await self._scanner.next_start()
            if tag.qname == MESSAGE_QNAME:
                element = await self._scanner.read_element()
                try:
                    unit = MessageUnit.from_element(element)
                except StanzaDecodeError as exc:
                    self.dropped += 1
                    logger.warning("Failed to parse incoming <message> stanza: {}", exc)
                    continue
                logger.debug("Received message from {} (type={})", unit.sender, unit.type or "normal")
                await self._deliveries.put(unit)
                self.forwarded += 1
            elif tag.qname == STREAM_ERROR_QNAME:
                raise stream_error(await self._scanner.read_element())
            else:
                # Not interested in other stanzas
                logger.debug("Skipping {}", tag.qname)
                await self._scanner.skip()
                self.skipped += 1
