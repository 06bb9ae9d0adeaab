"""Incremental XML token scanner over an asyncio byte stream.

The scanner feeds tag-bounded chunks (``readuntil(b">")``) into an lxml
pull parser and hands out start-element events one at a time. Everything else
(text, end tags, comments) is consumed silently. Reading never goes past the
last ``>`` the server sent, so no plaintext is left buffered when the
connection is handed to TLS after ``<proceed/>``.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field

from loguru import logger
from lxml import etree

from xmppcheck.core.errors import MalformedStream, StreamClosed

# Upper bound for a single tag (or text run up to the next '>')
_CHUNK_LIMIT = 64 * 1024


@dataclass(frozen=True)
class OpenTag:
    """Qualified name and attributes of a start-element event."""

    namespace: str
    local: str
    attrs: dict[str, str] = field(default_factory=dict)

    @property
    def qname(self) -> str:
        """Clark notation, e.g. ``{jabber:client}message``."""
        if self.namespace:
            return f"{{{self.namespace}}}{self.local}"
        return self.local


def _open_tag(element: etree._Element) -> OpenTag:
    name = etree.QName(element)
    return OpenTag(namespace=name.namespace or "", local=name.localname, attrs=dict(element.attrib))


class TokenScanner:
    """Forward-only start-tag scanner bound to one connection's reader."""

    def __init__(self, reader: asyncio.StreamReader) -> None:
        self._reader: asyncio.StreamReader | None = reader
        self._parser = etree.XMLPullParser(
            events=("start", "end"),
            resolve_entities=False,
            no_network=True,
            huge_tree=False,
        )
        self._events: deque[tuple[str, etree._Element]] = deque()
        self._depth = 0
        self._current: etree._Element | None = None
        self._finished: etree._Element | None = None

    @property
    def depth(self) -> int:
        """Number of currently open elements (1 = inside <stream:stream>)."""
        return self._depth

    def detach(self) -> None:
        """Unbind from the reader. Further reads raise StreamClosed."""
        self._reader = None
        self._events.clear()

    async def _read_chunk(self) -> bytes:
        if self._reader is None:
            raise StreamClosed("Scanner is detached from its connection", code="detached")
        try:
            return await self._reader.readuntil(b">")
        except asyncio.IncompleteReadError as exc:
            if exc.partial.strip():
                logger.debug("Discarding {} trailing bytes at EOF", len(exc.partial))
            raise StreamClosed("Connection closed by server", code="eof", original_error=exc) from exc
        except asyncio.LimitOverrunError as exc:
            raise MalformedStream(
                "Oversized XML token",
                code="token_too_large",
                details={"consumed": exc.consumed},
                original_error=exc,
            ) from exc

    async def _next_event(self) -> tuple[str, etree._Element]:
        while not self._events:
            data = await self._read_chunk()
            if len(data) > _CHUNK_LIMIT:
                raise MalformedStream("Oversized XML token", code="token_too_large")
            try:
                self._parser.feed(data)
                self._events.extend(self._parser.read_events())
            except etree.XMLSyntaxError as exc:
                raise MalformedStream(f"Invalid XML: {exc}", code="syntax", original_error=exc) from exc
        event, element = self._events.popleft()
        if event == "start":
            self._depth += 1
        else:
            self._depth -= 1
            if self._depth == 1:
                self._finished = element
            elif self._depth == 0:
                raise StreamClosed("Server closed the stream", code="stream_end")
        return event, element

    def _prune(self) -> None:
        """Clear the last completed top-level element and drop its preceding siblings."""
        element = self._finished
        if element is None:
            return
        self._finished = None
        parent = element.getparent()
        element.clear()
        if parent is not None:
            while element.getprevious() is not None:
                del parent[0]

    async def next_start(self) -> OpenTag:
        """Return the next start-element, discarding every other token on the way."""
        self._prune()
        while True:
            event, element = await self._next_event()
            if event == "start":
                self._current = element
                return _open_tag(element)

    async def skip(self) -> None:
        """Consume the subtree of the last returned open tag without inspecting it."""
        await self._consume_current()

    async def read_element(self) -> etree._Element:
        """Consume the subtree of the last returned open tag and return it complete."""
        return await self._consume_current()

    async def _consume_current(self) -> etree._Element:
        element = self._current
        if element is None:
            raise RuntimeError("No open element to consume")
        self._current = None
        outer = self._depth - 1
        while True:
            event, _ = await self._next_event()
            if event == "end" and self._depth == outer:
                return element
