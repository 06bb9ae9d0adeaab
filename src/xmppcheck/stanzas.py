"""Stanza types and outbound serializers."""

from __future__ import annotations

import base64
import secrets
import string
from dataclasses import dataclass
from xml.sax.saxutils import quoteattr

from lxml import etree
from lxml.builder import ElementMaker

from xmppcheck.core.constants import NS_BIND, NS_CLIENT, NS_SASL, NS_STREAM, NS_TLS, RESOURCE_LENGTH
from xmppcheck.core.errors import StanzaDecodeError, StreamClosed

MESSAGE_QNAME = f"{{{NS_CLIENT}}}message"
STREAM_ERROR_QNAME = f"{{{NS_STREAM}}}error"

_LETTERS = string.ascii_letters

_client = ElementMaker(namespace=NS_CLIENT, nsmap={None: NS_CLIENT})
_bind = ElementMaker(namespace=NS_BIND, nsmap={None: NS_BIND})


def random_label(length: int = RESOURCE_LENGTH) -> str:
    """Random string drawn uniformly from the 52 ASCII letters."""
    return "".join(secrets.choice(_LETTERS) for _ in range(length))


@dataclass(frozen=True)
class MessageUnit:
    """One <message/> stanza as received from the stream."""

    sender: str
    id: str
    recipient: str
    type: str
    inner: bytes

    @classmethod
    def from_element(cls, element: etree._Element) -> MessageUnit:
        """Decode a complete <message/> element. Sender and recipient are required."""
        if etree.QName(element).text != MESSAGE_QNAME:
            raise StanzaDecodeError(f"Not a message stanza: {element.tag}", code="not_message")
        sender = element.get("from")
        recipient = element.get("to")
        if not sender or not recipient:
            raise StanzaDecodeError(
                "Message without sender or recipient",
                code="missing_address",
                details={"from": sender, "to": recipient},
            )
        return cls(
            sender=sender,
            id=element.get("id", ""),
            recipient=recipient,
            type=element.get("type", ""),
            inner=_inner_xml(element),
        )

    @property
    def bare_sender(self) -> str:
        return self.sender.split("/", 1)[0]

    @property
    def body(self) -> str | None:
        """Text of the first <body/> child, if any."""
        wrapped = b"<m xmlns=" + quoteattr(NS_CLIENT).encode() + b">" + self.inner + b"</m>"
        try:
            root = etree.fromstring(wrapped, parser=etree.XMLParser(resolve_entities=False, no_network=True))
        except etree.XMLSyntaxError:
            return None
        return root.findtext(f"{{{NS_CLIENT}}}body")


def _inner_xml(element: etree._Element) -> bytes:
    """Serialized content of ``element`` without its own start and end tags."""
    parts = []
    if element.text:
        parts.append(_escape_text(element.text))
    for child in element:
        parts.append(etree.tostring(child, encoding="utf-8", with_tail=True))
    return b"".join(parts)


def _escape_text(text: str) -> bytes:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;").encode("utf-8")


def stream_header(sender: str, to: str) -> bytes:
    """Opening <stream:stream> tag; it stays open for the life of the stream."""
    return (
        "<?xml version='1.0'?>"
        f"<stream:stream from={quoteattr(sender)} to={quoteattr(to)} version='1.0' "
        f"xml:lang='en' xmlns='{NS_CLIENT}' xmlns:stream='{NS_STREAM}'>"
    ).encode("utf-8")


def starttls() -> bytes:
    return etree.tostring(etree.Element(f"{{{NS_TLS}}}starttls", nsmap={None: NS_TLS}))


def sasl_plain_payload(username: str, password: str) -> str:
    """base64 of ``\\0username\\0password``."""
    raw = b"\x00" + username.encode("utf-8") + b"\x00" + password.encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def auth_plain(username: str, password: str) -> bytes:
    element = etree.Element(f"{{{NS_SASL}}}auth", nsmap={None: NS_SASL}, mechanism="PLAIN")
    element.text = sasl_plain_payload(username, password)
    return etree.tostring(element)


def bind_request(iq_id: str, resource: str) -> bytes:
    return etree.tostring(_client.iq(_bind.bind(_bind.resource(resource)), id=iq_id, type="set"))


def presence(status: str = "Hey, I'm online.") -> bytes:
    return etree.tostring(_client.presence(_client.status(status)))


def message(sender: str, to: str, body: str, msg_id: str, msg_type: str = "chat") -> bytes:
    return etree.tostring(
        _client.message(_client.body(body), {"from": sender, "to": to, "id": msg_id, "type": msg_type})
    )


def condition_of(element: etree._Element) -> str | None:
    """Local name of the first child element, e.g. ``not-authorized`` in <failure/>."""
    for child in element:
        if isinstance(child.tag, str):
            return etree.QName(child).localname
    return None


def stream_error(element: etree._Element) -> StreamClosed:
    """Build the exception for a received <stream:error/>."""
    condition = condition_of(element) or "undefined-condition"
    return StreamClosed(f"Stream error: {condition}", code=condition, details={"condition": condition})
