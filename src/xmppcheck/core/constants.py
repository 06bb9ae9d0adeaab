"""Protocol constants."""

from __future__ import annotations

NS_CLIENT = "jabber:client"
NS_STREAM = "http://etherx.jabber.org/streams"
NS_TLS = "urn:ietf:params:xml:ns:xmpp-tls"
NS_SASL = "urn:ietf:params:xml:ns:xmpp-sasl"
NS_BIND = "urn:ietf:params:xml:ns:xmpp-bind"

DEFAULT_PORT = 5222
DEFAULT_TIMEOUT = 5.0
SRV_SERVICE = "_xmpp-client._tcp"

# Length of generated resource names and stanza ids
RESOURCE_LENGTH = 10
PROBE_BODY = "Check"
