"""Session negotiation and inbound stanza routing."""

from xmppcheck.session.negotiator import NegotiationState, Session
from xmppcheck.session.router import StanzaRouter

__all__ = ["NegotiationState", "Session", "StanzaRouter"]
