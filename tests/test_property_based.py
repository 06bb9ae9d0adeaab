"""Property-based tests using hypothesis."""

import base64

import pytest
from hypothesis import given, strategies as st
from lxml import etree

from xmppcheck.config import split_jid
from xmppcheck.core.errors import ProbeConfigurationError
from xmppcheck.stanzas import MessageUnit, message, random_label, sasl_plain_payload

_part = st.text(
    alphabet=st.characters(categories=("L", "N"), include_characters="-._"),
    min_size=1,
    max_size=30,
)
_xml_text = st.text(alphabet=st.characters(categories=("L", "N", "P", "S", "Zs")), max_size=200)


class TestPropertyBased:
    """Property-based tests for invariants."""

    @given(_part, _part)
    def test_split_jid_accepts_bare_jids(self, local, domain):
        """Property: user@domain splits back into its parts."""
        assert split_jid(f"{local}@{domain}") == (local, domain)

    @given(st.text().filter(lambda s: s.count("@") != 1))
    def test_split_jid_needs_exactly_one_at(self, jid):
        """Property: anything without exactly one '@' is rejected."""
        with pytest.raises(ProbeConfigurationError):
            split_jid(jid)

    @given(st.integers(min_value=1, max_value=64))
    def test_random_label_alphabet(self, length):
        """Property: labels have the requested length and contain ASCII letters only."""
        label = random_label(length)

        assert len(label) == length
        assert label.isascii()
        assert label.isalpha()

    @given(_xml_text, _xml_text)
    def test_sasl_plain_layout(self, username, password):
        """Property: the PLAIN payload is NUL, user, NUL, password."""
        raw = base64.b64decode(sasl_plain_payload(username, password))

        assert raw == b"\x00" + username.encode() + b"\x00" + password.encode()

    @given(_xml_text)
    def test_message_body_survives_serialization(self, body):
        """Property: the body of an outbound message is what a receiver decodes."""
        wire = message("alice@example.org", "alice@example.org", body, "abc")

        unit = MessageUnit.from_element(etree.fromstring(wire))

        assert (unit.body or "") == body
