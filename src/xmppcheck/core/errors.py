"""Probe domain exceptions."""

from __future__ import annotations


class ProbeError(Exception):
    """Base for probe domain errors."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, object] | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.original_error = original_error


class ProbeConfigurationError(ProbeError):
    """Config validation or load failure."""


class StreamError(ProbeError):
    """The XML stream cannot continue. Fatal to the session."""


class StreamClosed(StreamError):
    """Transport ended (EOF or closing stream tag) before a start tag appeared."""


class MalformedStream(StreamError):
    """Inbound bytes are not well-formed XML."""


class HandshakeFailed(ProbeError):
    """STARTTLS refused, certificate rejected or TLS exchange incomplete."""


class AuthenticationFailed(ProbeError):
    """Server answered the SASL exchange with <failure/>."""


class StanzaDecodeError(ProbeError):
    """A single inbound stanza could not be decoded. Recoverable."""
