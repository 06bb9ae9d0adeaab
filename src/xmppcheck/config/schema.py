"""Config schema and accessor."""

from __future__ import annotations

import os
from typing import Any

from xmppcheck.core.constants import DEFAULT_PORT, DEFAULT_TIMEOUT
from xmppcheck.core.errors import ProbeConfigurationError

# Env key -> config key
_ENV_OVERRIDE_KEYS = {
    "XMPPCHECK_USERID": "userid",
    "XMPPCHECK_PASSWORD": "password",
    "XMPPCHECK_TLS_VERIFY": "tls_verify",
}


def _parse_bool_env(val: str) -> bool | None:
    """Parse env string to bool; None if not a recognized bool."""
    v = val.lower()
    if v in ("1", "true", "yes"):
        return True
    if v in ("0", "false", "no"):
        return False
    return None


def _load_env_overrides() -> dict[str, Any]:
    """Collect set env overrides as config keys. Unset or empty vars are ignored."""
    overrides: dict[str, Any] = {}
    for env_key, key in _ENV_OVERRIDE_KEYS.items():
        val = os.environ.get(env_key, "")
        if not val:
            continue
        if key == "tls_verify":
            parsed = _parse_bool_env(val)
            if parsed is None:
                continue
            overrides[key] = parsed
        else:
            overrides[key] = val
    return overrides


def split_jid(jid: str) -> tuple[str, str]:
    """Split a bare JID ``user@host`` into (localpart, domain).

    Exactly one ``@`` with non-empty parts on both sides is accepted; a
    resource part is rejected.
    """
    parts = jid.split("@")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ProbeConfigurationError(
            "Please specify fully qualified user ID such as 'user@server.tld'",
            code="invalid_userid",
            details={"userid": jid},
        )
    if "/" in parts[1]:
        raise ProbeConfigurationError(
            "User ID must be a bare JID without resource",
            code="invalid_userid",
            details={"userid": jid},
        )
    return parts[0], parts[1]


class Config:
    """Probe settings with attribute-style access and validation on construction."""

    def __init__(self, data: dict[str, Any] | None = None, *, validate: bool = True) -> None:
        self._data = data or {}
        if validate:
            self._validate()

    def _validate(self) -> None:
        """Validate config values; raise ProbeConfigurationError on failure."""
        split_jid(self.jid)
        try:
            timeout = self.timeout
            warning = self.warning
            port = self.port
        except (TypeError, ValueError) as exc:
            raise ProbeConfigurationError(
                f"Invalid numeric setting: {exc}",
                code="invalid_number",
                original_error=exc,
            ) from exc
        if timeout <= 0:
            raise ProbeConfigurationError(
                "timeout must be positive",
                code="invalid_timeout",
                details={"timeout": timeout},
            )
        if warning is not None and warning <= 0:
            raise ProbeConfigurationError(
                "warning threshold must be positive",
                code="invalid_warning",
                details={"warning": warning},
            )
        if not 0 < port < 65536:
            raise ProbeConfigurationError(
                "port out of range",
                code="invalid_port",
                details={"port": port},
            )
        for key, default in (("tls_verify", True), ("debug", False)):
            self._flag(key, default)

    def _flag(self, key: str, default: bool) -> bool:
        """Boolean setting; YAML may carry it as a string such as "false"."""
        val = self._data.get(key, default)
        if isinstance(val, str):
            parsed = _parse_bool_env(val)
            if parsed is None:
                raise ProbeConfigurationError(
                    f"{key} must be true or false",
                    code="invalid_flag",
                    details={key: val},
                )
            return parsed
        return bool(val)

    def __repr__(self) -> str:
        shown = {k: ("***" if k == "password" else v) for k, v in self._data.items()}
        return f"Config({shown!r})"

    @property
    def jid(self) -> str:
        """Bare JID of the probe account."""
        return str(self._data.get("userid") or "")

    @property
    def username(self) -> str:
        return split_jid(self.jid)[0]

    @property
    def domain(self) -> str:
        return split_jid(self.jid)[1]

    @property
    def password(self) -> str:
        return str(self._data.get("password") or "")

    @property
    def timeout(self) -> float:
        return float(self._data.get("timeout", DEFAULT_TIMEOUT))

    @property
    def warning(self) -> float | None:
        val = self._data.get("warning")
        if val is None:
            return None
        return float(val)

    @property
    def host(self) -> str | None:
        """Explicit server host; skips the SRV lookup when set."""
        val = self._data.get("host")
        if val and isinstance(val, str) and val.strip():
            return val.strip()
        return None

    @property
    def port(self) -> int:
        return int(self._data.get("port", DEFAULT_PORT))

    @property
    def tls_verify(self) -> bool:
        return self._flag("tls_verify", True)

    @property
    def debug(self) -> bool:
        return self._flag("debug", False)
