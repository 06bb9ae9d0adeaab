"""SRV lookup for the client-to-server service of a domain."""

from __future__ import annotations

import dns.asyncresolver
import dns.exception
from loguru import logger

from xmppcheck.core.constants import SRV_SERVICE


async def resolve_target(domain: str) -> str:
    """Return the host advertised in ``_xmpp-client._tcp.<domain>``.

    Records are ordered by priority, then by descending weight. Without a
    usable record the domain itself is the target.
    """
    qname = f"{SRV_SERVICE}.{domain}"
    try:
        answer = await dns.asyncresolver.resolve(qname, "SRV")
    except dns.exception.DNSException as exc:
        logger.debug("SRV lookup for {} failed ({}); using domain", qname, exc.__class__.__name__)
        return domain

    records = sorted(answer, key=lambda r: (r.priority, -r.weight))
    for record in records:
        target = record.target.to_text(omit_final_dot=True)
        # "." means the service is explicitly not available
        if target and target != ".":
            logger.debug("Remote host: {}", target)
            return target
    logger.debug("SRV for {} has no usable target; using domain", qname)
    return domain
