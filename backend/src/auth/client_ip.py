"""
Client IP resolution for audit logging.

Forwarded headers are only believed when the direct peer is one of our
own proxies. A client talking to us directly can put anything in
X-Forwarded-For, so for untrusted peers the socket address wins.
"""

import ipaddress
import logging
from typing import Iterable, Mapping, Optional

from src.config.settings import IPNetwork

logger = logging.getLogger(__name__)


def _parse_ip(value: Optional[str]):
    if not value:
        return None
    candidate = value.strip()
    # "[::1]:8080" and "1.2.3.4:8080" forms sent by some proxies
    if candidate.startswith("[") and "]" in candidate:
        candidate = candidate[1:candidate.index("]")]
    elif candidate.count(":") == 1:
        candidate = candidate.split(":", 1)[0]
    try:
        return ipaddress.ip_address(candidate)
    except ValueError:
        return None


def is_trusted_proxy(peer: Optional[str], trusted_proxies: Iterable[IPNetwork]) -> bool:
    address = _parse_ip(peer)
    if address is None:
        return False
    return any(address in network for network in trusted_proxies)


def resolve_client_ip(
    peer: Optional[str],
    headers: Mapping[str, str],
    trusted_proxies: Iterable[IPNetwork],
) -> Optional[str]:
    """
    Return the IP address to record for a request.

    Args:
        peer: Address of the direct TCP peer
        headers: Request headers (case-insensitive mapping)
        trusted_proxies: Networks whose forwarded headers are believed

    Returns:
        The leftmost valid X-Forwarded-For address, then X-Real-IP, when the
        peer is trusted; otherwise the peer address. None if nothing usable.
    """
    trusted_proxies = list(trusted_proxies)
    peer_address = _parse_ip(peer)

    if peer_address is not None and any(peer_address in net for net in trusted_proxies):
        forwarded_for = headers.get("X-Forwarded-For")
        if forwarded_for:
            for part in forwarded_for.split(","):
                forwarded = _parse_ip(part)
                if forwarded is not None:
                    return str(forwarded)

        real_ip = _parse_ip(headers.get("X-Real-IP"))
        if real_ip is not None:
            return str(real_ip)
    elif headers.get("X-Forwarded-For"):
        logger.debug(
            "Ignoring forwarded header from untrusted peer",
            extra={"peer": peer},
        )

    if peer_address is not None:
        return str(peer_address)
    return peer or None
